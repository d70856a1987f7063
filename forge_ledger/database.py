from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from forge_ledger.config import get_settings

settings = get_settings()

# echo=True will log SQL queries
engine = create_async_engine(settings.database_url, echo=False)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False
)
