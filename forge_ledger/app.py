"""FastAPI application factory and CORS."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from forge_ledger.config import get_settings
from forge_ledger.routers import archive, checkpoints, threads
from forge_ledger.utils.logging_config import get_logger

logger = get_logger("forge_ledger.app")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Ensure tables exist
    from forge_ledger.database import engine
    from forge_ledger.models import Base
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("startup | tables ready")
    yield
    await engine.dispose()


app = FastAPI(title=get_settings().app_name, version="2.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(threads.router)
app.include_router(checkpoints.router)
app.include_router(archive.router)
