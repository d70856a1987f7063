from dotenv import load_dotenv
load_dotenv()

import uvicorn

from forge_ledger.utils.logging_config import setup_logging
from forge_ledger.app import app

setup_logging()


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
