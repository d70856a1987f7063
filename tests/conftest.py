"""Shared pytest configuration.

Points the app at a throwaway SQLite database before anything imports
``forge_ledger.database`` (the engine is created at import time).
"""

import os
import sys
import tempfile

import pytest

# Add project root to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

_DB_DIR = tempfile.mkdtemp(prefix="forge-ledger-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ.pop("LOG_FILE", None)

from forge_ledger.config import Settings


@pytest.fixture
def settings():
    """Economy without per-turn income so arithmetic in tests stays explicit."""
    return Settings(points_per_turn=0)


@pytest.fixture
def income_settings():
    return Settings(points_per_turn=10)
