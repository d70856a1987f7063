"""Shared FastAPI dependencies."""

from __future__ import annotations

from fastapi import HTTPException

from forge_ledger.errors import (
    ArchiveEntryNotFound,
    CheckpointNotFound,
    ForgeError,
    PerkNotFound,
    ThreadNotFound,
)
from forge_ledger.services.ledger_service import LedgerService

_service: LedgerService | None = None


def get_ledger_service() -> LedgerService:
    """Process-wide service backed by the SQL store."""
    global _service
    if _service is None:
        from forge_ledger.database import AsyncSessionLocal
        from forge_ledger.services.sql_store import SqlLedgerStore
        _service = LedgerService(SqlLedgerStore(AsyncSessionLocal))
    return _service


def to_http_error(exc: ForgeError) -> HTTPException:
    if isinstance(exc, ThreadNotFound):
        return HTTPException(status_code=404, detail="Thread not found")
    if isinstance(exc, CheckpointNotFound):
        return HTTPException(status_code=404, detail="Checkpoint not found")
    if isinstance(exc, ArchiveEntryNotFound):
        return HTTPException(status_code=404, detail="Archive entry not found")
    if isinstance(exc, PerkNotFound):
        return HTTPException(status_code=404, detail=f"Perk not found: {exc}")
    return HTTPException(status_code=400, detail=str(exc))
