"""Global perk archive endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from forge_ledger.errors import ForgeError
from forge_ledger.routers.deps import get_ledger_service, to_http_error
from forge_ledger.schemas.api_messages import ArchiveImportRequest
from forge_ledger.services.ledger_service import LedgerService

router = APIRouter()


@router.get("/archive")
async def list_archive(q: str = "", service: LedgerService = Depends(get_ledger_service)):
    entries = await service.list_archive(q)
    return [entry.model_dump(mode="json") for entry in entries]


@router.get("/archive/export")
async def export_archive(service: LedgerService = Depends(get_ledger_service)):
    return {"entries": await service.export_archive()}


@router.post("/archive/import")
async def import_archive(request: ArchiveImportRequest, service: LedgerService = Depends(get_ledger_service)):
    try:
        added = await service.import_archive(request.entries, request.replace)
    except ForgeError as exc:
        raise to_http_error(exc)
    return {"status": "imported", "added": added}


@router.delete("/archive")
async def clear_archive(service: LedgerService = Depends(get_ledger_service)):
    count = await service.clear_archive()
    return {"status": "cleared", "deleted": count}


@router.delete("/archive/{entry_id}")
async def delete_archive_entry(entry_id: str, service: LedgerService = Depends(get_ledger_service)):
    try:
        await service.delete_archive_entry(entry_id)
    except ForgeError as exc:
        raise to_http_error(exc)
    return {"status": "deleted"}


@router.post("/threads/{thread_id}/archive/{entry_id}")
async def acquire_from_archive(
    thread_id: str,
    entry_id: str,
    service: LedgerService = Depends(get_ledger_service),
):
    try:
        ledger, result = await service.acquire_from_archive(thread_id, entry_id)
    except ForgeError as exc:
        raise to_http_error(exc)
    return {"result": result.model_dump(mode="json"), "ledger": ledger.model_dump(mode="json")}
