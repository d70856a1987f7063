"""Checkpoint list/create/restore/delete endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from forge_ledger.errors import ForgeError
from forge_ledger.routers.deps import get_ledger_service, to_http_error
from forge_ledger.schemas.api_messages import CheckpointRequest
from forge_ledger.services.ledger_service import LedgerService

router = APIRouter()


@router.get("/threads/{thread_id}/checkpoints")
async def list_checkpoints(thread_id: str, service: LedgerService = Depends(get_ledger_service)):
    try:
        checkpoints = await service.list_checkpoints(thread_id)
    except ForgeError as exc:
        raise to_http_error(exc)
    return [
        {
            "id": c.id,
            "label": c.label,
            "turn_count": c.turn_count,
            "created_at": c.created_at.isoformat(),
        }
        for c in checkpoints
    ]


@router.post("/threads/{thread_id}/checkpoints")
async def create_checkpoint(
    thread_id: str,
    request: CheckpointRequest,
    service: LedgerService = Depends(get_ledger_service),
):
    checkpoint = await service.create_checkpoint(thread_id, request.label)
    return {"id": checkpoint.id, "label": checkpoint.label, "turn_count": checkpoint.turn_count}


@router.post("/threads/{thread_id}/checkpoints/{checkpoint_id}")
async def restore_checkpoint(
    thread_id: str,
    checkpoint_id: str,
    service: LedgerService = Depends(get_ledger_service),
):
    try:
        ledger = await service.restore_checkpoint(thread_id, checkpoint_id)
    except ForgeError as exc:
        raise to_http_error(exc)
    return {"status": "restored", "ledger": ledger.model_dump(mode="json")}


@router.delete("/threads/{thread_id}/checkpoints/{checkpoint_id}")
async def delete_checkpoint(
    thread_id: str,
    checkpoint_id: str,
    service: LedgerService = Depends(get_ledger_service),
):
    try:
        deleted = await service.delete_checkpoint(thread_id, checkpoint_id)
    except ForgeError as exc:
        raise to_http_error(exc)
    if not deleted:
        raise HTTPException(status_code=404, detail="Checkpoint not found")
    return {"status": "deleted"}
