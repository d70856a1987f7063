"""Thread ledger, turn, status, manual-action, undo/diff, reset and export endpoints.

``POST /reset-all`` wipes every thread and the perk archive.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException
from fastapi.responses import PlainTextResponse

from forge_ledger.errors import ForgeError
from forge_ledger.routers.deps import get_ledger_service, to_http_error
from forge_ledger.schemas.api_messages import ImportRequest, TurnRequest, validate_action_payload
from forge_ledger.services.ledger_service import LedgerService

router = APIRouter()


@router.get("/threads/{thread_id}")
async def get_thread_ledger(thread_id: str, service: LedgerService = Depends(get_ledger_service)):
    ledger = await service.get_ledger(thread_id)
    return {
        "thread_id": thread_id,
        "ledger": ledger.model_dump(mode="json"),
        "active_toggles": ledger.active_toggles,
    }


@router.post("/threads/{thread_id}/turns")
async def post_turn(thread_id: str, request: TurnRequest, service: LedgerService = Depends(get_ledger_service)):
    outcome = await service.process_turn(thread_id, request.text, request.turn_id)
    return outcome.model_dump(mode="json")


@router.get("/threads/{thread_id}/status", response_class=PlainTextResponse)
async def get_status(thread_id: str, service: LedgerService = Depends(get_ledger_service)):
    return await service.render_injection(thread_id)


@router.post("/threads/{thread_id}/roll")
async def trigger_roll(thread_id: str, service: LedgerService = Depends(get_ledger_service)):
    ledger = await service.trigger_roll(thread_id)
    return {"status": "roll_requested", "available_points": ledger.available_points}


@router.post("/threads/{thread_id}/actions/{action}")
async def post_action(
    thread_id: str,
    action: str,
    payload: Optional[dict] = Body(default=None),
    service: LedgerService = Depends(get_ledger_service),
):
    ok, validated = validate_action_payload(action, payload or {})
    if not ok:
        status = 404 if validated.startswith("Unknown action") else 422
        raise HTTPException(status_code=status, detail=validated)
    try:
        ledger, result = await service.apply_action(thread_id, action, validated)
    except ForgeError as exc:
        raise to_http_error(exc)
    return {"result": result.model_dump(mode="json"), "ledger": ledger.model_dump(mode="json")}


@router.post("/threads/{thread_id}/undo")
async def undo_turn(thread_id: str, service: LedgerService = Depends(get_ledger_service)):
    try:
        ledger = await service.undo_last_turn(thread_id)
    except ForgeError as exc:
        raise to_http_error(exc)
    if ledger is None:
        raise HTTPException(status_code=404, detail="No turn to undo")
    return {"status": "undone", "ledger": ledger.model_dump(mode="json")}


@router.get("/threads/{thread_id}/diff", response_class=PlainTextResponse)
async def diff_turn(thread_id: str, service: LedgerService = Depends(get_ledger_service)):
    try:
        return await service.diff_last_turn(thread_id)
    except ForgeError as exc:
        raise to_http_error(exc)


@router.post("/threads/{thread_id}/reset")
async def reset_thread(
    thread_id: str,
    keep_checkpoints: bool = True,
    service: LedgerService = Depends(get_ledger_service),
):
    ledger = await service.reset(thread_id, keep_checkpoints)
    return {"status": "reset", "ledger": ledger.model_dump(mode="json")}


@router.get("/threads/{thread_id}/export")
async def export_thread(thread_id: str, service: LedgerService = Depends(get_ledger_service)):
    try:
        return {"thread_id": thread_id, "ledger": await service.export_ledger(thread_id)}
    except ForgeError as exc:
        raise to_http_error(exc)


@router.post("/threads/{thread_id}/import")
async def import_thread(thread_id: str, request: ImportRequest, service: LedgerService = Depends(get_ledger_service)):
    try:
        ledger = await service.import_ledger(thread_id, request.ledger)
    except ForgeError as exc:
        raise to_http_error(exc)
    return {"status": "imported", "ledger": ledger.model_dump(mode="json")}


@router.post("/reset-all")
async def reset_everything(service: LedgerService = Depends(get_ledger_service)):
    counts = await service.reset_all()
    return {"status": "reset", **counts}
