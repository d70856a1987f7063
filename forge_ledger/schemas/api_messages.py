"""
HTTP request payload schemas.

Manual ledger actions arrive as ``POST /threads/{id}/actions/{action}``; the
body is validated against the action-specific model via
``validate_action_payload()``.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Hard limits
# ---------------------------------------------------------------------------
MAX_TURN_CHARS = 200_000


# ---------------------------------------------------------------------------
# Turn / checkpoint / import bodies
# ---------------------------------------------------------------------------

class TurnRequest(BaseModel):
    text: str = Field(..., max_length=MAX_TURN_CHARS)
    turn_id: Optional[int] = Field(default=None, ge=0, description="Monotonic host message id")


class CheckpointRequest(BaseModel):
    label: str = Field(default="", max_length=200)


class ImportRequest(BaseModel):
    ledger: Dict[str, Any]


class ArchiveImportRequest(BaseModel):
    entries: List[Dict[str, Any]] = Field(..., max_length=10_000)
    replace: bool = Field(default=True, description="Replace the archive instead of merging into it")


# ---------------------------------------------------------------------------
# Per-action payloads
# ---------------------------------------------------------------------------

class AmountPayload(BaseModel):
    amount: int = Field(..., ge=-1_000_000, le=1_000_000)


class TotalPayload(BaseModel):
    total: int = Field(..., ge=-1_000_000, le=1_000_000)


class TurnCountPayload(BaseModel):
    count: int = Field(..., ge=0, le=1_000_000)


class AddPerkPayload(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    cost: int = Field(default=0, ge=0, le=1_000_000)
    description: str = Field(default="", max_length=5000)
    flags: List[str] = Field(default_factory=list, max_length=30)


class PerkNamePayload(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)


class TogglePayload(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    active: Optional[bool] = None


class PendingPayload(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    cost: int = Field(default=0, ge=0, le=1_000_000)


class XpPayload(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    amount: int = Field(..., ge=0, le=1_000_000)


class EmptyPayload(BaseModel):
    pass


# ---------------------------------------------------------------------------
# Dispatch table
# ---------------------------------------------------------------------------
ACTION_SCHEMAS: dict[str, type[BaseModel]] = {
    "add-bonus": AmountPayload,
    "set-total": TotalPayload,
    "corruption": AmountPayload,
    "sanity": AmountPayload,
    "set-turns": TurnCountPayload,
    "add-perk": AddPerkPayload,
    "remove-perk": PerkNamePayload,
    "toggle-perk": TogglePayload,
    "set-pending": PendingPayload,
    "clear-pending": EmptyPayload,
    "acquire-pending": EmptyPayload,
    "grant-xp": XpPayload,
}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def validate_action_payload(action: str, raw_payload: dict) -> tuple[bool, dict | str]:
    """
    Validate *raw_payload* against the schema for *action*.

    Returns ``(True, validated_dict)`` on success or
    ``(False, error_message)`` on failure.
    """
    schema = ACTION_SCHEMAS.get(action)
    if schema is None:
        return False, f"Unknown action: {action}"

    try:
        model = schema(**raw_payload)
        return True, model.model_dump()
    except ValidationError as exc:
        errors = "; ".join(
            f"{'.'.join(str(l) for l in e['loc'])}: {e['msg']}"
            for e in exc.errors()
        )
        logger.info("action_validation_failed | action=%s | errors=%s", action, errors)
        return False, f"Invalid payload for '{action}': {errors}"
