"""
Checkpoint manager.

A checkpoint is a labelled deep copy of a ledger's mutable fields, kept
on the ledger itself in a bounded FIFO list. The checkpoint list is never
copied into a checkpoint. Restoring always reruns the economy calculator.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from forge_ledger.config import get_settings
from forge_ledger.schemas import Checkpoint, DERIVED_FIELDS, Ledger
from forge_ledger.utils.economy import recalculate

logger = logging.getLogger(__name__)

# Never part of a checkpoint's state
_EXCLUDED = set(DERIVED_FIELDS) | {"checkpoints", "created_at"}


def create_checkpoint(ledger: Ledger, label: str = "", settings=None) -> Checkpoint:
    """Append a checkpoint to *ledger*, evicting the oldest beyond capacity."""
    settings = settings or get_settings()
    checkpoint = Checkpoint(
        id=f"checkpoint_{uuid.uuid4().hex[:12]}",
        label=label.strip() or f"Checkpoint at turn {ledger.turn_count}",
        created_at=datetime.now(timezone.utc),
        turn_count=ledger.turn_count,
        state=ledger.model_dump(mode="json", exclude=_EXCLUDED),
    )
    ledger.checkpoints.append(checkpoint)

    overflow = len(ledger.checkpoints) - settings.checkpoint_capacity
    if overflow > 0:
        evicted = ledger.checkpoints[:overflow]
        del ledger.checkpoints[:overflow]
        logger.info("checkpoints_evicted | ids=%s", [c.id for c in evicted])

    return checkpoint


def find_checkpoint(ledger: Ledger, checkpoint_id: str) -> Optional[Checkpoint]:
    return next((c for c in ledger.checkpoints if c.id == checkpoint_id), None)


def restore_checkpoint(ledger: Ledger, checkpoint_id: str) -> Optional[Ledger]:
    """
    Return a new ledger built from the checkpoint's state.

    The checkpoint list and creation time carry over from *ledger*.
    Returns ``None`` if no checkpoint has that id.
    """
    checkpoint = find_checkpoint(ledger, checkpoint_id)
    if checkpoint is None:
        return None

    restored = Ledger.model_validate({
        **checkpoint.state,
        "checkpoints": [c.model_dump() for c in ledger.checkpoints],
        "created_at": ledger.created_at,
        "updated_at": datetime.now(timezone.utc),
    })
    logger.info("checkpoint_restored | id=%s | turn=%d", checkpoint.id, checkpoint.turn_count)
    return recalculate(restored)


def delete_checkpoint(ledger: Ledger, checkpoint_id: str) -> bool:
    """Remove a checkpoint by id. Missing ids are a no-op returning False."""
    before = len(ledger.checkpoints)
    ledger.checkpoints = [c for c in ledger.checkpoints if c.id != checkpoint_id]
    return len(ledger.checkpoints) != before
