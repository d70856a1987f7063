"""
Manual ledger actions.

Operator controls applied outside the narrator's turn flow. Each action
works on a copy of the ledger, never advances ``turn_count`` (except
``set_turn_count``) and finishes through the same UNCAPPED propagation,
recompute and threshold check as a reconciled turn.

Every action returns ``(next_ledger, result)``.
"""
import logging
from datetime import datetime, timezone
from typing import Callable, Optional, Tuple

from forge_ledger.config import get_settings
from forge_ledger.errors import ForgeError, PerkNotFound
from forge_ledger.schemas import (
    Ledger,
    PendingPerk,
    PerkDeclaration,
    ReconcileResult,
    normalize_flags,
)
from forge_ledger.utils.economy import bonus_for_total, clamp_gauge, recalculate
from forge_ledger.utils.ledger_reconciler import acquire, finalize
from forge_ledger.utils.scaling import add_xp

logger = logging.getLogger(__name__)

ActionOutcome = Tuple[Ledger, ReconcileResult]


def _run(ledger: Ledger, action: str, mutate: Callable[[Ledger, ReconcileResult], None]) -> ActionOutcome:
    next_ledger = recalculate(ledger.model_copy(deep=True))
    result = ReconcileResult(turn_count=next_ledger.turn_count, candidate_kind=f"manual:{action}")
    mutate(next_ledger, result)
    finalize(next_ledger, result)
    next_ledger.updated_at = datetime.now(timezone.utc)
    result.turn_count = next_ledger.turn_count
    logger.info("manual_action | action=%s | changes=%s", action, result.changes)
    return next_ledger, result


def add_bonus_points(ledger: Ledger, amount: int) -> ActionOutcome:
    def mutate(lg: Ledger, result: ReconcileResult) -> None:
        if amount:
            lg.bonus_points += amount
            result.changes.append(f"points:{amount:+d}")
    return _run(ledger, "add-bonus", mutate)


def set_total_points(ledger: Ledger, total: int) -> ActionOutcome:
    """Re-derive ``bonus_points`` so the total equals *total* (bonus may go negative)."""
    def mutate(lg: Ledger, result: ReconcileResult) -> None:
        bonus = bonus_for_total(lg, total)
        if bonus != lg.bonus_points:
            result.changes.append(f"points_rebased:bonus {lg.bonus_points}->{bonus}")
            lg.bonus_points = bonus
    return _run(ledger, "set-total", mutate)


def _modify_gauge(ledger: Ledger, field: str, amount: int) -> ActionOutcome:
    def mutate(lg: Ledger, result: ReconcileResult) -> None:
        old = getattr(lg, field)
        new = clamp_gauge(old + amount)
        if new != old:
            setattr(lg, field, new)
            result.changes.append(f"{field}:{old}->{new}")
    return _run(ledger, field, mutate)


def modify_corruption(ledger: Ledger, amount: int) -> ActionOutcome:
    return _modify_gauge(ledger, "corruption", amount)


def modify_sanity(ledger: Ledger, amount: int) -> ActionOutcome:
    return _modify_gauge(ledger, "sanity", amount)


def set_turn_count(ledger: Ledger, turn_count: int) -> ActionOutcome:
    if turn_count < 0:
        raise ForgeError("turn count cannot be negative")

    def mutate(lg: Ledger, result: ReconcileResult) -> None:
        if turn_count != lg.turn_count:
            result.changes.append(f"turns:{lg.turn_count}->{turn_count}")
            lg.turn_count = turn_count
    return _run(ledger, "set-turns", mutate)


def add_perk(
    ledger: Ledger,
    name: str,
    cost: int,
    description: str = "",
    flags=None,
    source: str = "manual",
    settings=None,
) -> ActionOutcome:
    """Acquire a perk directly, bypassing the affordability check.

    Adding a perk that is already held raises ``ForgeError``.
    """
    settings = settings or get_settings()
    name = name.strip()
    if not name:
        raise ForgeError("perk name is required")
    if ledger.find_perk(name) is not None:
        raise ForgeError(f"perk already acquired: {name}")

    decl = PerkDeclaration(
        name=name,
        cost=max(0, cost),
        description=description,
        flags=normalize_flags(flags),
        rule=source,
    )

    def mutate(lg: Ledger, result: ReconcileResult) -> None:
        acquire(lg, decl, result, settings, source=source, force=True)
    return _run(ledger, "add-perk", mutate)


def remove_perk(ledger: Ledger, name: str) -> ActionOutcome:
    """Remove a held perk, refunding its cost to available points."""
    if ledger.find_perk(name) is None:
        raise PerkNotFound(name)

    def mutate(lg: Ledger, result: ReconcileResult) -> None:
        perk = lg.find_perk(name)
        lg.perks = [p for p in lg.perks if p.key != perk.key]
        result.changes.append(f"removed:{perk.name}({perk.cost} CP)")
    return _run(ledger, "remove-perk", mutate)


def toggle_perk(ledger: Ledger, name: str, active: Optional[bool] = None) -> ActionOutcome:
    """Flip (or force) the active state of a toggleable perk."""
    perk = ledger.find_perk(name)
    if perk is None:
        raise PerkNotFound(name)
    if not perk.toggleable:
        raise ForgeError(f"perk is not toggleable: {perk.name}")

    def mutate(lg: Ledger, result: ReconcileResult) -> None:
        target = lg.find_perk(name)
        state = (not target.active) if active is None else active
        if state != target.active:
            target.active = state
            result.changes.append(f"toggle:{target.name}:{'on' if state else 'off'}")
    return _run(ledger, "toggle-perk", mutate)


def set_pending_perk(ledger: Ledger, name: str, cost: int, description: str = "", flags=None) -> ActionOutcome:
    """Mark a perk as pending; a held perk cannot also be pending."""
    name = name.strip()
    if not name:
        raise ForgeError("perk name is required")
    if ledger.find_perk(name) is not None:
        raise ForgeError(f"perk already acquired: {name}")

    def mutate(lg: Ledger, result: ReconcileResult) -> None:
        lg.pending_perk = PendingPerk(
            name=name,
            cost=max(0, cost),
            cp_needed=max(0, cost - lg.available_points),
            description=description,
            flags=normalize_flags(flags),
        )
        result.pended = name
        result.changes.append(f"pending:{name}({max(0, cost)} CP)")
    return _run(ledger, "set-pending", mutate)


def clear_pending_perk(ledger: Ledger) -> ActionOutcome:
    def mutate(lg: Ledger, result: ReconcileResult) -> None:
        if lg.pending_perk is not None:
            result.changes.append(f"pending_cleared:{lg.pending_perk.name}")
            lg.pending_perk = None
    return _run(ledger, "clear-pending", mutate)


def acquire_pending_perk(ledger: Ledger, settings=None) -> ActionOutcome:
    """Acquire the pending perk once it is affordable.

    Raises ``PerkNotFound`` when nothing is pending and ``ForgeError`` when
    it still costs more than the available points.
    """
    settings = settings or get_settings()
    pending = ledger.pending_perk
    if pending is None:
        raise PerkNotFound("no pending perk")
    available = recalculate(ledger.model_copy(deep=True)).available_points
    if pending.cost > available:
        raise ForgeError(f"{pending.name} needs {pending.cost - available} more CP")

    decl = PerkDeclaration(
        name=pending.name,
        cost=pending.cost,
        description=pending.description,
        flags=list(pending.flags),
        rule="pending",
    )

    def mutate(lg: Ledger, result: ReconcileResult) -> None:
        acquire(lg, decl, result, settings, source="pending")
    return _run(ledger, "acquire-pending", mutate)


def grant_xp(ledger: Ledger, name: str, amount: int, settings=None) -> ActionOutcome:
    settings = settings or get_settings()
    perk = ledger.find_perk(name)
    if perk is None:
        raise PerkNotFound(name)
    if perk.scaling is None:
        raise ForgeError(f"perk does not scale: {perk.name}")

    def mutate(lg: Ledger, result: ReconcileResult) -> None:
        target = lg.find_perk(name)
        levels = add_xp(target, amount, settings.xp_per_level)
        change = f"xp:{target.name}:+{amount}"
        if levels:
            change += f" (level {target.scaling.level})"
        result.changes.append(change)
    return _run(ledger, "grant-xp", mutate)


def reset_ledger(ledger: Ledger, settings=None, keep_checkpoints: bool = True) -> ActionOutcome:
    """Back to defaults. Checkpoints survive unless ``keep_checkpoints`` is False."""
    settings = settings or get_settings()
    fresh = Ledger.new(settings)
    if keep_checkpoints:
        fresh.checkpoints = [c.model_copy(deep=True) for c in ledger.checkpoints]
    fresh.created_at = ledger.created_at
    recalculate(fresh)
    result = ReconcileResult(turn_count=0, candidate_kind="manual:reset", changes=["reset"])
    logger.info("manual_action | action=reset | keep_checkpoints=%s", keep_checkpoints)
    return fresh, result
