"""
Ledger Reconciler

Merges one turn's candidate update into a ledger and returns the next
ledger plus a ``ReconcileResult`` describing what changed.

* A ``StructuredSnapshot`` reports state: gauges and scaling are set,
  not added, and fields the snapshot leaves out are left alone.
* A ``NarrativeDelta`` reports changes: points and gauges are added.

Every turn advances ``turn_count`` first, even when the candidate changes
nothing. The input ledger is never mutated.
"""
import logging
import re
from datetime import datetime, timezone
from typing import Optional, Tuple

from forge_ledger.config import get_settings
from forge_ledger.errors import PerkValidationError
from forge_ledger.schemas import (
    Candidate,
    Ledger,
    NarrativeDelta,
    PendingPerk,
    Perk,
    PerkDeclaration,
    PerkFlag,
    ReconcileResult,
    SnapshotPerk,
    SnapshotScaling,
    StructuredSnapshot,
    normalize_flags,
)
from forge_ledger.utils.candidate_extractor import extract_candidate
from forge_ledger.utils.economy import (
    bonus_for_total,
    check_thresholds,
    clamp_gauge,
    recalculate,
)
from forge_ledger.utils.narrative_parser import validate_perk
from forge_ledger.utils.scaling import (
    add_xp,
    apply_uncapped,
    new_scaling_state,
    set_level,
    uncap,
)

logger = logging.getLogger(__name__)


def reconcile(ledger: Ledger, text: str, settings=None) -> Tuple[Ledger, ReconcileResult]:
    """Extract a candidate from narrator *text* and reconcile it."""
    settings = settings or get_settings()
    candidate = extract_candidate(text, settings)
    return reconcile_candidate(ledger, candidate, settings)


def reconcile_candidate(
    ledger: Ledger,
    candidate: Candidate,
    settings=None,
) -> Tuple[Ledger, ReconcileResult]:
    """
    Apply *candidate* to a copy of *ledger*.

    Returns:
        (next_ledger, result) where result lists the applied changes,
        newly acquired perks, a pended perk and crossed thresholds.
    """
    settings = settings or get_settings()
    next_ledger = ledger.model_copy(deep=True)
    total_before = recalculate(next_ledger).total_points

    next_ledger.turn_count += 1
    recalculate(next_ledger)

    result = ReconcileResult(turn_count=next_ledger.turn_count, candidate_kind=candidate.kind)

    if isinstance(candidate, StructuredSnapshot):
        _apply_snapshot(next_ledger, candidate, total_before, result, settings)
    else:
        _apply_narrative(next_ledger, candidate, result, settings)

    finalize(next_ledger, result)
    next_ledger.updated_at = datetime.now(timezone.utc)

    if result.changes:
        logger.info(
            "ledger_reconciled | kind=%s | turn=%d | changes=%s",
            candidate.kind, next_ledger.turn_count, result.changes,
        )
    return next_ledger, result


def finalize(ledger: Ledger, result: ReconcileResult) -> None:
    """UNCAPPED propagation, derived-field recompute and threshold check."""
    for name in apply_uncapped(ledger):
        result.changes.append(f"uncapped:{name}")

    recalculate(ledger)

    crossed = check_thresholds(ledger)
    if crossed:
        result.thresholds_crossed.extend(crossed)
        logger.info(
            "threshold_crossed | multiples=%s | total=%d | threshold=%d",
            crossed, ledger.total_points, ledger.threshold,
        )


# ---------------------------------------------------------------------------
# Perk acquisition
# ---------------------------------------------------------------------------

def build_perk(decl: PerkDeclaration, ledger: Ledger, settings=None, source: str = "narrative") -> Perk:
    """Construct a fresh Perk record from a declaration."""
    settings = settings or get_settings()
    flags = normalize_flags(decl.flags)
    scaling = None
    if PerkFlag.SCALING.value in flags:
        scaling = new_scaling_state(uncapped=ledger.has_uncapped, settings=settings)
    return Perk(
        name=decl.name.strip(),
        cost=max(0, decl.cost),
        description=decl.description.strip(),
        flags=flags,
        active=True,
        scaling=scaling,
        acquired_at_turn=ledger.turn_count,
        source=source,
    )


def acquire(
    ledger: Ledger,
    decl: PerkDeclaration,
    result: ReconcileResult,
    settings=None,
    source: str = "narrative",
    force: bool = False,
) -> Optional[Perk]:
    """
    Acquire a declared perk if affordable, otherwise make it the pending perk.

    ``force`` skips the affordability check (manual additions). Returns the
    acquired perk, or ``None`` when it was pended.
    """
    recalculate(ledger)
    perk = build_perk(decl, ledger, settings, source)

    if force or perk.cost <= ledger.available_points:
        ledger.perks.append(perk)
        if ledger.pending_perk is not None and ledger.pending_perk.key == perk.key:
            ledger.pending_perk = None
            result.changes.append(f"pending_resolved:{perk.name}")
        recalculate(ledger)
        result.acquired.append(perk.name)
        result.changes.append(f"acquired:{perk.name}({perk.cost} CP)")
        return perk

    cp_needed = perk.cost - ledger.available_points
    pending = ledger.pending_perk
    if pending is None or pending.key != perk.key or pending.cost != perk.cost:
        ledger.pending_perk = PendingPerk(
            name=perk.name,
            cost=perk.cost,
            cp_needed=cp_needed,
            description=perk.description,
            flags=perk.flags,
        )
        result.changes.append(f"pending:{perk.name}({perk.cost} CP, {cp_needed} needed)")
        logger.info(
            "perk_pending | perk=%s | cost=%d | available=%d",
            perk.name, perk.cost, ledger.available_points,
        )
    result.pended = perk.name
    return None


# ---------------------------------------------------------------------------
# Structured snapshot
# ---------------------------------------------------------------------------

def _apply_snapshot(ledger: Ledger, snap: StructuredSnapshot, total_before: int,
                    result: ReconcileResult, settings) -> None:
    _apply_gauge(ledger, "corruption", snap.corruption, result)
    _apply_gauge(ledger, "sanity", snap.sanity, result)
    _apply_declared_total(ledger, snap.total_points, total_before, result)
    _apply_declared_pending(ledger, snap, result)

    for snap_perk in snap.perks:
        existing = ledger.find_perk(snap_perk.name)
        if existing is not None:
            _merge_snapshot_perk(existing, snap_perk, ledger, result, settings)
            continue

        try:
            validate_perk(snap_perk.name, snap_perk.cost or 0, settings)
        except PerkValidationError as exc:
            logger.warning("snapshot_perk_rejected | name=%.40s | error=%s", snap_perk.name, exc)
            result.warnings.append(f"rejected:perk:snapshot:{exc}")
            continue

        flags = normalize_flags(snap_perk.flags)
        if snap_perk.toggleable and PerkFlag.TOGGLEABLE.value not in flags:
            flags.append(PerkFlag.TOGGLEABLE.value)
        if snap_perk.scaling is not None and PerkFlag.SCALING.value not in flags:
            flags.append(PerkFlag.SCALING.value)

        decl = PerkDeclaration(
            name=snap_perk.name,
            cost=snap_perk.cost or 0,
            description=snap_perk.description or "",
            flags=flags,
            rule="snapshot",
        )
        perk = acquire(ledger, decl, result, settings, source="snapshot")
        if perk is not None:
            if snap_perk.active is not None:
                perk.active = snap_perk.active
            if snap_perk.scaling is not None:
                _apply_snapshot_scaling(perk, snap_perk.scaling, ledger, settings)

    recalculate(ledger)
    if snap.available_points is not None and snap.available_points != ledger.available_points:
        result.warnings.append(
            f"available_mismatch:declared={snap.available_points},computed={ledger.available_points}"
        )
    if snap.perk_count is not None and snap.perk_count != len(ledger.perks):
        result.warnings.append(
            f"perk_count_mismatch:declared={snap.perk_count},held={len(ledger.perks)}"
        )


def _apply_gauge(ledger: Ledger, field: str, value: Optional[int], result: ReconcileResult) -> None:
    if value is None:
        return
    value = clamp_gauge(value)
    old = getattr(ledger, field)
    if value != old:
        setattr(ledger, field, value)
        result.changes.append(f"{field}:{old}->{value}")


def _apply_declared_total(ledger: Ledger, declared: Optional[int], total_before: int,
                          result: ReconcileResult) -> None:
    """Re-derive ``bonus_points`` so ``total_points`` matches a declared total.

    A declared total equal to last turn's total is the narrator echoing the
    injected status block and carries no opinion.
    """
    if declared is None or declared in (total_before, ledger.total_points):
        return
    old_bonus = ledger.bonus_points
    ledger.bonus_points = bonus_for_total(ledger, declared)
    recalculate(ledger)
    result.changes.append(f"points_rebased:bonus {old_bonus}->{ledger.bonus_points}")


def _apply_declared_pending(ledger: Ledger, snap: StructuredSnapshot, result: ReconcileResult) -> None:
    declared = snap.pending_perk
    current = ledger.pending_perk

    if declared is None or not declared.name:
        if current is not None:
            ledger.pending_perk = None
            result.changes.append(f"pending_cleared:{current.name}")
        return

    if ledger.find_perk(declared.name) is not None:
        # Already owned: it cannot also be pending.
        if current is not None and current.key == declared.name.casefold():
            ledger.pending_perk = None
            result.changes.append(f"pending_cleared:{current.name}")
        return

    same = current is not None and current.key == declared.name.casefold()
    cost = declared.cost if declared.cost is not None else (current.cost if same else 0)
    if same and current.cost == cost:
        return

    ledger.pending_perk = PendingPerk(
        name=declared.name,
        cost=max(0, cost),
        cp_needed=max(0, cost - ledger.available_points),
        description=current.description if same else "",
        flags=list(current.flags) if same else [],
    )
    result.pended = declared.name
    result.changes.append(f"pending:{declared.name}({cost} CP)")


def _merge_snapshot_perk(perk: Perk, snap_perk: SnapshotPerk, ledger: Ledger,
                         result: ReconcileResult, settings) -> None:
    """Update only the fields the snapshot supplies; never blank a description."""
    changed = []

    if snap_perk.cost is not None and snap_perk.cost != perk.cost:
        perk.cost = snap_perk.cost
        changed.append("cost")

    description = (snap_perk.description or "").strip()
    if description and description != perk.description:
        perk.description = description
        changed.append("description")

    new_flags = normalize_flags(snap_perk.flags)
    if snap_perk.toggleable:
        new_flags.append(PerkFlag.TOGGLEABLE.value)
    added = [f for f in new_flags if f not in perk.flags]
    if added:
        perk.flags.extend(dict.fromkeys(added))
        changed.append("flags")

    if snap_perk.active is not None and snap_perk.active != perk.active:
        perk.active = snap_perk.active
        changed.append("active")

    if snap_perk.scaling is not None:
        if perk.scaling is None:
            perk.scaling = new_scaling_state(uncapped=ledger.has_uncapped, settings=settings)
            if PerkFlag.SCALING.value not in perk.flags:
                perk.flags.append(PerkFlag.SCALING.value)
            changed.append("scaling_added")
        if _apply_snapshot_scaling(perk, snap_perk.scaling, ledger, settings):
            changed.append("scaling")

    if changed:
        result.changes.append(f"perk_updated:{perk.name}:{','.join(changed)}")


def _apply_snapshot_scaling(perk: Perk, snap_scaling: SnapshotScaling, ledger: Ledger, settings) -> bool:
    """Authoritative level/xp override. Returns True if the scaling state changed."""
    settings = settings or get_settings()
    scaling = perk.scaling
    before = scaling.model_dump()

    if snap_scaling.uncapped:
        uncap(scaling)
    elif snap_scaling.max_level is not None and not scaling.uncapped and not ledger.has_uncapped:
        scaling.max_level = max(1, snap_scaling.max_level)

    if snap_scaling.level is not None or snap_scaling.xp is not None:
        level = snap_scaling.level if snap_scaling.level is not None else scaling.level
        set_level(perk, level, snap_scaling.xp, settings.xp_per_level)

    return scaling.model_dump() != before


# ---------------------------------------------------------------------------
# Narrative delta
# ---------------------------------------------------------------------------

def _apply_narrative(ledger: Ledger, delta: NarrativeDelta, result: ReconcileResult, settings) -> None:
    if delta.fallback_reason:
        result.warnings.append(f"block_decode_failed:{delta.fallback_reason}")
    for entry in delta.rejected:
        result.warnings.append(f"rejected:{entry}")

    if delta.points_delta:
        ledger.bonus_points += delta.points_delta
        result.changes.append(f"points:{delta.points_delta:+d}")

    if delta.corruption_delta:
        _apply_gauge(ledger, "corruption", ledger.corruption + delta.corruption_delta, result)
    if delta.sanity_delta:
        _apply_gauge(ledger, "sanity", ledger.sanity + delta.sanity_delta, result)

    recalculate(ledger)

    for decl in delta.new_perks:
        existing = ledger.find_perk(decl.name)
        if existing is None:
            acquire(ledger, decl, result, settings, source="narrative")
            continue
        # Duplicate declaration: merge rather than acquire twice.
        changed = False
        if not existing.description and decl.description:
            existing.description = decl.description
            changed = True
        for flag in normalize_flags(decl.flags):
            if flag not in existing.flags:
                existing.flags.append(flag)
                changed = True
        if changed:
            result.changes.append(f"perk_merged:{existing.name}")

    for toggle in delta.toggles:
        perk = match_toggle_mention(ledger, toggle.mention)
        if perk is not None and perk.active != toggle.active:
            perk.active = toggle.active
            result.changes.append(f"toggle:{perk.name}:{'on' if toggle.active else 'off'}")

    for gain in delta.xp_gains:
        perk = ledger.find_perk(gain.name)
        if perk is None or perk.scaling is None:
            result.warnings.append(f"xp_ignored:{gain.name}")
            continue
        levels = add_xp(perk, gain.amount, settings.xp_per_level)
        change = f"xp:{perk.name}:+{gain.amount}"
        if levels:
            change += f" (level {perk.scaling.level})"
        result.changes.append(change)


def match_toggle_mention(ledger: Ledger, mention: str) -> Optional[Perk]:
    """
    The toggleable perk named in *mention*.

    A verb cue captures everything up to the end of the clause, so
    "activate Iron Will and disable Shadow Cloak" names two perks. The one
    mentioned first belongs to the verb; among names starting at the same
    place the longest wins.
    """
    lowered = mention.casefold()
    matches = []
    for perk in ledger.perks:
        if not perk.toggleable:
            continue
        found = re.search(rf"(?<!\w){re.escape(perk.key)}(?!\w)", lowered)
        if found:
            matches.append((found.start(), -len(perk.name), perk))
    if not matches:
        return None
    return min(matches, key=lambda m: m[:2])[2]
