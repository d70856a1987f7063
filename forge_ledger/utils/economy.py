"""
Economy calculator.

Recomputes every derived ledger field from its primitive inputs. Called
after every mutation, after loading a stored ledger and after restoring a
checkpoint; stored derived values are never trusted.
"""
from typing import List

from forge_ledger.schemas import Ledger


def clamp_gauge(value: int) -> int:
    """Clamp a corruption/sanity value into [0, 100]."""
    return max(0, min(100, int(value)))


def recalculate(ledger: Ledger) -> Ledger:
    """Recompute derived fields in place and return the same ledger.

    ``available_points`` may go negative when the narrator declares more than
    the ledger can afford; that is surfaced, not clamped.
    """
    ledger.base_points = ledger.turn_count * ledger.points_per_turn
    ledger.total_points = ledger.base_points + ledger.bonus_points
    ledger.spent_points = sum(perk.cost for perk in ledger.perks)
    ledger.available_points = ledger.total_points - ledger.spent_points
    ledger.threshold_progress = ledger.total_points % ledger.threshold

    ledger.corruption = clamp_gauge(ledger.corruption)
    ledger.sanity = clamp_gauge(ledger.sanity)

    if ledger.pending_perk is not None:
        ledger.pending_perk.cp_needed = max(0, ledger.pending_perk.cost - ledger.available_points)

    return ledger


def bonus_for_total(ledger: Ledger, total: int) -> int:
    """The ``bonus_points`` that makes ``total_points`` equal *total* (may be negative)."""
    return total - ledger.turn_count * ledger.points_per_turn


def check_thresholds(ledger: Ledger) -> List[int]:
    """Advance ``last_threshold_crossed`` and return every newly crossed multiple.

    Each multiple fires exactly once, including several in a single turn.
    Expects ``recalculate`` to have run.
    """
    reached = ledger.total_points // ledger.threshold
    if reached <= ledger.last_threshold_crossed:
        return []
    crossed = list(range(ledger.last_threshold_crossed + 1, reached + 1))
    ledger.last_threshold_crossed = reached
    return crossed
