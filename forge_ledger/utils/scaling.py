"""
Scaling engine for leveled (SCALING) perks.

A perk at level L needs ``L * xp_per_level`` experience to reach L+1.
Leveling stops at ``max_level`` unless the perk is uncapped; once a thread
owns an UNCAPPED perk every scaling perk becomes uncapped for good.
"""
import logging
from typing import List, Optional

from forge_ledger.config import get_settings
from forge_ledger.schemas import Ledger, Perk, PerkFlag, ScalingState

logger = logging.getLogger(__name__)


def xp_needed(level: int, xp_per_level: Optional[int] = None) -> int:
    if xp_per_level is None:
        xp_per_level = get_settings().xp_per_level
    return level * xp_per_level


def new_scaling_state(uncapped: bool = False, settings=None) -> ScalingState:
    settings = settings or get_settings()
    if uncapped:
        return ScalingState(level=1, xp=0, max_level=None, uncapped=True)
    return ScalingState(level=1, xp=0, max_level=settings.default_max_level, uncapped=False)


def add_xp(perk: Perk, amount: int, xp_per_level: Optional[int] = None) -> int:
    """Add experience to a scaling perk, levelling as many times as it covers.

    Returns the number of levels gained. A capped perk at its max level keeps
    at most ``xp_needed(max_level)`` experience.
    """
    scaling = perk.scaling
    if scaling is None or amount <= 0:
        return 0
    if xp_per_level is None:
        xp_per_level = get_settings().xp_per_level

    scaling.xp += amount
    gained = 0
    while scaling.xp >= xp_needed(scaling.level, xp_per_level):
        if scaling.is_capped and scaling.level >= scaling.max_level:
            break
        scaling.xp -= xp_needed(scaling.level, xp_per_level)
        scaling.level += 1
        gained += 1

    if scaling.is_capped and scaling.level >= scaling.max_level:
        scaling.xp = min(scaling.xp, xp_needed(scaling.level, xp_per_level))

    if gained:
        logger.info(
            "perk_leveled | perk=%s | levels=%d | level=%d | xp=%d",
            perk.name, gained, scaling.level, scaling.xp,
        )
    return gained


def set_level(perk: Perk, level: int, xp: Optional[int] = None,
              xp_per_level: Optional[int] = None) -> None:
    """Authoritative override of a perk's level (and optionally xp)."""
    scaling = perk.scaling
    if scaling is None:
        return
    if xp_per_level is None:
        xp_per_level = get_settings().xp_per_level

    level = max(1, int(level))
    if scaling.is_capped:
        level = min(level, scaling.max_level)
    scaling.level = level

    if xp is not None:
        scaling.xp = max(0, int(xp))
    if scaling.is_capped and scaling.level >= scaling.max_level:
        scaling.xp = min(scaling.xp, xp_needed(scaling.level, xp_per_level))


def uncap(scaling: ScalingState) -> bool:
    """Remove the level cap. Returns True if anything changed."""
    if scaling.uncapped and scaling.max_level is None:
        return False
    scaling.uncapped = True
    scaling.max_level = None
    return True


def apply_uncapped(ledger: Ledger) -> List[str]:
    """Latch ``has_uncapped`` and uncap every scaling perk once it is set.

    Retroactive for existing perks; new perks pick it up at construction.
    Returns the names of perks whose cap was lifted.
    """
    if not ledger.has_uncapped and any(p.has_flag(PerkFlag.UNCAPPED) for p in ledger.perks):
        ledger.has_uncapped = True
        logger.info("uncapped_latched | perks=%d", len(ledger.perks))

    if not ledger.has_uncapped:
        return []

    lifted = []
    for perk in ledger.perks:
        if perk.scaling is not None and uncap(perk.scaling):
            lifted.append(perk.name)
    return lifted
