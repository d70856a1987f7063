"""
Ledger Schema Definitions

Canonical in-memory model of one narrative thread's resource economy.
These Pydantic models are the single source of truth for what gets
persisted, checkpointed and rendered back to the narrator.

Derived fields (``base_points``, ``spent_points``, ``total_points``,
``available_points``, ``threshold_progress``) live on the model so callers
can read them, but they are never stored: ``Ledger.to_storage()`` drops them
and every load path reruns the economy calculator.

Usage:
    from forge_ledger.schemas import Ledger, Perk

    ledger = Ledger.new()
    ledger.perks.append(Perk(name="IRON WILL", cost=100))
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PerkFlag(str, Enum):
    """Logic-bearing perk flags. Any other tag is a free-form category."""
    PASSIVE = "PASSIVE"
    TOGGLEABLE = "TOGGLEABLE"
    ALWAYS_ON = "ALWAYS-ON"
    SCALING = "SCALING"
    UNCAPPED = "UNCAPPED"


KNOWN_FLAGS = frozenset(flag.value for flag in PerkFlag)

# Spellings narrators use for the known flags
FLAG_ALIASES = {
    "TOGGLE": PerkFlag.TOGGLEABLE.value,
    "TOGGLABLE": PerkFlag.TOGGLEABLE.value,
    "ALWAYS ON": PerkFlag.ALWAYS_ON.value,
    "ALWAYSON": PerkFlag.ALWAYS_ON.value,
    "ALWAYS_ON": PerkFlag.ALWAYS_ON.value,
    "SCALES": PerkFlag.SCALING.value,
    "LEVELING": PerkFlag.SCALING.value,
}

DERIVED_FIELDS = frozenset({
    "base_points",
    "spent_points",
    "total_points",
    "available_points",
    "threshold_progress",
})


def normalize_flag(raw: str) -> str:
    """Upper-case a flag and map known aliases; unknown tags pass through."""
    flag = " ".join(str(raw).strip().upper().split())
    return FLAG_ALIASES.get(flag, flag)


def normalize_flags(raw_flags) -> List[str]:
    """Normalize and de-duplicate flags, preserving first-seen order."""
    if raw_flags is None:
        return []
    if isinstance(raw_flags, str):
        raw_flags = raw_flags.split(",")
    seen: List[str] = []
    for raw in raw_flags:
        flag = normalize_flag(raw)
        if flag and flag not in seen:
            seen.append(flag)
    return seen


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ScalingState(BaseModel):
    """Leveling state of a SCALING perk.

    ``max_level=None`` means unbounded (set once the thread owns an UNCAPPED perk).
    """
    level: int = Field(default=1, ge=1)
    xp: int = Field(default=0, ge=0)
    max_level: Optional[int] = Field(default=10, ge=1)
    uncapped: bool = False

    @property
    def is_capped(self) -> bool:
        return not self.uncapped and self.max_level is not None


class Perk(BaseModel):
    """An acquired unlockable. ``name`` is the case-insensitive identity key."""
    name: str = Field(..., min_length=1)
    cost: int = Field(default=0, ge=0)
    description: str = ""
    flags: List[str] = Field(default_factory=list)
    active: bool = True
    scaling: Optional[ScalingState] = None
    acquired_at_turn: int = 0
    source: str = Field(
        default="narrative",
        description="Where the perk came from: narrative | snapshot | manual | archive | pending"
    )

    @field_validator("flags", mode="before")
    @classmethod
    def normalize_flag_values(cls, value):
        return normalize_flags(value)

    @property
    def key(self) -> str:
        return self.name.casefold()

    @property
    def toggleable(self) -> bool:
        return self.has_flag(PerkFlag.TOGGLEABLE)

    @property
    def category_tags(self) -> List[str]:
        """Free-form tags kept for display only."""
        return [f for f in self.flags if f not in KNOWN_FLAGS]

    def has_flag(self, flag: PerkFlag | str) -> bool:
        value = flag.value if isinstance(flag, PerkFlag) else normalize_flag(flag)
        return value in self.flags


class PendingPerk(BaseModel):
    """A perk the narrator declared that the ledger could not yet afford."""
    name: str
    cost: int = Field(default=0, ge=0)
    cp_needed: int = Field(default=0, ge=0)
    description: str = ""
    flags: List[str] = Field(default_factory=list)

    @field_validator("flags", mode="before")
    @classmethod
    def normalize_flag_values(cls, value):
        return normalize_flags(value)

    @property
    def key(self) -> str:
        return self.name.casefold()


class Checkpoint(BaseModel):
    """A labelled copy of the ledger's mutable fields."""
    id: str
    label: str
    created_at: datetime = Field(default_factory=_utcnow)
    turn_count: int = 0
    state: Dict[str, Any] = Field(default_factory=dict)


class Ledger(BaseModel):
    """Canonical economy state for one narrative thread."""
    model_config = ConfigDict(validate_assignment=False)

    turn_count: int = Field(default=0, ge=0)
    points_per_turn: int = 10
    threshold: int = Field(default=100, gt=0)
    bonus_points: int = 0

    # Derived (recomputed by utils.economy.recalculate, never stored)
    base_points: int = 0
    spent_points: int = 0
    total_points: int = 0
    available_points: int = 0
    threshold_progress: int = 0

    last_threshold_crossed: int = Field(default=0, ge=0)
    corruption: int = Field(default=0, ge=0, le=100)
    sanity: int = Field(default=0, ge=0, le=100)

    perks: List[Perk] = Field(default_factory=list)
    pending_perk: Optional[PendingPerk] = None
    checkpoints: List[Checkpoint] = Field(default_factory=list)
    has_uncapped: bool = False

    # One-shot request to append a roll prompt to the next status injection
    roll_requested: bool = False

    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @classmethod
    def new(cls, settings=None) -> "Ledger":
        """Empty ledger using the configured economy constants."""
        if settings is None:
            from forge_ledger.config import get_settings
            settings = get_settings()
        return cls(points_per_turn=settings.points_per_turn, threshold=settings.threshold_points)

    @property
    def active_toggles(self) -> List[str]:
        """Names of toggleable perks currently switched on, in acquisition order."""
        return [p.name for p in self.perks if p.toggleable and p.active]

    def find_perk(self, name: str) -> Optional[Perk]:
        key = name.strip().casefold()
        for perk in self.perks:
            if perk.key == key:
                return perk
        return None

    def to_storage(self) -> Dict[str, Any]:
        """JSON-safe dict without derived fields."""
        return self.model_dump(mode="json", exclude=set(DERIVED_FIELDS))
