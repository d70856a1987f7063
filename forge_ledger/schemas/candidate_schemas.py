"""
Candidate Schema Definitions

One narrator turn is turned into exactly one ``Candidate``:

* ``StructuredSnapshot``: decoded from an embedded ```forge block. Reports
  *state*; every field is optional and ``None`` means "no opinion".
* ``NarrativeDelta``: scraped from prose. Reports *changes*; numeric
  fields are additive.

``ReconcileResult`` is what the reconciler hands back alongside the next ledger.
"""
from __future__ import annotations

from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Structured snapshot
# ---------------------------------------------------------------------------

class SnapshotScaling(BaseModel):
    level: Optional[int] = None
    xp: Optional[int] = None
    max_level: Optional[int] = None
    uncapped: Optional[bool] = None


class SnapshotPerk(BaseModel):
    name: str
    cost: Optional[int] = None
    description: Optional[str] = None
    flags: Optional[List[str]] = None
    toggleable: Optional[bool] = None
    active: Optional[bool] = None
    scaling: Optional[SnapshotScaling] = None


class SnapshotPending(BaseModel):
    """Declared pending perk. An empty ``name`` means "nothing pending"."""
    name: str = ""
    cost: Optional[int] = None


class StructuredSnapshot(BaseModel):
    kind: Literal["snapshot"] = "snapshot"
    corruption: Optional[int] = None
    sanity: Optional[int] = None
    total_points: Optional[int] = None
    available_points: Optional[int] = None
    perk_count: Optional[int] = None
    perks: List[SnapshotPerk] = Field(default_factory=list)
    pending_perk: Optional[SnapshotPending] = None


# ---------------------------------------------------------------------------
# Narrative delta
# ---------------------------------------------------------------------------

class PerkDeclaration(BaseModel):
    name: str
    cost: int
    description: str = ""
    flags: List[str] = Field(default_factory=list)
    rule: str = Field(default="", description="Name of the rule that matched")


class ToggleChange(BaseModel):
    mention: str = Field(..., description="Raw text following the toggle verb")
    active: bool
    rule: str = ""


class XpGain(BaseModel):
    name: str
    amount: int
    rule: str = ""


class NarrativeDelta(BaseModel):
    kind: Literal["narrative"] = "narrative"
    new_perks: List[PerkDeclaration] = Field(default_factory=list)
    corruption_delta: int = 0
    sanity_delta: int = 0
    points_delta: int = 0
    toggles: List[ToggleChange] = Field(default_factory=list)
    xp_gains: List[XpGain] = Field(default_factory=list)
    rejected: List[str] = Field(default_factory=list)
    fallback_reason: Optional[str] = Field(
        default=None,
        description="Set when a structured block was present but failed to decode"
    )

    @property
    def is_empty(self) -> bool:
        return not (
            self.new_perks or self.corruption_delta or self.sanity_delta
            or self.points_delta or self.toggles or self.xp_gains
        )


Candidate = Annotated[Union[StructuredSnapshot, NarrativeDelta], Field(discriminator="kind")]


# ---------------------------------------------------------------------------
# Reconciliation output
# ---------------------------------------------------------------------------

class ReconcileResult(BaseModel):
    turn_count: int
    candidate_kind: str
    changes: List[str] = Field(default_factory=list)
    acquired: List[str] = Field(default_factory=list)
    pended: Optional[str] = None
    thresholds_crossed: List[int] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
