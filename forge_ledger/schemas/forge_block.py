"""
Forge Block Wire Schema

The JSON payload carried inside a ```forge fenced block, both when the
narrator emits one and when the status renderer writes one back::

    { "characters": [ { "stats": {
        "total_cp": int, "available_cp": int, "corruption": int, "sanity": int,
        "perk_count": int, "pending_perk": str, "pending_cp": int,
        "perks": [ { "name", "cost", "flags", "description", "toggleable",
                     "active", "scaling": {"level", "xp", "maxLevel", "uncapped"} | null } ]
    } } ] }

Legacy shapes are normalized into this one by
``forge_ledger.utils.block_normalizer`` before validation.
"""
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class WireModel(BaseModel):
    """Base for wire models: unknown keys are ignored, aliases and names both accepted."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class ForgeScaling(WireModel):
    level: Optional[int] = None
    xp: Optional[int] = None
    max_level: Optional[int] = Field(default=None, alias="maxLevel")
    uncapped: Optional[bool] = None


class ForgePerk(WireModel):
    name: str = Field(..., min_length=1)
    cost: Optional[int] = None
    flags: Optional[List[str]] = None
    description: Optional[str] = None
    toggleable: Optional[bool] = None
    active: Optional[bool] = None
    scaling: Optional[ForgeScaling] = None


class ForgeStats(WireModel):
    total_cp: Optional[int] = None
    available_cp: Optional[int] = None
    corruption: Optional[int] = None
    sanity: Optional[int] = None
    perk_count: Optional[int] = None
    pending_perk: Optional[str] = None
    pending_cp: Optional[int] = None
    perks: List[ForgePerk] = Field(default_factory=list)


class ForgeCharacter(WireModel):
    name: Optional[str] = None
    stats: ForgeStats


class ForgeBlock(WireModel):
    characters: List[ForgeCharacter] = Field(..., min_length=1)
