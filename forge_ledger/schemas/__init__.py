# Forge Ledger Schema Definitions
from .ledger_schemas import (
    PerkFlag,
    KNOWN_FLAGS,
    DERIVED_FIELDS,
    normalize_flag,
    normalize_flags,
    ScalingState,
    Perk,
    PendingPerk,
    Checkpoint,
    Ledger,
)
from .candidate_schemas import (
    # Structured snapshot (state)
    SnapshotScaling,
    SnapshotPerk,
    SnapshotPending,
    StructuredSnapshot,
    # Narrative delta (changes)
    PerkDeclaration,
    ToggleChange,
    XpGain,
    NarrativeDelta,
    Candidate,
    # Reconciler output
    ReconcileResult,
)
from .forge_block import (
    ForgeScaling,
    ForgePerk,
    ForgeStats,
    ForgeCharacter,
    ForgeBlock,
)

__all__ = [
    "PerkFlag",
    "KNOWN_FLAGS",
    "DERIVED_FIELDS",
    "normalize_flag",
    "normalize_flags",
    "ScalingState",
    "Perk",
    "PendingPerk",
    "Checkpoint",
    "Ledger",
    "SnapshotScaling",
    "SnapshotPerk",
    "SnapshotPending",
    "StructuredSnapshot",
    "PerkDeclaration",
    "ToggleChange",
    "XpGain",
    "NarrativeDelta",
    "Candidate",
    "ReconcileResult",
    "ForgeScaling",
    "ForgePerk",
    "ForgeStats",
    "ForgeCharacter",
    "ForgeBlock",
]
