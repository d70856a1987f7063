"""Ledger helper functions.

Contains:
- ``compute_ledger_diff``: human-readable diff between two stored ledgers
- ``load_ledger``: rebuild a ledger from storage and recompute derived fields
"""

from __future__ import annotations

from typing import Any, Dict

from forge_ledger.schemas import Ledger
from forge_ledger.utils.economy import recalculate

# Fields compared by ``compute_ledger_diff``
DIFF_FIELDS = [
    "turn_count",
    "bonus_points",
    "corruption",
    "sanity",
    "last_threshold_crossed",
    "has_uncapped",
    "pending_perk",
]

MAX_DIFF_LINES = 20


def load_ledger(data: Dict[str, Any] | None, settings=None) -> Ledger:
    """Validate a stored ledger dict; ``None`` or empty gives a new ledger."""
    if not data:
        return recalculate(Ledger.new(settings))
    return recalculate(Ledger.model_validate(data))


def compute_ledger_diff(before: dict, after: dict, turn: int) -> str:
    """
    Compute a human-readable diff between ledger snapshots.
    Shows what a single turn changed.
    """
    lines = [f"[System] **Ledger Changes (Turn {turn}):**\n\n"]

    def diff_value(path: str, old_val, new_val):
        if old_val == new_val:
            return []
        if old_val is None:
            return [f"**+ Added {path}**: {_short(new_val)}"]
        if new_val is None:
            return [f"**- Removed {path}**"]
        if isinstance(old_val, dict) and isinstance(new_val, dict):
            changes = []
            for key in sorted(set(old_val) | set(new_val)):
                changes.extend(diff_value(f"{path}.{key}", old_val.get(key), new_val.get(key)))
            return changes
        return [f"**{path}**: {_short(old_val)} → {_short(new_val)}"]

    total_changes = []
    for field in DIFF_FIELDS:
        total_changes.extend(diff_value(field, before.get(field), after.get(field)))

    old_perks = {p["name"].casefold(): p for p in before.get("perks", [])}
    new_perks = {p["name"].casefold(): p for p in after.get("perks", [])}
    for key, perk in new_perks.items():
        if key not in old_perks:
            total_changes.append(f"**+ Acquired** {perk['name']} ({perk.get('cost', 0)} CP)")
        else:
            total_changes.extend(
                diff_value(f"perks[{perk['name']}]", _perk_view(old_perks[key]), _perk_view(perk))
            )
    for key, perk in old_perks.items():
        if key not in new_perks:
            total_changes.append(f"**- Lost** {perk['name']}")

    if not total_changes:
        lines.append("No changes detected in the ledger.\n")
    else:
        lines.extend([f"{c}\n" for c in total_changes[:MAX_DIFF_LINES]])
        if len(total_changes) > MAX_DIFF_LINES:
            lines.append(f"... and {len(total_changes) - MAX_DIFF_LINES} more changes.\n")

    return "".join(lines)


def _perk_view(perk: dict) -> dict:
    return {
        "cost": perk.get("cost"),
        "active": perk.get("active"),
        "flags": perk.get("flags"),
        "scaling": perk.get("scaling"),
    }


def _short(value) -> str:
    text = str(value) if value not in (None, "") else "(empty)"
    return text[:50]
