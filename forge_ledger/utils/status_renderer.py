"""
Status renderer.

Formats a ledger into the block injected into the narrator's next prompt:
a plain-language summary followed by a fenced ``forge`` block carrying the
same JSON shape the extractor accepts, so ``decode(render(ledger))``
reconciles against ``ledger`` with no changes.
"""
import json
from typing import Any, Dict, List

from forge_ledger.config import get_settings
from forge_ledger.schemas import Ledger, Perk

USAGE_HINT = (
    "[The Forge tracks all. When generating perks, use format: "
    "**PERK NAME** (XXX CP) - Description [FLAGS] for auto-detection.]"
)

EMPTY_PERK_LIST = "None yet - the Forge awaits its first resonance."


def ledger_to_block(ledger: Ledger) -> Dict[str, Any]:
    """The wire payload for *ledger* (``characters[0].stats``)."""
    pending = ledger.pending_perk
    stats = {
        "total_cp": ledger.total_points,
        "available_cp": ledger.available_points,
        "corruption": ledger.corruption,
        "sanity": ledger.sanity,
        "perk_count": len(ledger.perks),
        "pending_perk": pending.name if pending else "",
        "pending_cp": pending.cost if pending else 0,
        "perks": [_perk_to_wire(perk) for perk in ledger.perks],
    }
    return {"characters": [{"name": "Smith", "stats": stats}]}


def _perk_to_wire(perk: Perk) -> Dict[str, Any]:
    scaling = None
    if perk.scaling is not None:
        scaling = {
            "level": perk.scaling.level,
            "xp": perk.scaling.xp,
            "maxLevel": None if perk.scaling.uncapped else perk.scaling.max_level,
            "uncapped": perk.scaling.uncapped,
        }
    return {
        "name": perk.name,
        "cost": perk.cost,
        "flags": list(perk.flags),
        "description": perk.description,
        "toggleable": perk.toggleable,
        "active": perk.active,
        "scaling": scaling,
    }


def render_block(ledger: Ledger, tag: str = None) -> str:
    tag = tag or get_settings().block_tag
    payload = json.dumps(ledger_to_block(ledger), indent=2, ensure_ascii=False)
    return f"```{tag}\n{payload}\n```"


def _gauge_warnings(ledger: Ledger) -> List[str]:
    warnings = []
    if ledger.corruption >= 75:
        warnings.append("[WARNING: High corruption - dark aesthetics intensifying]")
    elif ledger.corruption >= 50:
        warnings.append("[Note: Moderate corruption - Dark Forge resonance strengthening]")
    if ledger.sanity >= 75:
        warnings.append("[WARNING: High sanity erosion - reality perception shifting]")
    elif ledger.sanity >= 50:
        warnings.append("[Note: Moderate sanity erosion - Eldritch insights accumulating]")
    return warnings


def _pending_text(ledger: Ledger) -> str:
    pending = ledger.pending_perk
    if pending is None:
        return "None"
    remaining = pending.cost - ledger.available_points
    if remaining > 0:
        return f"{pending.name} ({pending.cost} CP) - {remaining} CP remaining to manifest"
    return f"{pending.name} ({pending.cost} CP) - READY TO MANIFEST!"


def _perk_line(index: int, perk: Perk) -> str:
    line = f"{index}. {perk.name} ({perk.cost} CP)"
    if perk.toggleable:
        line += " [ACTIVE]" if perk.active else " [INACTIVE]"
    if perk.scaling is not None:
        cap = "∞" if perk.scaling.max_level is None else perk.scaling.max_level
        line += f" [Lv {perk.scaling.level}/{cap}, {perk.scaling.xp} XP]"
    if perk.description:
        line += f" - {perk.description}"
    if perk.flags:
        line += f" [{', '.join(perk.flags)}]"
    return line


def render_summary(ledger: Ledger) -> str:
    """Plain-language status for the narrator."""
    perk_list = EMPTY_PERK_LIST
    if ledger.perks:
        perk_list = "\n".join(_perk_line(i, p) for i, p in enumerate(ledger.perks, start=1))

    toggles = ", ".join(ledger.active_toggles) or "None active"
    gauge_block = "\n".join(
        [f"Corruption Level: {ledger.corruption}/100", f"Sanity Erosion: {ledger.sanity}/100"]
        + _gauge_warnings(ledger)
    )

    return (
        "[CELESTIAL FORGE - CURRENT STATUS]\n"
        f"Response Count: {ledger.turn_count}\n"
        f"Total CP Earned: {ledger.total_points} | Available: {ledger.available_points}\n"
        f"(Base: {ledger.base_points} + Bonus: {ledger.bonus_points} - Spent: {ledger.spent_points})\n"
        f"Threshold Progress: {ledger.threshold_progress}/{ledger.threshold} CP until next resonance\n"
        "\n"
        f"{gauge_block}\n"
        "\n"
        f"Pending Perk: {_pending_text(ledger)}\n"
        f"Currently Active Toggles: {toggles}\n"
        "\n"
        f"ACQUIRED PERKS ({len(ledger.perks)}):\n"
        f"{perk_list}\n"
        "\n"
        f"{USAGE_HINT}"
    )


def render_status(ledger: Ledger, settings=None) -> str:
    """Summary followed by the fenced structured block."""
    settings = settings or get_settings()
    return f"{render_summary(ledger)}\n\n{render_block(ledger, settings.block_tag)}"


def render_roll_prompt(ledger: Ledger) -> str:
    """One-shot instruction appended to the next injection after a manual roll."""
    return (
        "\n\n[CELESTIAL FORGE - MANUAL ROLL TRIGGERED]\n"
        f"The Smith calls upon the Forge. Available CP: {ledger.available_points}\n"
        "Roll a constellation and generate an appropriate perk. Follow the generation guidelines.\n"
        "If the rolled perk costs more than available CP, set it as PENDING.\n"
        "[END FORGE TRIGGER]\n"
    )
