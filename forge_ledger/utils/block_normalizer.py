"""
Forge Block Normalizer

Converts the payload shapes narrators have emitted over time into the one
canonical wire shape validated by ``forge_ledger.schemas.ForgeBlock``.

Accepted variants:
    {"characters": [{"stats": {...}}]}      canonical
    {"characters": {"stats": {...}}}        single character object
    {"stats": {...}}                        no characters wrapper
    {"total_cp": ..., "perks": ...}         bare stats object
    "perks": "NAME (100 CP) | OTHER (50 CP)"  pipe-joined perk string
    camelCase keys (totalCP, pendingPerk, isToggleable, max_level, ...)
    numeric strings ("150 CP", "35")

Usage:
    from forge_ledger.utils.block_normalizer import normalize_forge_payload

    canonical = normalize_forge_payload(json.loads(raw))
"""
from typing import Any, Dict, List, Optional
import copy
import logging
import math
import re

from forge_ledger.errors import BlockDecodeError

logger = logging.getLogger(__name__)

STATS_ALIASES = {
    "totalcp": "total_cp",
    "total_points": "total_cp",
    "totalpoints": "total_cp",
    "availablecp": "available_cp",
    "available_points": "available_cp",
    "sanity_erosion": "sanity",
    "sanityerosion": "sanity",
    "perkcount": "perk_count",
    "pendingperk": "pending_perk",
    "pendingcp": "pending_cp",
    "pending_cost": "pending_cp",
    "pendingperkcost": "pending_cp",
    "pending_perk_cost": "pending_cp",
}

PERK_ALIASES = {
    "istoggleable": "toggleable",
    "isactive": "active",
    "desc": "description",
}

SCALING_ALIASES = {
    "max_level": "maxLevel",
    "maxlevel": "maxLevel",
    "isuncapped": "uncapped",
}

STATS_KEYS = frozenset({
    "total_cp", "available_cp", "corruption", "sanity", "perk_count",
    "pending_perk", "pending_cp", "perks",
})

MAX_INT_DIGITS = 9
MAX_INT_MAGNITUDE = 10 ** MAX_INT_DIGITS

_INT_IN_TEXT = re.compile(r"-?\d+")
_PERK_ENTRY = re.compile(r"^\s*(?P<name>.+?)\s*\(\s*(?P<cost>\d{1,9})\s*CP\s*\)\s*$", re.IGNORECASE)


def normalize_forge_payload(payload: Any) -> Dict[str, Any]:
    """
    Return ``{"characters": [{"stats": {...}}]}`` in canonical form.

    Raises ``BlockDecodeError`` when no stats object can be found.
    """
    if not isinstance(payload, dict):
        raise BlockDecodeError(f"payload is {type(payload).__name__}, expected object")

    characters = _find_characters(payload)
    if not characters:
        raise BlockDecodeError(f"no character stats in payload (keys={list(payload.keys())[:10]})")

    fixed = []
    for character in characters:
        result = copy.deepcopy(character)
        result["stats"] = _fix_stats(character["stats"])
        fixed.append(result)
    return {"characters": fixed}


def _find_characters(payload: Dict[str, Any]) -> List[Dict[str, Any]]:
    if "characters" in payload:
        characters = payload["characters"]
        if isinstance(characters, dict):
            characters = [characters]
        if not isinstance(characters, list):
            return []
        return [c for c in characters if isinstance(c, dict) and isinstance(c.get("stats"), dict)]

    if isinstance(payload.get("stats"), dict):
        return [payload]

    rekeyed = {_alias(k, STATS_ALIASES) for k in payload}
    if rekeyed & STATS_KEYS:
        return [{"stats": payload}]
    return []


def _fix_stats(stats: Dict[str, Any]) -> Dict[str, Any]:
    """Rename legacy keys, coerce numbers and normalize the perk list."""
    result: Dict[str, Any] = {}
    for key, value in stats.items():
        result[_alias(key, STATS_ALIASES)] = value

    for key in ("total_cp", "available_cp", "corruption", "sanity", "perk_count", "pending_cp"):
        if key in result:
            result[key] = _coerce_int(result[key])

    pending = result.get("pending_perk")
    if isinstance(pending, dict):
        result["pending_perk"] = str(pending.get("name") or "")
        if "pending_cp" not in result or result["pending_cp"] is None:
            result["pending_cp"] = _coerce_int(pending.get("cost"))
    elif pending is not None and not isinstance(pending, str):
        result["pending_perk"] = str(pending)

    result["perks"] = _fix_perks(result.get("perks"))
    return result


def _fix_perks(perks: Any) -> List[Dict[str, Any]]:
    if perks is None:
        return []
    if isinstance(perks, str):
        return _parse_perk_string(perks)
    if isinstance(perks, dict):
        # {"NAME": {...}} keyed form
        perks = [
            {"name": name, **(data if isinstance(data, dict) else {})}
            for name, data in perks.items()
        ]
    if not isinstance(perks, list):
        logger.info("forge_block_perks_ignored | type=%s", type(perks).__name__)
        return []

    fixed = []
    for perk in perks:
        if isinstance(perk, str):
            fixed.extend(_parse_perk_string(perk))
        elif isinstance(perk, dict) and perk.get("name"):
            fixed.append(_fix_perk(perk))
    return fixed


def _fix_perk(perk: Dict[str, Any]) -> Dict[str, Any]:
    result = {_alias(k, PERK_ALIASES): v for k, v in perk.items()}
    result["name"] = str(result["name"]).strip()

    if "cost" in result:
        result["cost"] = _coerce_int(result["cost"])
    if isinstance(result.get("flags"), str):
        result["flags"] = [f.strip() for f in result["flags"].split(",") if f.strip()]

    scaling = result.get("scaling")
    if isinstance(scaling, dict):
        fixed_scaling = {_alias(k, SCALING_ALIASES): v for k, v in scaling.items()}
        for key in ("level", "xp", "maxLevel"):
            if key in fixed_scaling:
                fixed_scaling[key] = _coerce_int(fixed_scaling[key])
        result["scaling"] = fixed_scaling
    elif scaling is not None:
        result["scaling"] = None
    return result


def _parse_perk_string(raw: str) -> List[Dict[str, Any]]:
    """``"NAME (100 CP) | OTHER (50 CP)"`` -> list of perk dicts."""
    perks = []
    for entry in raw.split("|"):
        entry = entry.strip()
        if not entry:
            continue
        match = _PERK_ENTRY.match(entry)
        if match:
            perks.append({"name": match.group("name").strip(), "cost": int(match.group("cost"))})
        else:
            perks.append({"name": entry})
    return perks


def _alias(key: str, aliases: Dict[str, str]) -> str:
    lowered = str(key).lower()
    return aliases.get(lowered, lowered if lowered in STATS_KEYS else key)


def _coerce_int(value: Any) -> Optional[int]:
    """Best-effort integer; ``None`` for anything non-finite or out of range."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        value = int(value)
    elif not isinstance(value, int):
        match = _INT_IN_TEXT.search(str(value))
        if match is None or len(match.group(0).lstrip("-")) > MAX_INT_DIGITS:
            return None
        value = int(match.group(0))
    if abs(value) > MAX_INT_MAGNITUDE:
        return None
    return value
