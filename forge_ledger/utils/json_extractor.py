"""
Forge block extraction for narrator output.

Locates the ```forge fenced block, decodes its JSON payload (falling back
to balanced-brace scanning inside the fence), normalizes legacy shapes and
validates it into a ``StructuredSnapshot``.
"""
import json
import logging
import re
from typing import Optional, Tuple

from pydantic import ValidationError

from forge_ledger.errors import BlockDecodeError
from forge_ledger.schemas import (
    ForgeBlock,
    SnapshotPending,
    SnapshotPerk,
    SnapshotScaling,
    StructuredSnapshot,
)
from forge_ledger.utils.block_normalizer import normalize_forge_payload

logger = logging.getLogger(__name__)

Span = Tuple[int, int]


def locate_forge_block(text: str, tag: str = "forge") -> Optional[Tuple[str, Span]]:
    """
    Find the **last** ```<tag> ... ``` fenced block in *text*.

    Returns the payload between the fences and the span of the whole block
    (fences included), or ``None`` when there is no such block. An unclosed
    fence runs to the end of the text.
    """
    opener = re.compile(rf"```[ \t]*{re.escape(tag)}\b[ \t]*(?:\r?\n)?", re.IGNORECASE)
    last = None
    for match in opener.finditer(text):
        last = match
    if last is None:
        return None

    start = last.end()
    end = text.find("```", start)
    if end == -1:
        return text[start:].strip(), (last.start(), len(text))
    return text[start:end].strip(), (last.start(), end + 3)


def decode_forge_block(raw: str) -> StructuredSnapshot:
    """
    Decode a block payload into a ``StructuredSnapshot``.

    Raises ``BlockDecodeError`` on invalid JSON or an unrecognizable shape.
    """
    if not raw:
        raise BlockDecodeError("empty block")

    try:
        parsed = _load_json(raw)
    except ValueError as exc:
        candidate = _extract_by_brace_scan(raw)
        if candidate is None:
            raise BlockDecodeError(f"invalid JSON: {exc}") from exc
        parsed = _load_json(candidate)

    canonical = normalize_forge_payload(parsed)

    try:
        block = ForgeBlock.model_validate(canonical)
    except ValidationError as exc:
        raise BlockDecodeError(
            f"schema mismatch ({exc.error_count()} issues): {exc.errors()[:3]}"
        ) from exc

    return block_to_snapshot(block)


def block_to_snapshot(block: ForgeBlock) -> StructuredSnapshot:
    """Map the primary character's wire stats onto the canonical snapshot."""
    stats = block.characters[0].stats

    perks = []
    for perk in stats.perks:
        scaling = None
        if perk.scaling is not None:
            scaling = SnapshotScaling(
                level=perk.scaling.level,
                xp=perk.scaling.xp,
                max_level=perk.scaling.max_level,
                uncapped=perk.scaling.uncapped,
            )
        perks.append(SnapshotPerk(
            name=perk.name.strip(),
            cost=max(0, perk.cost) if perk.cost is not None else None,
            description=perk.description,
            flags=perk.flags,
            toggleable=perk.toggleable,
            active=perk.active,
            scaling=scaling,
        ))

    pending = None
    if stats.pending_perk is not None:
        pending = SnapshotPending(name=stats.pending_perk.strip(), cost=stats.pending_cp)

    return StructuredSnapshot(
        corruption=stats.corruption,
        sanity=stats.sanity,
        total_points=stats.total_cp,
        available_points=stats.available_cp,
        perk_count=stats.perk_count,
        perks=perks,
        pending_perk=pending,
    )


def _load_json(raw: str):
    """``json.loads`` that refuses NaN and Infinity literals.

    Integers past the interpreter's digit limit raise ``ValueError`` too,
    so callers catch ``ValueError`` rather than only ``JSONDecodeError``.
    """
    return json.loads(raw, parse_constant=_reject_constant)


def _reject_constant(name: str):
    raise ValueError(f"non-finite number: {name}")


# ---------------------------------------------------------------------------
# Brace scanning
# ---------------------------------------------------------------------------

def _extract_by_brace_scan(text: str) -> Optional[str]:
    """
    Find the first balanced ``{…}`` block in *text* that parses as valid JSON.

    Scans forwards so the outermost object wins over nested ones, skipping
    any stray ``{`` in prose before it.
    """
    search_from = 0

    while True:
        open_idx = text.find("{", search_from)
        if open_idx == -1:
            return None

        close_idx = _find_matching_brace(text, open_idx)
        if close_idx is not None:
            candidate = text[open_idx : close_idx + 1]
            try:
                _load_json(candidate)
                return candidate
            except ValueError:
                pass

        search_from = open_idx + 1


def _find_matching_brace(text: str, start: int) -> Optional[int]:
    """
    Return the index of the ``}`` that balances the ``{`` at *start*,
    respecting JSON string literals so embedded braces don't confuse the count.
    """
    depth = 0
    in_string = False
    escape = False

    for i in range(start, len(text)):
        ch = text[i]

        if escape:
            escape = False
            continue

        if ch == "\\":
            if in_string:
                escape = True
            continue

        if ch == '"':
            in_string = not in_string
            continue

        if in_string:
            continue

        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i

    return None
