"""
Narrative cue parser.

Fallback extraction used when a turn carries no decodable ```forge block.
Each pattern family is a tuple of named ``Rule`` objects so every phrasing
can be tested on its own. Rules are applied in order and a span of text,
once claimed by a match, is never counted again:

* "Award: +20 CP" is one award, not an award plus a "+20 CP".
* A number inside a perk declaration is never read as a point award.

Output is a typed ``NarrativeDelta``; nothing here touches a ledger.
"""
import dataclasses
import logging
import re
from typing import Iterator, List, Optional, Tuple

from forge_ledger.config import get_settings
from forge_ledger.errors import PerkValidationError
from forge_ledger.schemas import (
    NarrativeDelta,
    PerkDeclaration,
    ToggleChange,
    XpGain,
    normalize_flags,
)

logger = logging.getLogger(__name__)

MAX_GAUGE_STEP = 100
MAX_XP_GAIN = 10_000
MAX_AMOUNT_DIGITS = 9

Span = Tuple[int, int]


@dataclasses.dataclass(frozen=True)
class Rule:
    """A named regex. ``sign`` applies to amount rules, ``active`` to toggle rules."""
    name: str
    pattern: re.Pattern
    sign: int = 1
    active: bool = True


_I = re.IGNORECASE
_NAME = r"[A-Z][A-Z \-']+"
_DASH = r"[-–—:]"
_NEG = r"(?<![\w+])[-–—−]"

# ---------------------------------------------------------------------------
# Rule tables
# ---------------------------------------------------------------------------

PERK_RULES: Tuple[Rule, ...] = (
    # **PERK NAME** (100 CP) [FLAGS] - Description
    Rule("bold_flags_first", re.compile(
        rf"\*\*(?P<name>{_NAME})\*\*\s*\((?P<cost>\d+)\s*CP\)\s*"
        rf"\[(?P<flags>[^\]\n]+)\]\s*{_DASH}\s*(?P<desc>[^\n]*)", _I)),
    # **PERK NAME** (100 CP) - Description [FLAGS]
    Rule("bold_declaration", re.compile(
        rf"\*\*(?P<name>{_NAME})\*\*\s*\((?P<cost>\d+)\s*CP\)\s*{_DASH}\s*"
        rf"(?P<desc>[^\[\n]*)(?:\[(?P<flags>[^\]\n]+)\])?", _I)),
    # [ACQUIRED: PERK NAME - 100 CP]
    Rule("acquired_tag", re.compile(
        rf"\[ACQUIRED:\s*(?P<name>{_NAME}?)\s*[-–—]\s*(?P<cost>\d+)\s*CP\]", _I)),
    # You gain **PERK NAME** (100 CP)
    Rule("gain_bold", re.compile(
        rf"\bgain(?:ed|s)?\s+\*\*(?P<name>{_NAME})\*\*\s*\((?P<cost>\d+)\s*CP\)", _I)),
    # The Forge grants: PERK NAME (100 CP)
    Rule("forge_grants", re.compile(
        rf"(?:forge\s+grants|acquired|unlocked|gained):\s*\*{{0,2}}(?P<name>{_NAME}?)\*{{0,2}}"
        rf"\s*\((?P<cost>\d+)\s*CP\)", _I)),
    # PERK NAME (100 CP) [FLAGS] - Description   (line start, upper-case names only)
    Rule("line_declaration", re.compile(
        rf"^(?P<name>[A-Z][A-Z \-']{{3,}}?)\s*\((?P<cost>\d+)\s*CP\)\s*"
        rf"(?:\[(?P<flags>[^\]\n]+)\])?\s*{_DASH}\s*(?P<desc>[^\n]*)$", re.MULTILINE)),
)

POINT_RULES: Tuple[Rule, ...] = (
    Rule("resonance_award", re.compile(
        r"\[FORGE\s+RESONANCE[^\]]*\][^\n]*?\+(?P<amount>\d+)\s*(?:Bonus\s*)?CP\b", _I)),
    Rule("award_label", re.compile(
        r"\bAward:\s*\+?(?P<amount>\d+)\s*(?:Bonus\s*)?CP\b", _I)),
    Rule("gain_verb", re.compile(
        r"\b(?:gains?|earn(?:s|ed)?|receives?|awarded)\s+\+?(?P<amount>\d+)\s*(?:Bonus\s*)?CP\b", _I)),
    Rule("loss_verb", re.compile(
        r"\b(?:loses?|lost|forfeits?)\s+(?P<amount>\d+)\s*(?:Bonus\s*)?CP\b", _I), sign=-1),
    Rule("signed_plus", re.compile(
        r"\+(?P<amount>\d+)\s*(?:Bonus\s*)?CP\b", _I)),
    Rule("signed_minus", re.compile(
        rf"{_NEG}(?P<amount>\d+)\s*(?:Bonus\s*)?CP\b", _I), sign=-1),
)

CORRUPTION_RULES: Tuple[Rule, ...] = (
    Rule("corruption_label_plus", re.compile(r"\bCorruption:\s*\+(?P<amount>\d+)", _I)),
    Rule("corruption_label_minus", re.compile(r"\bCorruption:\s*[-–—−](?P<amount>\d+)", _I), sign=-1),
    Rule("corruption_plus", re.compile(r"\+(?P<amount>\d+)\s*Corruption\b", _I)),
    Rule("corruption_minus", re.compile(rf"{_NEG}(?P<amount>\d+)\s*Corruption\b", _I), sign=-1),
)

_SANITY = r"Sanity(?:\s*(?:Erosion|Cost|Loss))?"

SANITY_RULES: Tuple[Rule, ...] = (
    Rule("sanity_label_plus", re.compile(rf"\b{_SANITY}:\s*\+(?P<amount>\d+)", _I)),
    Rule("sanity_label_minus", re.compile(rf"\b{_SANITY}:\s*[-–—−](?P<amount>\d+)", _I), sign=-1),
    Rule("sanity_plus", re.compile(rf"\+(?P<amount>\d+)\s*{_SANITY}\b", _I)),
    Rule("sanity_minus", re.compile(rf"{_NEG}(?P<amount>\d+)\s*{_SANITY}\b", _I), sign=-1),
)

_MENTION = r"\*{0,2}(?P<mention>[A-Z][A-Za-z \-']+?)\*{0,2}"
_POSSESSIVE = r"(?:(?:your|the|his|her|their|my)\s+)?"

TOGGLE_RULES: Tuple[Rule, ...] = (
    Rule("activate_verb", re.compile(
        rf"\b(?:activate[sd]?|activating|turn(?:s|ed|ing)?\s+on|enable[sd]?|enabling)\s+"
        rf"{_POSSESSIVE}\*{{0,2}}(?P<mention>[A-Za-z][A-Za-z \-']+)\*{{0,2}}", _I), active=True),
    Rule("deactivate_verb", re.compile(
        rf"\b(?:deactivate[sd]?|deactivating|turn(?:s|ed|ing)?\s+off|disable[sd]?|disabling)\s+"
        rf"{_POSSESSIVE}\*{{0,2}}(?P<mention>[A-Za-z][A-Za-z \-']+)\*{{0,2}}", _I), active=False),
    Rule("awaken_subject", re.compile(
        rf"{_MENTION}\s+(?:flickers\s+to\s+life|springs\s+to\s+life|awakens|engages|activates)\b"),
        active=True),
    Rule("fade_subject", re.compile(
        rf"{_MENTION}\s+(?:fades|recedes|disengages|deactivates|goes\s+dormant)\b"),
        active=False),
)

_TRAILING_JOINER = re.compile(r"(?:\s+(?:and|then|while|but|or))+\s*$", _I)

XP_RULES: Tuple[Rule, ...] = (
    # [XP: PERK NAME +5]
    Rule("xp_tag", re.compile(r"\[XP:\s*(?P<name>[^\]\n+]+?)\s*\+(?P<amount>\d+)\s*(?:XP)?\s*\]", _I)),
    # **PERK NAME** gains +5 XP / **PERK NAME**: +5 XP
    Rule("xp_bold", re.compile(
        r"\*\*(?P<name>[^*\n]{3,99})\*\*[^\n*]{0,40}?\+(?P<amount>\d+)\s*XP\b", _I)),
)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def parse_narrative(text: str, settings=None, fallback_reason: Optional[str] = None) -> NarrativeDelta:
    """Scrape every independent cue in *text* into one ``NarrativeDelta``."""
    settings = settings or get_settings()
    delta = NarrativeDelta(fallback_reason=fallback_reason)
    claimed: List[Span] = []

    if settings.auto_detect_perks:
        delta.new_perks = scan_perks(text, claimed, delta.rejected, settings)

    if settings.auto_detect_points:
        delta.points_delta = sum_amounts(
            text, POINT_RULES, claimed, settings.max_points_award, delta.rejected, "points")
        delta.corruption_delta = sum_amounts(
            text, CORRUPTION_RULES, claimed, MAX_GAUGE_STEP, delta.rejected, "corruption")
        delta.sanity_delta = sum_amounts(
            text, SANITY_RULES, claimed, MAX_GAUGE_STEP, delta.rejected, "sanity")

    delta.xp_gains = scan_xp(text, claimed, delta.rejected)
    delta.toggles = scan_toggles(text)

    if delta.rejected:
        logger.info("narrative_rejected | count=%d | entries=%s", len(delta.rejected), delta.rejected)
    return delta


def scan_perks(text: str, claimed: List[Span], rejected: List[str], settings=None) -> List[PerkDeclaration]:
    settings = settings or get_settings()
    found: List[PerkDeclaration] = []

    for rule, match in _iter_matches(text, PERK_RULES):
        groups = match.groupdict()
        try:
            decl = validate_perk(
                groups.get("name") or "",
                groups.get("cost") or "",
                settings,
            )
        except PerkValidationError as exc:
            rejected.append(f"perk:{rule.name}:{exc}")
            continue

        claimed.append(match.span())
        decl.description = _clean_description(groups.get("desc"))
        decl.flags = normalize_flags(groups.get("flags"))
        decl.rule = rule.name

        existing = next((p for p in found if p.name.casefold() == decl.name.casefold()), None)
        if existing is None:
            found.append(decl)
            continue
        # Same perk matched twice in one turn: keep the first, fill its gaps.
        if not existing.description and decl.description:
            existing.description = decl.description
        for flag in decl.flags:
            if flag not in existing.flags:
                existing.flags.append(flag)

    return found


def validate_perk(raw_name: str, raw_cost: str, settings=None) -> PerkDeclaration:
    """Normalize a scraped perk; raise ``PerkValidationError`` if implausible."""
    settings = settings or get_settings()
    name = " ".join(raw_name.replace("*", " ").split()).strip(" -'")
    if len(name) < settings.perk_name_min_length:
        raise PerkValidationError(f"name too short: {name!r}")
    if len(name) > settings.perk_name_max_length:
        raise PerkValidationError(f"name too long: {name[:20]!r}...")
    try:
        cost = _parse_amount(str(raw_cost).strip())
    except ValueError:
        raise PerkValidationError(f"cost not numeric: {_shorten(str(raw_cost))!r}")
    if cost is None or cost < 0 or cost > settings.max_perk_cost:
        raise PerkValidationError(f"cost out of bounds: {_shorten(str(raw_cost))}")
    return PerkDeclaration(name=name, cost=cost)


def sum_amounts(text: str, rules, claimed: List[Span], cap: int,
                rejected: List[str], label: str) -> int:
    """Sum signed amounts from *rules*, skipping matches over claimed spans."""
    total = 0
    for rule, match in _iter_matches(text, rules):
        span = match.span()
        if _overlaps(span, claimed):
            continue
        claimed.append(span)
        raw = match.group("amount")
        amount = _parse_amount(raw)
        if amount is None or amount <= 0 or amount > cap:
            rejected.append(f"{label}:{rule.name}:{_shorten(raw)}")
            continue
        total += rule.sign * amount
    return total


def scan_xp(text: str, claimed: List[Span], rejected: List[str]) -> List[XpGain]:
    gains: List[XpGain] = []
    for rule, match in _iter_matches(text, XP_RULES):
        span = match.span()
        if _overlaps(span, claimed):
            continue
        claimed.append(span)
        name = " ".join(match.group("name").split())
        raw = match.group("amount")
        amount = _parse_amount(raw)
        if amount is None or amount <= 0 or amount > MAX_XP_GAIN:
            rejected.append(f"xp:{rule.name}:{_shorten(raw)}")
            continue
        gains.append(XpGain(name=name, amount=amount, rule=rule.name))
    return gains


def scan_toggles(text: str) -> List[ToggleChange]:
    """
    Toggle cues in order of appearance; the reconciler resolves names.

    A mention never runs into the next cue: "activate Iron Will and disable
    Shadow Cloak" yields "Iron Will" on and "Shadow Cloak" off.
    """
    hits = sorted(_iter_matches(text, TOGGLE_RULES), key=lambda hit: hit[1].start())
    changes = []
    for index, (rule, match) in enumerate(hits):
        end = match.end("mention")
        if index + 1 < len(hits):
            end = min(end, hits[index + 1][1].start())
        mention = _TRAILING_JOINER.sub("", text[match.start("mention"):end])
        mention = " ".join(mention.split())
        if mention:
            changes.append(ToggleChange(mention=mention, active=rule.active, rule=rule.name))
    return changes


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _iter_matches(text: str, rules) -> Iterator[Tuple[Rule, re.Match]]:
    for rule in rules:
        for match in rule.pattern.finditer(text):
            yield rule, match


def _overlaps(span: Span, claimed: List[Span]) -> bool:
    start, end = span
    return any(start < c_end and c_start < end for c_start, c_end in claimed)


def _clean_description(raw: Optional[str]) -> str:
    if not raw:
        return ""
    return " ".join(raw.split()).strip(" -–—:")


def _parse_amount(raw: str) -> Optional[int]:
    """Integer value of a digit run, or ``None`` when it is implausibly long."""
    if len(raw.lstrip("+-")) > MAX_AMOUNT_DIGITS:
        return None
    return int(raw)


def _shorten(raw: str, limit: int = 12) -> str:
    return raw if len(raw) <= limit else raw[:limit] + "..."
