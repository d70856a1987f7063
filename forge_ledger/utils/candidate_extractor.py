"""
Turn one narrator message into exactly one candidate update.

A decodable ```forge block wins outright and the prose is ignored. A block
that fails to decode is cut out of the text and the rest is scraped once
as narrative cues, so nothing is counted through both paths.
"""
import logging

from forge_ledger.config import get_settings
from forge_ledger.errors import BlockDecodeError
from forge_ledger.schemas import NarrativeDelta, StructuredSnapshot
from forge_ledger.utils.json_extractor import decode_forge_block, locate_forge_block
from forge_ledger.utils.narrative_parser import parse_narrative

logger = logging.getLogger(__name__)


def extract_candidate(text: str, settings=None) -> StructuredSnapshot | NarrativeDelta:
    settings = settings or get_settings()
    text = text or ""

    located = locate_forge_block(text, settings.block_tag)
    if located is None:
        return parse_narrative(text, settings)

    raw, (start, end) = located
    try:
        snapshot = decode_forge_block(raw)
    except BlockDecodeError as exc:
        logger.warning(
            "forge_block_decode_failed | error=%s | raw_head=%.200s", exc, raw,
        )
        return parse_narrative(text[:start] + text[end:], settings, fallback_reason=str(exc))

    logger.info(
        "forge_block_decoded | perks=%d | total_cp=%s",
        len(snapshot.perks), snapshot.total_points,
    )
    return snapshot
