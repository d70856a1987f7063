"""Tests for forge block location, decoding, legacy normalization and the
structured-vs-narrative choice made by ``extract_candidate``."""

import json

import pytest

from forge_ledger.config import Settings
from forge_ledger.errors import BlockDecodeError
from forge_ledger.schemas import NarrativeDelta, StructuredSnapshot
from forge_ledger.utils.block_normalizer import normalize_forge_payload
from forge_ledger.utils.candidate_extractor import extract_candidate
from forge_ledger.utils.json_extractor import decode_forge_block, locate_forge_block


def fenced(payload, tag="forge"):
    body = payload if isinstance(payload, str) else json.dumps(payload)
    return f"```{tag}\n{body}\n```"


def stats_block(**stats):
    return {"characters": [{"name": "Smith", "stats": stats}]}


class TestLocateForgeBlock:

    def test_no_block(self):
        assert locate_forge_block("Just prose.") is None

    def test_ignores_other_fences(self):
        assert locate_forge_block("```json\n{}\n```") is None

    def test_last_block_wins(self):
        text = fenced(stats_block(corruption=10)) + "\nmore prose\n" + fenced(stats_block(corruption=40))
        raw, (start, end) = locate_forge_block(text)
        assert json.loads(raw)["characters"][0]["stats"]["corruption"] == 40
        assert text[start:end].startswith("```forge")
        assert end == len(text)

    def test_unclosed_fence_runs_to_end(self):
        raw, _ = locate_forge_block('prose\n```forge\n{"stats": {"sanity": 3}}')
        assert json.loads(raw) == {"stats": {"sanity": 3}}

    def test_custom_tag(self):
        assert locate_forge_block(fenced({}, tag="ledger"), tag="ledger") is not None


class TestDecodeForgeBlock:

    def test_canonical_block(self):
        snap = decode_forge_block(json.dumps(stats_block(
            total_cp=300, available_cp=50, corruption=12, sanity=4, perk_count=1,
            pending_perk="STAR FORGE", pending_cp=400,
            perks=[{
                "name": "IRON WILL", "cost": 250, "flags": ["PASSIVE"], "description": "Tough.",
                "toggleable": False, "active": True,
                "scaling": {"level": 2, "xp": 5, "maxLevel": 10, "uncapped": False},
            }],
        )))
        assert snap.kind == "snapshot"
        assert snap.total_points == 300
        assert snap.available_points == 50
        assert snap.corruption == 12
        assert snap.pending_perk.name == "STAR FORGE"
        assert snap.pending_perk.cost == 400
        perk = snap.perks[0]
        assert (perk.name, perk.cost, perk.flags) == ("IRON WILL", 250, ["PASSIVE"])
        assert (perk.scaling.level, perk.scaling.xp, perk.scaling.max_level) == (2, 5, 10)

    def test_absent_fields_mean_no_opinion(self):
        snap = decode_forge_block(json.dumps(stats_block(corruption=5)))
        assert snap.sanity is None
        assert snap.total_points is None
        assert snap.pending_perk is None
        assert snap.perks == []

    def test_empty_pending_is_explicit(self):
        snap = decode_forge_block(json.dumps(stats_block(pending_perk="")))
        assert snap.pending_perk is not None
        assert snap.pending_perk.name == ""

    def test_legacy_pipe_joined_perks(self):
        snap = decode_forge_block(json.dumps(stats_block(
            total_cp=300, perks="IRON WILL (100 CP) | STAR FORGE (150 CP)",
        )))
        assert [(p.name, p.cost) for p in snap.perks] == [("IRON WILL", 100), ("STAR FORGE", 150)]

    def test_camel_case_and_numeric_strings(self):
        snap = decode_forge_block(json.dumps({"stats": {
            "totalCP": "250 CP", "sanityErosion": "7", "pendingPerk": "ARC LAMP", "pendingPerkCost": 50,
        }}))
        assert snap.total_points == 250
        assert snap.sanity == 7
        assert snap.pending_perk.name == "ARC LAMP"
        assert snap.pending_perk.cost == 50

    def test_bare_stats_object(self):
        snap = decode_forge_block(json.dumps({"corruption": 5, "perks": []}))
        assert snap.corruption == 5

    def test_brace_scan_inside_fence(self):
        raw = 'Here is the block: {"characters": [{"stats": {"corruption": 30}}]} done'
        assert decode_forge_block(raw).corruption == 30

    def test_non_finite_literals_rejected(self):
        for literal in ("NaN", "Infinity", "-Infinity"):
            with pytest.raises(BlockDecodeError):
                decode_forge_block('{"stats": {"corruption": ' + literal + "}}")

    def test_out_of_range_numbers_mean_no_opinion(self):
        raw = (
            '{"stats": {"total_cp": 1e400, "corruption": 12, "perk_count": 1000000000000, '
            '"sanity": "' + "9" * 5000 + ' CP"}}'
        )
        snap = decode_forge_block(raw)
        assert snap.total_points is None
        assert snap.sanity is None
        assert snap.perk_count is None
        assert snap.corruption == 12

    def test_invalid_json(self):
        with pytest.raises(BlockDecodeError):
            decode_forge_block("{not json}")

    def test_wrong_shape(self):
        with pytest.raises(BlockDecodeError):
            decode_forge_block("[1, 2, 3]")

    def test_empty(self):
        with pytest.raises(BlockDecodeError):
            decode_forge_block("")


class TestNormalizer:

    def test_single_character_object(self):
        result = normalize_forge_payload({"characters": {"stats": {"total_cp": 10}}})
        assert result["characters"][0]["stats"]["total_cp"] == 10

    def test_keyed_perk_dict_and_flag_string(self):
        result = normalize_forge_payload({"stats": {"perks": {
            "ARC LAMP": {"cost": "30", "flags": "TOGGLEABLE, Light", "isActive": False},
        }}})
        perk = result["characters"][0]["stats"]["perks"][0]
        assert perk["name"] == "ARC LAMP"
        assert perk["cost"] == 30
        assert perk["flags"] == ["TOGGLEABLE", "Light"]
        assert perk["active"] is False

    def test_pending_perk_object(self):
        result = normalize_forge_payload({"stats": {"pending_perk": {"name": "STAR FORGE", "cost": 400}}})
        stats = result["characters"][0]["stats"]
        assert stats["pending_perk"] == "STAR FORGE"
        assert stats["pending_cp"] == 400

    def test_unrecognized_payload(self):
        with pytest.raises(BlockDecodeError):
            normalize_forge_payload({"weather": "rain"})


class TestExtractCandidate:

    def test_no_block_gives_narrative(self):
        candidate = extract_candidate("**IRON WILL** (100 CP) - Tough.", Settings())
        assert isinstance(candidate, NarrativeDelta)
        assert candidate.new_perks[0].name == "IRON WILL"

    def test_valid_block_ignores_prose(self):
        text = "+50 CP and **IRON WILL** (100 CP) - Tough.\n" + fenced(stats_block(corruption=20))
        candidate = extract_candidate(text, Settings())
        assert isinstance(candidate, StructuredSnapshot)
        assert candidate.corruption == 20
        assert candidate.perks == []

    def test_broken_block_falls_back_once(self):
        text = "**IRON WILL** (100 CP) - Tough.\n```forge\n{\"stats\": {\"total_cp\": +50 CP}\n```"
        candidate = extract_candidate(text, Settings())
        assert isinstance(candidate, NarrativeDelta)
        assert candidate.fallback_reason
        assert [p.name for p in candidate.new_perks] == ["IRON WILL"]
        # The "+50 CP" inside the broken block is not scraped
        assert candidate.points_delta == 0
