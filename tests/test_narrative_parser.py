"""Tests for the narrative cue parser.

Each rule family is exercised on its own, then together to check that a
numeral is never counted by two rules.
"""

import pytest

from forge_ledger.config import Settings
from forge_ledger.utils.narrative_parser import (
    parse_narrative,
    scan_toggles,
    validate_perk,
)
from forge_ledger.errors import PerkValidationError


@pytest.fixture
def cfg():
    return Settings()


class TestPerkRules:

    def test_bold_declaration_with_trailing_flags(self, cfg):
        delta = parse_narrative("**IRON WILL** (100 CP) - The mind cannot be bent. [PASSIVE]", cfg)
        assert len(delta.new_perks) == 1
        perk = delta.new_perks[0]
        assert perk.name == "IRON WILL"
        assert perk.cost == 100
        assert perk.description == "The mind cannot be bent."
        assert perk.flags == ["PASSIVE"]
        assert perk.rule == "bold_declaration"

    def test_flags_before_description(self, cfg):
        delta = parse_narrative("**SHADOW STEP** (200 CP) [TOGGLEABLE, Stealth] - Step through shadows.", cfg)
        perk = delta.new_perks[0]
        assert perk.rule == "bold_flags_first"
        assert perk.flags == ["TOGGLEABLE", "STEALTH"]
        assert perk.description == "Step through shadows."

    def test_em_dash_and_colon_separators(self, cfg):
        text = "**EMBER HEART** (50 CP) — Warmth within.\n**FROST SKIN** (60 CP): Cold without."
        names = [p.name for p in parse_narrative(text, cfg).new_perks]
        assert names == ["EMBER HEART", "FROST SKIN"]

    def test_acquired_tag(self, cfg):
        delta = parse_narrative("[ACQUIRED: IRON WILL - 100 CP]", cfg)
        assert [(p.name, p.cost) for p in delta.new_perks] == [("IRON WILL", 100)]

    def test_forge_grants(self, cfg):
        delta = parse_narrative("The Forge grants: **STAR FORGE** (150 CP)", cfg)
        assert [(p.name, p.cost) for p in delta.new_perks] == [("STAR FORGE", 150)]

    def test_line_declaration_upper_case_only(self, cfg):
        text = "MIRROR SOUL (80 CP) [TOGGLEABLE] - Reflects intent.\nquiet words (5 CP) - not a perk"
        delta = parse_narrative(text, cfg)
        assert [p.name for p in delta.new_perks] == ["MIRROR SOUL"]
        assert delta.new_perks[0].flags == ["TOGGLEABLE"]

    def test_flag_aliases_are_normalized(self, cfg):
        delta = parse_narrative("**ARC LAMP** (30 CP) - Light. [toggle, always on]", cfg)
        assert delta.new_perks[0].flags == ["TOGGLEABLE", "ALWAYS-ON"]

    def test_duplicate_declaration_in_one_turn_merges(self, cfg):
        text = (
            "**IRON WILL** (100 CP) - Tough.\n"
            "Later the Smith recalls **IRON WILL** (100 CP) - Tough. [PASSIVE]"
        )
        delta = parse_narrative(text, cfg)
        assert len(delta.new_perks) == 1
        assert delta.new_perks[0].flags == ["PASSIVE"]

    def test_short_name_rejected(self, cfg):
        delta = parse_narrative("**AB** (10 CP) - tiny", cfg)
        assert delta.new_perks == []
        assert len(delta.rejected) == 1
        assert delta.rejected[0].startswith("perk:bold_declaration:name too short")

    def test_cost_over_cap_rejected_others_kept(self, cfg):
        text = "**WORLD EATER** (5000 CP) - Too much.\n**IRON WILL** (100 CP) - Fine."
        delta = parse_narrative(text, cfg)
        assert [p.name for p in delta.new_perks] == ["IRON WILL"]
        assert any("cost out of bounds: 5000" in r for r in delta.rejected)

    def test_detection_can_be_disabled(self):
        delta = parse_narrative("**IRON WILL** (100 CP) - Tough.", Settings(auto_detect_perks=False))
        assert delta.new_perks == []


class TestValidatePerk:

    def test_strips_markup_and_whitespace(self, cfg):
        decl = validate_perk("  **IRON   WILL** ", "100", cfg)
        assert decl.name == "IRON WILL"
        assert decl.cost == 100

    def test_non_numeric_cost(self, cfg):
        with pytest.raises(PerkValidationError):
            validate_perk("IRON WILL", "lots", cfg)

    def test_cost_with_thousands_of_digits(self, cfg):
        with pytest.raises(PerkValidationError, match="cost out of bounds"):
            validate_perk("IRON WILL", "7" * 5000, cfg)


class TestPointRules:

    def test_award_label_counted_once(self, cfg):
        assert parse_narrative("Award: +20 CP", cfg).points_delta == 20

    def test_gain_and_loss_verbs(self, cfg):
        delta = parse_narrative("The Smith gains 30 CP, then loses 15 CP.", cfg)
        assert delta.points_delta == 15

    def test_signed_amounts(self, cfg):
        delta = parse_narrative("+25 CP\n-10 CP", cfg)
        assert delta.points_delta == 15

    def test_resonance_award(self, cfg):
        delta = parse_narrative("[FORGE RESONANCE] The anvil sings. +40 Bonus CP", cfg)
        assert delta.points_delta == 40

    def test_perk_cost_is_not_an_award(self, cfg):
        delta = parse_narrative("You gained **IRON WILL** (100 CP)", cfg)
        assert delta.points_delta == 0
        assert [p.name for p in delta.new_perks] == ["IRON WILL"]

    def test_award_over_cap_rejected(self, cfg):
        delta = parse_narrative("+900 CP", cfg)
        assert delta.points_delta == 0
        assert delta.rejected == ["points:signed_plus:900"]

    def test_oversized_award_rejected_without_error(self, cfg):
        delta = parse_narrative("+" + "9" * 5000 + " CP", cfg)
        assert delta.points_delta == 0
        assert delta.rejected == ["points:signed_plus:999999999999..."]

    def test_detection_can_be_disabled(self):
        assert parse_narrative("+25 CP", Settings(auto_detect_points=False)).points_delta == 0


class TestGaugeRules:

    def test_corruption_and_sanity(self, cfg):
        delta = parse_narrative("+5 Corruption. Sanity Erosion: +3", cfg)
        assert delta.corruption_delta == 5
        assert delta.sanity_delta == 3

    def test_negative_labels(self, cfg):
        delta = parse_narrative("Corruption: -10\nSanity: -4", cfg)
        assert delta.corruption_delta == -10
        assert delta.sanity_delta == -4

    def test_label_and_suffix_forms_do_not_double_count(self, cfg):
        delta = parse_narrative("Corruption: +7 Corruption", cfg)
        assert delta.corruption_delta == 7


class TestToggleAndXpRules:

    def test_activate_verb(self):
        toggles = scan_toggles("You activate **SHADOW STEP** and vanish.")
        assert [(t.mention, t.active) for t in toggles] == [("SHADOW STEP", True)]

    def test_fade_subject(self):
        toggles = scan_toggles("At dawn SHADOW STEP fades.")
        assert len(toggles) == 1
        assert toggles[0].active is False
        assert "SHADOW STEP" in toggles[0].mention

    def test_toggles_ordered_by_position(self):
        toggles = scan_toggles("She disables the Ward. Then she turns on the Lamp.")
        assert [t.active for t in toggles] == [False, True]

    def test_compound_sentence_splits_mentions(self):
        toggles = scan_toggles("You activate Iron Will and disable Shadow Cloak.")
        assert [(t.mention, t.active) for t in toggles] == [
            ("Iron Will", True),
            ("Shadow Cloak", False),
        ]

    def test_xp_tag_and_bold(self, cfg):
        delta = parse_narrative("[XP: STAR FORGE +15]\n**EMBER HEART** gains +5 XP", cfg)
        assert [(g.name, g.amount) for g in delta.xp_gains] == [("STAR FORGE", 15), ("EMBER HEART", 5)]
        assert delta.points_delta == 0


class TestEmptyText:

    def test_plain_prose_is_empty(self, cfg):
        delta = parse_narrative("The rain keeps falling on the quiet forge.", cfg)
        assert delta.is_empty
        assert delta.kind == "narrative"
