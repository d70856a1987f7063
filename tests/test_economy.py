"""Tests for the economy calculator and threshold tracking."""

from forge_ledger.schemas import Ledger, PendingPerk, Perk
from forge_ledger.utils.economy import (
    bonus_for_total,
    check_thresholds,
    clamp_gauge,
    recalculate,
)


def ledger_with(**fields):
    return Ledger(points_per_turn=10, threshold=100, **fields)


class TestRecalculate:

    def test_derived_fields(self):
        ledger = recalculate(ledger_with(
            turn_count=7,
            bonus_points=45,
            perks=[Perk(name="IRON WILL", cost=60), Perk(name="ARC LAMP", cost=30)],
        ))
        assert ledger.base_points == 70
        assert ledger.total_points == 115
        assert ledger.spent_points == 90
        assert ledger.available_points == 25
        assert ledger.threshold_progress == 15

    def test_available_may_go_negative(self):
        ledger = recalculate(ledger_with(perks=[Perk(name="STAR FORGE", cost=400)]))
        assert ledger.available_points == -400

    def test_stale_stored_values_are_overwritten(self):
        ledger = ledger_with(turn_count=1, total_points=9999, available_points=9999)
        recalculate(ledger)
        assert ledger.total_points == 10
        assert ledger.available_points == 10

    def test_pending_cp_needed_tracks_available(self):
        ledger = ledger_with(bonus_points=100, pending_perk=PendingPerk(name="STAR FORGE", cost=150))
        recalculate(ledger)
        assert ledger.pending_perk.cp_needed == 50
        ledger.bonus_points = 200
        recalculate(ledger)
        assert ledger.pending_perk.cp_needed == 0

    def test_negative_total_progress_uses_floor_mod(self):
        ledger = recalculate(ledger_with(bonus_points=-30))
        assert ledger.total_points == -30
        assert ledger.threshold_progress == 70


class TestHelpers:

    def test_clamp_gauge(self):
        assert clamp_gauge(-5) == 0
        assert clamp_gauge(55) == 55
        assert clamp_gauge(140) == 100

    def test_bonus_for_total(self):
        ledger = ledger_with(turn_count=5)
        assert bonus_for_total(ledger, 80) == 30
        assert bonus_for_total(ledger, 20) == -30


class TestThresholds:

    def test_two_thresholds_in_one_jump(self):
        ledger = recalculate(ledger_with(bonus_points=90))
        assert check_thresholds(ledger) == []
        ledger.bonus_points = 250
        recalculate(ledger)
        assert check_thresholds(ledger) == [1, 2]
        assert ledger.last_threshold_crossed == 2

    def test_each_multiple_fires_once(self):
        ledger = recalculate(ledger_with(bonus_points=150))
        assert check_thresholds(ledger) == [1]
        assert check_thresholds(ledger) == []

    def test_never_decreases(self):
        ledger = recalculate(ledger_with(bonus_points=300))
        check_thresholds(ledger)
        ledger.bonus_points = 0
        recalculate(ledger)
        assert check_thresholds(ledger) == []
        assert ledger.last_threshold_crossed == 3
