"""Tests for the checkpoint manager."""

from forge_ledger.config import Settings
from forge_ledger.schemas import Ledger, Perk
from forge_ledger.utils.checkpoints import (
    create_checkpoint,
    delete_checkpoint,
    find_checkpoint,
    restore_checkpoint,
)
from forge_ledger.utils.economy import recalculate


def base_ledger():
    return recalculate(Ledger(
        turn_count=3,
        bonus_points=50,
        corruption=10,
        perks=[Perk(name="IRON WILL", cost=40)],
    ))


class TestCreate:

    def test_state_excludes_checkpoints_and_derived(self):
        ledger = base_ledger()
        create_checkpoint(ledger, "first", Settings())
        checkpoint = create_checkpoint(ledger, "second", Settings())
        assert "checkpoints" not in checkpoint.state
        assert "total_points" not in checkpoint.state
        assert checkpoint.state["bonus_points"] == 50
        assert checkpoint.turn_count == 3

    def test_default_label(self):
        checkpoint = create_checkpoint(base_ledger(), "", Settings())
        assert checkpoint.label == "Checkpoint at turn 3"

    def test_fifo_eviction(self):
        ledger = base_ledger()
        settings = Settings(checkpoint_capacity=10)
        created = [create_checkpoint(ledger, f"cp{i}", settings) for i in range(12)]
        assert len(ledger.checkpoints) == 10
        assert ledger.checkpoints[0].id == created[2].id
        assert ledger.checkpoints[-1].id == created[-1].id

    def test_checkpoint_is_a_deep_copy(self):
        ledger = base_ledger()
        checkpoint = create_checkpoint(ledger, "snap", Settings())
        ledger.perks[0].cost = 999
        assert checkpoint.state["perks"][0]["cost"] == 40


class TestRestore:

    def test_restore_replaces_state_and_recomputes(self):
        ledger = base_ledger()
        checkpoint = create_checkpoint(ledger, "before", Settings())
        ledger.bonus_points = 500
        ledger.corruption = 90
        ledger.perks.append(Perk(name="STAR FORGE", cost=200))
        recalculate(ledger)

        restored = restore_checkpoint(ledger, checkpoint.id)
        assert restored.bonus_points == 50
        assert restored.corruption == 10
        assert [p.name for p in restored.perks] == ["IRON WILL"]
        assert restored.total_points == 80
        assert restored.available_points == 40
        assert [c.id for c in restored.checkpoints] == [checkpoint.id]

    def test_tampered_derived_values_are_not_trusted(self):
        ledger = base_ledger()
        checkpoint = create_checkpoint(ledger, "snap", Settings())
        checkpoint.state["total_points"] = 12345
        assert restore_checkpoint(ledger, checkpoint.id).total_points == 80

    def test_unknown_id(self):
        assert restore_checkpoint(base_ledger(), "missing") is None


class TestDelete:

    def test_delete_and_noop(self):
        ledger = base_ledger()
        checkpoint = create_checkpoint(ledger, "snap", Settings())
        assert delete_checkpoint(ledger, checkpoint.id) is True
        assert find_checkpoint(ledger, checkpoint.id) is None
        assert delete_checkpoint(ledger, checkpoint.id) is False
