"""
Ledger service: the caller side of the reconciliation core.

Owns everything the pure core leaves to its host:

* replay protection through a monotonic ``turn_id`` per thread,
* per-thread serialization with an ``asyncio.Lock``,
* persistence of the final recomputed ledger once per completed turn,
* per-turn history for undo and diff,
* checkpoints, manual actions, the perk archive and the one-shot roll trigger.
"""
from __future__ import annotations

import asyncio
import time
from collections import defaultdict
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError

from forge_ledger.config import get_settings
from forge_ledger.errors import (
    ArchiveEntryNotFound,
    CheckpointNotFound,
    ForgeError,
    ThreadNotFound,
)
from forge_ledger.schemas import Checkpoint, Ledger, Perk, ReconcileResult
from forge_ledger.services.ledger_store import (
    ArchiveEntry,
    LedgerStore,
    ThreadState,
    TurnEntry,
    new_archive_id,
)
from forge_ledger.utils import ledger_actions
from forge_ledger.utils.checkpoints import (
    create_checkpoint,
    delete_checkpoint,
    restore_checkpoint,
)
from forge_ledger.utils.ledger_helpers import compute_ledger_diff, load_ledger
from forge_ledger.utils.ledger_reconciler import reconcile
from forge_ledger.utils.logging_config import ThreadAdapter, get_logger
from forge_ledger.utils.status_renderer import render_roll_prompt, render_status

_raw_logger = get_logger("forge_ledger.service")


class TurnOutcome(BaseModel):
    thread_id: str
    skipped: bool = False
    reason: Optional[str] = None
    result: Optional[ReconcileResult] = None
    checkpoint_id: Optional[str] = None
    ledger: Dict[str, Any] = Field(default_factory=dict)


class LedgerService:
    def __init__(self, store: LedgerStore, settings=None):
        self.store = store
        self.settings = settings or get_settings()
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def _log(self, thread_id: str) -> ThreadAdapter:
        return ThreadAdapter(_raw_logger, thread_id)

    # ------------------------------------------------------------------
    # Loading / saving
    # ------------------------------------------------------------------

    async def _load(self, thread_id: str, create: bool = True) -> Tuple[ThreadState, Ledger]:
        state = await self.store.load(thread_id)
        if state is None:
            if not create:
                raise ThreadNotFound(thread_id)
            state = ThreadState(thread_id=thread_id)
        return state, load_ledger(state.ledger, self.settings)

    async def _save(self, state: ThreadState, ledger: Ledger) -> ThreadState:
        state.ledger = ledger.to_storage()
        return await self.store.save(state)

    async def get_ledger(self, thread_id: str) -> Ledger:
        """Current ledger; an unknown thread gets an empty one (not persisted)."""
        _, ledger = await self._load(thread_id)
        return ledger

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------

    async def process_turn(self, thread_id: str, text: str, turn_id: Optional[int] = None) -> TurnOutcome:
        """
        Reconcile one narrator turn.

        A ``turn_id`` at or below the stored ``last_turn_id`` is a replay and
        is skipped without invoking the reconciler.
        """
        log = self._log(thread_id).bind(turn_id=turn_id)
        if not self.settings.tracking_enabled:
            log.info("turn_skipped | reason=tracking_disabled")
            return TurnOutcome(thread_id=thread_id, skipped=True, reason="tracking_disabled")

        async with self._locks[thread_id]:
            start = time.monotonic()
            state, ledger = await self._load(thread_id)

            if turn_id is not None and state.last_turn_id is not None and turn_id <= state.last_turn_id:
                log.info("turn_skipped | reason=replay | last_turn_id=%s", state.last_turn_id)
                return TurnOutcome(
                    thread_id=thread_id, skipped=True, reason="replay", ledger=ledger.model_dump(mode="json"),
                )

            before = ledger.to_storage()
            next_ledger, result = reconcile(ledger, text, self.settings)

            checkpoint_id = None
            if result.thresholds_crossed and self.settings.auto_checkpoint_on_threshold:
                multiple = result.thresholds_crossed[-1] * next_ledger.threshold
                checkpoint = create_checkpoint(
                    next_ledger, f"Threshold {multiple} CP reached", self.settings,
                )
                checkpoint_id = checkpoint.id
                log.info("checkpoint_created | id=%s | label=%s", checkpoint.id, checkpoint.label,
                         extra={"checkpoint_id": checkpoint.id, "action": "auto_checkpoint"})

            if turn_id is not None:
                state.last_turn_id = turn_id
            state.ledger = next_ledger.to_storage()
            await self.store.save_turn(
                state,
                TurnEntry(
                    turn_id=turn_id,
                    candidate_kind=result.candidate_kind,
                    changes=result.changes,
                    ledger_before=before,
                ),
                acquired=self._acquired_perks(next_ledger, result.acquired),
            )

            log.info(
                "turn_processed | kind=%s | changes=%d | warnings=%d",
                result.candidate_kind, len(result.changes), len(result.warnings),
                extra={
                    "event_type": "turn",
                    "duration_ms": round((time.monotonic() - start) * 1000, 1),
                },
            )
            for warning in result.warnings:
                log.info("turn_warning | %s", warning)

            return TurnOutcome(
                thread_id=thread_id,
                result=result,
                checkpoint_id=checkpoint_id,
                ledger=next_ledger.model_dump(mode="json"),
            )

    @staticmethod
    def _acquired_perks(ledger: Ledger, names: List[str]) -> List[Perk]:
        return [perk for perk in map(ledger.find_perk, names) if perk is not None]

    async def _archive_acquired(self, ledger: Ledger, names: List[str]) -> None:
        for perk in self._acquired_perks(ledger, names):
            await self.store.record_archive(perk)

    async def undo_last_turn(self, thread_id: str) -> Optional[Ledger]:
        """Restore the ledger from before the last recorded turn.

        Current checkpoints are kept. Returns ``None`` when there is nothing to undo.
        """
        async with self._locks[thread_id]:
            state, ledger = await self._load(thread_id, create=False)
            entry = await self.store.pop_last_turn(thread_id)
            if entry is None:
                return None

            restored = load_ledger(entry.ledger_before, self.settings)
            restored.checkpoints = ledger.checkpoints
            previous = await self.store.last_turn(thread_id)
            state.last_turn_id = previous.turn_id if previous else None
            await self._save(state, restored)
            self._log(thread_id).info(
                "turn_undone | sequence=%d | turn_count=%d", entry.sequence, restored.turn_count,
                extra={"action": "undo"},
            )
            return restored

    async def diff_last_turn(self, thread_id: str) -> str:
        _, ledger = await self._load(thread_id, create=False)
        entry = await self.store.last_turn(thread_id)
        if entry is None:
            return "[System] No turns recorded yet.\n"
        return compute_ledger_diff(entry.ledger_before, ledger.to_storage(), ledger.turn_count)

    # ------------------------------------------------------------------
    # Injection
    # ------------------------------------------------------------------

    async def render_injection(self, thread_id: str) -> str:
        """Status block for the next prompt; consumes a pending roll trigger."""
        async with self._locks[thread_id]:
            state, ledger = await self._load(thread_id)
            text = render_status(ledger, self.settings)
            if ledger.roll_requested:
                text += render_roll_prompt(ledger)
                ledger.roll_requested = False
                await self._save(state, ledger)
            return text

    async def trigger_roll(self, thread_id: str) -> Ledger:
        async with self._locks[thread_id]:
            state, ledger = await self._load(thread_id)
            ledger.roll_requested = True
            await self._save(state, ledger)
            self._log(thread_id).info(
                "roll_triggered | available=%d", ledger.available_points, extra={"action": "roll"},
            )
            return ledger

    # ------------------------------------------------------------------
    # Manual actions
    # ------------------------------------------------------------------

    async def apply_action(self, thread_id: str, action: str, payload: Dict[str, Any]) -> Tuple[Ledger, ReconcileResult]:
        """Run a manual action (payload already validated) and persist the result."""
        async with self._locks[thread_id]:
            state, ledger = await self._load(thread_id)
            next_ledger, result = self._dispatch(ledger, action, payload)
            await self._save(state, next_ledger)
            await self._archive_acquired(next_ledger, result.acquired)
            self._log(thread_id).info(
                "action_applied | changes=%s", result.changes, extra={"action": action},
            )
            return next_ledger, result

    def _dispatch(self, ledger: Ledger, action: str, p: Dict[str, Any]):
        s = self.settings
        if action == "add-bonus":
            return ledger_actions.add_bonus_points(ledger, p["amount"])
        if action == "set-total":
            return ledger_actions.set_total_points(ledger, p["total"])
        if action == "corruption":
            return ledger_actions.modify_corruption(ledger, p["amount"])
        if action == "sanity":
            return ledger_actions.modify_sanity(ledger, p["amount"])
        if action == "set-turns":
            return ledger_actions.set_turn_count(ledger, p["count"])
        if action == "add-perk":
            return ledger_actions.add_perk(
                ledger, p["name"], p["cost"], p.get("description", ""), p.get("flags"), settings=s,
            )
        if action == "remove-perk":
            return ledger_actions.remove_perk(ledger, p["name"])
        if action == "toggle-perk":
            return ledger_actions.toggle_perk(ledger, p["name"], p.get("active"))
        if action == "set-pending":
            return ledger_actions.set_pending_perk(ledger, p["name"], p["cost"])
        if action == "clear-pending":
            return ledger_actions.clear_pending_perk(ledger)
        if action == "acquire-pending":
            return ledger_actions.acquire_pending_perk(ledger, settings=s)
        if action == "grant-xp":
            return ledger_actions.grant_xp(ledger, p["name"], p["amount"], settings=s)
        raise ForgeError(f"Unknown action: {action}")

    async def reset(self, thread_id: str, keep_checkpoints: bool = True) -> Ledger:
        async with self._locks[thread_id]:
            state, ledger = await self._load(thread_id)
            fresh, _ = ledger_actions.reset_ledger(ledger, self.settings, keep_checkpoints)
            state.last_turn_id = None
            await self._save(state, fresh)
            cleared = await self.store.clear_turns(thread_id)
            self._log(thread_id).info("ledger_reset | turns_cleared=%d", cleared, extra={"action": "reset"})
            return fresh

    # ------------------------------------------------------------------
    # Checkpoints
    # ------------------------------------------------------------------

    async def list_checkpoints(self, thread_id: str) -> List[Checkpoint]:
        _, ledger = await self._load(thread_id, create=False)
        return ledger.checkpoints

    async def create_checkpoint(self, thread_id: str, label: str = "") -> Checkpoint:
        async with self._locks[thread_id]:
            state, ledger = await self._load(thread_id)
            checkpoint = create_checkpoint(ledger, label, self.settings)
            await self._save(state, ledger)
            self._log(thread_id).info(
                "checkpoint_created | id=%s | label=%s", checkpoint.id, checkpoint.label,
                extra={"action": "checkpoint"},
            )
            return checkpoint

    async def restore_checkpoint(self, thread_id: str, checkpoint_id: str) -> Ledger:
        async with self._locks[thread_id]:
            state, ledger = await self._load(thread_id, create=False)
            restored = restore_checkpoint(ledger, checkpoint_id)
            if restored is None:
                raise CheckpointNotFound(checkpoint_id)
            await self._save(state, restored)
            return restored

    async def delete_checkpoint(self, thread_id: str, checkpoint_id: str) -> bool:
        async with self._locks[thread_id]:
            state, ledger = await self._load(thread_id, create=False)
            deleted = delete_checkpoint(ledger, checkpoint_id)
            if deleted:
                await self._save(state, ledger)
            return deleted

    # ------------------------------------------------------------------
    # Export / import
    # ------------------------------------------------------------------

    async def export_ledger(self, thread_id: str) -> Dict[str, Any]:
        _, ledger = await self._load(thread_id, create=False)
        return ledger.to_storage()

    async def import_ledger(self, thread_id: str, data: Dict[str, Any]) -> Ledger:
        """Replace a thread's ledger. Derived fields in *data* are recomputed."""
        try:
            ledger = load_ledger(data, self.settings)
        except ValidationError as exc:
            raise ForgeError(f"invalid ledger: {exc.error_count()} issues") from exc
        async with self._locks[thread_id]:
            state, _ = await self._load(thread_id)
            await self._save(state, ledger)
            self._log(thread_id).info(
                "ledger_imported | perks=%d | turn_count=%d", len(ledger.perks), ledger.turn_count,
                extra={"action": "import"},
            )
            return ledger

    # ------------------------------------------------------------------
    # Perk archive
    # ------------------------------------------------------------------

    async def list_archive(self, query: str = "") -> List[ArchiveEntry]:
        return await self.store.list_archive(query)

    async def acquire_from_archive(self, thread_id: str, entry_id: str) -> Tuple[Ledger, ReconcileResult]:
        entry = await self.store.get_archive(entry_id)
        if entry is None:
            raise ArchiveEntryNotFound(entry_id)
        return await self.apply_archive_entry(thread_id, entry)

    async def apply_archive_entry(self, thread_id: str, entry: ArchiveEntry) -> Tuple[Ledger, ReconcileResult]:
        async with self._locks[thread_id]:
            state, ledger = await self._load(thread_id)
            next_ledger, result = ledger_actions.add_perk(
                ledger, entry.name, entry.cost, entry.description, entry.flags,
                source="archive", settings=self.settings,
            )
            await self._save(state, next_ledger)
            await self._archive_acquired(next_ledger, result.acquired)
            return next_ledger, result

    async def delete_archive_entry(self, entry_id: str) -> None:
        if not await self.store.delete_archive(entry_id):
            raise ArchiveEntryNotFound(entry_id)

    async def clear_archive(self) -> int:
        count = await self.store.clear_archive()
        _raw_logger.info("archive_cleared | entries=%d", count)
        return count

    async def export_archive(self) -> List[Dict[str, Any]]:
        entries = await self.store.list_archive()
        return [entry.model_dump(mode="json") for entry in entries]

    async def import_archive(self, data: List[Dict[str, Any]], replace: bool = True) -> int:
        """
        Load archive entries exported by ``export_archive``.

        ``replace`` swaps out the whole archive; otherwise entries whose name
        is already archived are skipped. Entries without an ``id`` get one.
        Returns the number of entries added.
        """
        entries = []
        for index, raw in enumerate(data):
            if not isinstance(raw, dict):
                raise ForgeError(f"archive entry {index} is not an object")
            raw = {**raw, "id": raw.get("id") or new_archive_id()}
            try:
                entry = ArchiveEntry.model_validate(raw)
            except ValidationError as exc:
                raise ForgeError(f"invalid archive entry {index}: {exc.error_count()} issues") from exc
            entry.name = entry.name.strip()
            if not entry.name:
                raise ForgeError(f"archive entry {index} has no name")
            entries.append(entry)

        added = await self.store.import_archive(entries, replace)
        _raw_logger.info(
            "archive_imported | received=%d | added=%d | replace=%s", len(entries), added, replace,
            extra={"action": "archive_import"},
        )
        return added

    async def reset_all(self) -> Dict[str, int]:
        """Drop every thread, its turn history and the whole perk archive."""
        counts = await self.store.clear_all()
        _raw_logger.warning(
            "forge_reset_all | threads=%d | turns=%d | archive=%d",
            counts["threads"], counts["turns"], counts["archive"],
            extra={"action": "reset_all"},
        )
        return counts
