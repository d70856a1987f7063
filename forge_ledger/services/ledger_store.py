"""
Persistence port for ledgers, per-turn history and the perk archive.

``LedgerService`` only talks to a ``LedgerStore``. ``InMemoryLedgerStore``
backs tests and embedded use; ``forge_ledger.services.sql_store`` provides
the SQLAlchemy implementation used by the HTTP app.
"""
from __future__ import annotations

import copy
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Protocol

from pydantic import BaseModel, Field

from forge_ledger.schemas import Perk


class ThreadState(BaseModel):
    thread_id: str
    ledger: Dict[str, Any] = Field(default_factory=dict)
    version_number: int = 0
    last_turn_id: Optional[int] = None


class TurnEntry(BaseModel):
    sequence: int = 0
    turn_id: Optional[int] = None
    candidate_kind: str
    changes: List[str] = Field(default_factory=list)
    ledger_before: Dict[str, Any]


class ArchiveEntry(BaseModel):
    id: str
    name: str = Field(..., min_length=1)
    cost: int = Field(default=0, ge=0)
    description: str = ""
    flags: List[str] = Field(default_factory=list)
    times_acquired: int = Field(default=1, ge=1)
    first_acquired: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def key(self) -> str:
        return self.name.casefold()


def archive_matches(entry: ArchiveEntry, query: str) -> bool:
    """Case-insensitive match on name, description or any flag."""
    query = (query or "").strip().casefold()
    if not query:
        return True
    return (
        query in entry.name.casefold()
        or query in entry.description.casefold()
        or any(query in flag.casefold() for flag in entry.flags)
    )


def new_archive_id() -> str:
    return f"archive_{uuid.uuid4().hex[:12]}"


class LedgerStore(Protocol):
    async def load(self, thread_id: str) -> Optional[ThreadState]: ...

    async def save(self, state: ThreadState) -> ThreadState: ...

    async def save_turn(self, state: ThreadState, entry: TurnEntry,
                        acquired: Iterable[Perk] = ()) -> ThreadState:
        """Thread state, turn record and archived perks commit together."""
        ...

    async def last_turn(self, thread_id: str) -> Optional[TurnEntry]: ...

    async def pop_last_turn(self, thread_id: str) -> Optional[TurnEntry]: ...

    async def clear_turns(self, thread_id: str) -> int: ...

    async def record_archive(self, perk: Perk) -> ArchiveEntry: ...

    async def list_archive(self, query: str = "") -> List[ArchiveEntry]: ...

    async def get_archive(self, entry_id: str) -> Optional[ArchiveEntry]: ...

    async def delete_archive(self, entry_id: str) -> bool: ...

    async def clear_archive(self) -> int: ...

    async def import_archive(self, entries: List[ArchiveEntry], replace: bool = True) -> int: ...

    async def clear_all(self) -> Dict[str, int]: ...


class InMemoryLedgerStore:
    """Dict-backed store. Returned objects are copies."""

    def __init__(self):
        self._threads: Dict[str, ThreadState] = {}
        self._turns: Dict[str, List[TurnEntry]] = {}
        self._archive: Dict[str, ArchiveEntry] = {}

    async def load(self, thread_id: str) -> Optional[ThreadState]:
        state = self._threads.get(thread_id)
        return state.model_copy(deep=True) if state else None

    async def save(self, state: ThreadState) -> ThreadState:
        stored = state.model_copy(deep=True)
        stored.version_number = state.version_number + 1
        self._threads[state.thread_id] = stored
        return stored.model_copy(deep=True)

    def _append_turn(self, thread_id: str, entry: TurnEntry) -> None:
        turns = self._turns.setdefault(thread_id, [])
        stored = entry.model_copy(deep=True)
        stored.sequence = turns[-1].sequence + 1 if turns else 1
        turns.append(stored)

    async def save_turn(self, state: ThreadState, entry: TurnEntry,
                        acquired: Iterable[Perk] = ()) -> ThreadState:
        saved = await self.save(state)
        self._append_turn(state.thread_id, entry)
        for perk in acquired:
            await self.record_archive(perk)
        return saved

    async def last_turn(self, thread_id: str) -> Optional[TurnEntry]:
        turns = self._turns.get(thread_id)
        return turns[-1].model_copy(deep=True) if turns else None

    async def pop_last_turn(self, thread_id: str) -> Optional[TurnEntry]:
        turns = self._turns.get(thread_id)
        return turns.pop() if turns else None

    async def clear_turns(self, thread_id: str) -> int:
        return len(self._turns.pop(thread_id, []))

    async def record_archive(self, perk: Perk) -> ArchiveEntry:
        existing = self._find_archive(perk.key)
        if existing is None:
            existing = ArchiveEntry(
                id=new_archive_id(),
                name=perk.name,
                cost=perk.cost,
                description=perk.description,
                flags=list(perk.flags),
            )
            self._archive[existing.id] = existing
        else:
            existing.times_acquired += 1
            if perk.description and not existing.description:
                existing.description = perk.description
            existing.flags.extend(f for f in perk.flags if f not in existing.flags)
        return copy.deepcopy(existing)

    def _find_archive(self, key: str) -> Optional[ArchiveEntry]:
        return next((e for e in self._archive.values() if e.key == key), None)

    async def list_archive(self, query: str = "") -> List[ArchiveEntry]:
        entries = [e for e in self._archive.values() if archive_matches(e, query)]
        return [copy.deepcopy(e) for e in sorted(entries, key=lambda e: e.name.casefold())]

    async def get_archive(self, entry_id: str) -> Optional[ArchiveEntry]:
        entry = self._archive.get(entry_id)
        return copy.deepcopy(entry) if entry else None

    async def delete_archive(self, entry_id: str) -> bool:
        return self._archive.pop(entry_id, None) is not None

    async def clear_archive(self) -> int:
        count = len(self._archive)
        self._archive.clear()
        return count

    async def import_archive(self, entries: List[ArchiveEntry], replace: bool = True) -> int:
        if replace:
            self._archive.clear()
        added = 0
        for entry in entries:
            if self._find_archive(entry.key) is not None:
                continue
            stored = entry.model_copy(deep=True)
            if stored.id in self._archive:
                stored.id = new_archive_id()
            self._archive[stored.id] = stored
            added += 1
        return added

    async def clear_all(self) -> Dict[str, int]:
        counts = {
            "threads": len(self._threads),
            "turns": sum(len(turns) for turns in self._turns.values()),
            "archive": len(self._archive),
        }
        self._threads.clear()
        self._turns.clear()
        self._archive.clear()
        return counts
