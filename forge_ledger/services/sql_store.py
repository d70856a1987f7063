"""SQLAlchemy-backed ``LedgerStore`` (threads, turn_records, perk_archive tables)."""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from sqlalchemy import delete, desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from forge_ledger.models import PerkArchiveEntry, Thread, TurnRecord
from forge_ledger.schemas import Perk
from forge_ledger.services.ledger_store import (
    ArchiveEntry,
    ThreadState,
    TurnEntry,
    archive_matches,
    new_archive_id,
)


def _to_state(row: Thread) -> ThreadState:
    return ThreadState(
        thread_id=row.id,
        ledger=dict(row.content or {}),
        version_number=row.version_number,
        last_turn_id=row.last_turn_id,
    )


def _to_turn(row: TurnRecord) -> TurnEntry:
    return TurnEntry(
        sequence=row.sequence,
        turn_id=row.turn_id,
        candidate_kind=row.candidate_kind,
        changes=list(row.changes or []),
        ledger_before=dict(row.ledger_before or {}),
    )


def _to_archive(row: PerkArchiveEntry) -> ArchiveEntry:
    return ArchiveEntry(
        id=row.id,
        name=row.name,
        cost=row.cost,
        description=row.description or "",
        flags=list(row.flags or []),
        times_acquired=row.times_acquired,
        first_acquired=row.first_acquired,
    )


class SqlLedgerStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._sessions = session_factory

    async def load(self, thread_id: str) -> Optional[ThreadState]:
        async with self._sessions() as db:
            row = await db.get(Thread, thread_id)
            return _to_state(row) if row else None

    async def _write_thread(self, db: AsyncSession, state: ThreadState) -> Thread:
        result = await db.execute(
            select(Thread).where(Thread.id == state.thread_id).with_for_update()
        )
        row = result.scalar_one_or_none()
        if row is None:
            row = Thread(id=state.thread_id, version_number=0)
            db.add(row)
        row.content = dict(state.ledger)
        row.last_turn_id = state.last_turn_id
        row.version_number = (row.version_number or 0) + 1
        await db.flush()
        return row

    async def _add_turn(self, db: AsyncSession, thread_id: str, entry: TurnEntry) -> TurnRecord:
        result = await db.execute(
            select(func.max(TurnRecord.sequence)).where(TurnRecord.thread_id == thread_id)
        )
        row = TurnRecord(
            thread_id=thread_id,
            sequence=(result.scalar() or 0) + 1,
            turn_id=entry.turn_id,
            candidate_kind=entry.candidate_kind,
            changes=list(entry.changes),
            ledger_before=dict(entry.ledger_before),
        )
        db.add(row)
        return row

    async def _upsert_archive(self, db: AsyncSession, perk: Perk) -> PerkArchiveEntry:
        result = await db.execute(
            select(PerkArchiveEntry).where(PerkArchiveEntry.name_key == perk.key)
        )
        row = result.scalar_one_or_none()
        if row is None:
            row = PerkArchiveEntry(
                id=new_archive_id(),
                name_key=perk.key,
                name=perk.name,
                cost=perk.cost,
                description=perk.description,
                flags=list(perk.flags),
                times_acquired=1,
            )
            db.add(row)
        else:
            row.times_acquired += 1
            if perk.description and not row.description:
                row.description = perk.description
            row.flags = list(row.flags or []) + [f for f in perk.flags if f not in (row.flags or [])]
        await db.flush()
        return row

    async def save(self, state: ThreadState) -> ThreadState:
        async with self._sessions() as db:
            row = await self._write_thread(db, state)
            await db.commit()
            await db.refresh(row)
            return _to_state(row)

    async def save_turn(self, state: ThreadState, entry: TurnEntry,
                        acquired: Iterable[Perk] = ()) -> ThreadState:
        async with self._sessions() as db:
            row = await self._write_thread(db, state)
            await self._add_turn(db, state.thread_id, entry)
            for perk in acquired:
                await self._upsert_archive(db, perk)
            await db.commit()
            await db.refresh(row)
            return _to_state(row)

    async def _last_turn_row(self, db: AsyncSession, thread_id: str) -> Optional[TurnRecord]:
        result = await db.execute(
            select(TurnRecord)
            .where(TurnRecord.thread_id == thread_id)
            .order_by(desc(TurnRecord.sequence))
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def last_turn(self, thread_id: str) -> Optional[TurnEntry]:
        async with self._sessions() as db:
            row = await self._last_turn_row(db, thread_id)
            return _to_turn(row) if row else None

    async def pop_last_turn(self, thread_id: str) -> Optional[TurnEntry]:
        async with self._sessions() as db:
            row = await self._last_turn_row(db, thread_id)
            if row is None:
                return None
            entry = _to_turn(row)
            await db.delete(row)
            await db.commit()
            return entry

    async def clear_turns(self, thread_id: str) -> int:
        async with self._sessions() as db:
            result = await db.execute(delete(TurnRecord).where(TurnRecord.thread_id == thread_id))
            await db.commit()
            return result.rowcount or 0

    async def record_archive(self, perk: Perk) -> ArchiveEntry:
        async with self._sessions() as db:
            row = await self._upsert_archive(db, perk)
            await db.commit()
            await db.refresh(row)
            return _to_archive(row)

    async def list_archive(self, query: str = "") -> List[ArchiveEntry]:
        async with self._sessions() as db:
            result = await db.execute(select(PerkArchiveEntry).order_by(PerkArchiveEntry.name_key))
            entries = [_to_archive(row) for row in result.scalars().all()]
        return [e for e in entries if archive_matches(e, query)]

    async def get_archive(self, entry_id: str) -> Optional[ArchiveEntry]:
        async with self._sessions() as db:
            row = await db.get(PerkArchiveEntry, entry_id)
            return _to_archive(row) if row else None

    async def delete_archive(self, entry_id: str) -> bool:
        async with self._sessions() as db:
            row = await db.get(PerkArchiveEntry, entry_id)
            if row is None:
                return False
            await db.delete(row)
            await db.commit()
            return True

    async def clear_archive(self) -> int:
        async with self._sessions() as db:
            result = await db.execute(delete(PerkArchiveEntry))
            await db.commit()
            return result.rowcount or 0

    async def import_archive(self, entries: List[ArchiveEntry], replace: bool = True) -> int:
        async with self._sessions() as db:
            if replace:
                await db.execute(delete(PerkArchiveEntry))
            result = await db.execute(select(PerkArchiveEntry.id, PerkArchiveEntry.name_key))
            ids, keys = set(), set()
            for entry_id, name_key in result.all():
                ids.add(entry_id)
                keys.add(name_key)

            added = 0
            for entry in entries:
                if entry.key in keys:
                    continue
                entry_id = entry.id if entry.id not in ids else new_archive_id()
                db.add(PerkArchiveEntry(
                    id=entry_id,
                    name_key=entry.key,
                    name=entry.name,
                    cost=entry.cost,
                    description=entry.description,
                    flags=list(entry.flags),
                    times_acquired=entry.times_acquired,
                    first_acquired=entry.first_acquired,
                ))
                ids.add(entry_id)
                keys.add(entry.key)
                added += 1
            await db.commit()
            return added

    async def clear_all(self) -> Dict[str, int]:
        async with self._sessions() as db:
            turns = await db.execute(delete(TurnRecord))
            threads = await db.execute(delete(Thread))
            archive = await db.execute(delete(PerkArchiveEntry))
            await db.commit()
            return {
                "threads": threads.rowcount or 0,
                "turns": turns.rowcount or 0,
                "archive": archive.rowcount or 0,
            }
