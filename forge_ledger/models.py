from datetime import datetime
from typing import List, Optional
from sqlalchemy import String, DateTime, ForeignKey, JSON, Integer, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func

class Base(DeclarativeBase):
    pass

class Thread(Base):
    """One narrative thread and its current ledger."""
    __tablename__ = "threads"

    id: Mapped[str] = mapped_column(String, primary_key=True, index=True)
    content: Mapped[dict] = mapped_column(JSON, default=dict)  # Ledger.to_storage()
    version_number: Mapped[int] = mapped_column(Integer, default=1)  # Incremented on each save
    last_turn_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # Replay protection
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    turns: Mapped[List["TurnRecord"]] = relationship(
        "TurnRecord", back_populates="thread", cascade="all, delete-orphan", order_by="TurnRecord.sequence"
    )

class TurnRecord(Base):
    __tablename__ = "turn_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    thread_id: Mapped[str] = mapped_column(ForeignKey("threads.id"), index=True)
    sequence: Mapped[int] = mapped_column(Integer, index=True)  # For ordering
    turn_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    candidate_kind: Mapped[str] = mapped_column(String(64))
    changes: Mapped[list] = mapped_column(JSON, default=list)

    # Ledger BEFORE this turn was applied (for undo and diff)
    ledger_before: Mapped[dict] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    thread: Mapped["Thread"] = relationship("Thread", back_populates="turns")

    __table_args__ = (
        UniqueConstraint("thread_id", "sequence", name="uix_turn_sequence"),
    )

class PerkArchiveEntry(Base):
    """Every perk ever acquired, across all threads."""
    __tablename__ = "perk_archive"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name_key: Mapped[str] = mapped_column(Text, unique=True, index=True)  # casefolded name
    name: Mapped[str] = mapped_column(Text)
    cost: Mapped[int] = mapped_column(Integer, default=0)
    description: Mapped[str] = mapped_column(Text, default="")
    flags: Mapped[list] = mapped_column(JSON, default=list)
    times_acquired: Mapped[int] = mapped_column(Integer, default=1)
    first_acquired: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
