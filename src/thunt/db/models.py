"""ORM models for the treasure hunt engine.

Hunts and clues are authored by the marketplace and are read-only to the
engine. Participations, the attempt/hint logs, hunt counters and the
reward ledger are owned by the engine.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    BigInteger,
    Boolean,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from thunt.db.base import Base
from thunt.db.types import JSONType, TZDateTime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Hunt definitions (authored externally)
# ---------------------------------------------------------------------------


class Hunt(Base):
    """A time-boxed treasure hunt. Window is [starts_at, ends_at)."""

    __tablename__ = "treasure_hunts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="draft", index=True)
    difficulty: Mapped[str] = mapped_column(String(16), nullable=False, default="easy")
    starts_at: Mapped[datetime] = mapped_column(TZDateTime, nullable=False)
    ends_at: Mapped[datetime] = mapped_column(TZDateTime, nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(TZDateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(TZDateTime, nullable=True)
    max_participants: Mapped[int | None] = mapped_column(Integer, nullable=True)
    prize_pool: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    hunt_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(TZDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(TZDateTime, nullable=False, default=_utcnow, onupdate=_utcnow)


class Clue(Base):
    """One step of a hunt. ``clue_order`` is 0-based and unique per hunt."""

    __tablename__ = "treasure_hunt_clues"
    __table_args__ = (
        UniqueConstraint("hunt_id", "clue_order", name="uq_clues_hunt_order"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    hunt_id: Mapped[int] = mapped_column(Integer, ForeignKey("treasure_hunts.id", ondelete="CASCADE"), nullable=False)
    clue_order: Mapped[int] = mapped_column(Integer, nullable=False)
    kind: Mapped[str] = mapped_column(String(16), nullable=False)
    clue_text: Mapped[str] = mapped_column(Text, nullable=False)
    answer: Mapped[str | None] = mapped_column(String(255), nullable=True)
    target_ref: Mapped[str | None] = mapped_column(String(64), nullable=True)
    qr_secret: Mapped[str | None] = mapped_column(String(128), nullable=True)
    image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    hints: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    clue_data: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)


# ---------------------------------------------------------------------------
# Participation state (owned by the engine)
# ---------------------------------------------------------------------------


class Participation(Base):
    """One user's progress through one hunt.

    ``version`` is an optimistic-lock counter: a flush that finds the row
    at a different version raises StaleDataError.
    """

    __tablename__ = "treasure_hunt_participations"
    __table_args__ = (
        UniqueConstraint("hunt_id", "user_id", name="uq_participations_hunt_user"),
        UniqueConstraint("hunt_id", "rank", name="uq_participations_hunt_rank"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    hunt_id: Mapped[int] = mapped_column(Integer, ForeignKey("treasure_hunts.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="in_progress")
    current_clue_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    clues_found: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    incorrect_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    hints_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    started_at: Mapped[datetime] = mapped_column(TZDateTime, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(TZDateTime, nullable=True)
    time_taken_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)
    rank: Mapped[int | None] = mapped_column(Integer, nullable=True)
    reward_amount: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(TZDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(TZDateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    __mapper_args__ = {"version_id_col": version}  # noqa: RUF012


class ClueAttempt(Base):
    """Append-only answer log. Replaying it reproduces the counters."""

    __tablename__ = "clue_attempts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    participation_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("treasure_hunt_participations.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    clue_id: Mapped[int] = mapped_column(Integer, ForeignKey("treasure_hunt_clues.id", ondelete="CASCADE"), nullable=False)
    answer: Mapped[str] = mapped_column(String(255), nullable=False)
    correct: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    attempted_at: Mapped[datetime] = mapped_column(TZDateTime, nullable=False, default=_utcnow)


class HintReveal(Base):
    """Append-only hint log. One row per (participation, clue, level)."""

    __tablename__ = "hint_reveals"
    __table_args__ = (
        UniqueConstraint("participation_id", "clue_id", "level", name="uq_hint_reveals_participation_clue_level"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    participation_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("treasure_hunt_participations.id", ondelete="CASCADE"), nullable=False,
    )
    clue_id: Mapped[int] = mapped_column(Integer, ForeignKey("treasure_hunt_clues.id", ondelete="CASCADE"), nullable=False)
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    revealed_at: Mapped[datetime] = mapped_column(TZDateTime, nullable=False, default=_utcnow)


class HuntCounter(Base):
    """Per-hunt counters owned by the engine.

    ``completed_count`` is the hunt's rank sequence; ``participant_count``
    backs the capacity check. Both are only ever changed by single atomic
    UPDATE statements.
    """

    __tablename__ = "hunt_counters"

    hunt_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("treasure_hunts.id", ondelete="CASCADE"), primary_key=True,
    )
    participant_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(TZDateTime, nullable=False, default=_utcnow, onupdate=_utcnow)


class RewardLedger(Base):
    """Append-only reward entries, idempotent via ``idempotency_key``.

    ``credited_at`` is set by the crediting consumer once the currency
    service acknowledged the credit.
    """

    __tablename__ = "hunt_reward_ledger"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    hunt_id: Mapped[int] = mapped_column(Integer, ForeignKey("treasure_hunts.id", ondelete="CASCADE"), nullable=False)
    participation_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("treasure_hunt_participations.id", ondelete="SET NULL"), nullable=True,
    )
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    kind: Mapped[str] = mapped_column(String(16), nullable=False)
    rank: Mapped[int | None] = mapped_column(Integer, nullable=True)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    description: Mapped[str] = mapped_column(String(256), nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(TZDateTime, nullable=False, default=_utcnow)
    credited_at: Mapped[datetime | None] = mapped_column(TZDateTime, nullable=True)
