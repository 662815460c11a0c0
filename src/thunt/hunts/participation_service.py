"""Participation tracker: join, submit answer, use hint, completion.

Every command runs as one short transaction. The participation row is
locked (``SELECT ... FOR UPDATE``) and additionally guarded by its
optimistic ``version`` column, so a duplicate or concurrent request on
the same participation either waits or loses with StaleDataError and is
re-run against fresh state. Lost races are retried a bounded number of
times before surfacing as ConcurrencyConflict.

Events for the crediting and notification collaborators are emitted
only after commit and can never roll game state back.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import StrEnum
from typing import TypeVar

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from thunt.config import get_settings
from thunt.db.models import (
    Clue,
    ClueAttempt,
    HintReveal,
    Hunt,
    HuntCounter,
    Participation,
    RewardLedger,
)
from thunt.hunts.clue_validator import check_answer, get_hint, hint_levels
from thunt.hunts.errors import ConcurrencyConflict, HuntError, NotFoundError, ValidationError
from thunt.hunts.events import emit_completion_notification, emit_reward_due
from thunt.hunts.rank_assigner import assign_rank, ensure_counter
from thunt.hunts.rewards import calculate_reward
from thunt.hunts.states import (
    HuntStatus,
    ParticipationStatus,
    max_hints_allowed,
    validate_participation_transition,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_LOCK_ERROR_MARKERS = ("deadlock", "lock", "serializ", "could not obtain")
_ANSWER_MAX_LENGTH = 255


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SubmissionOutcome(StrEnum):
    INCORRECT = "incorrect"
    ADVANCED = "advanced"
    COMPLETED = "completed"
    ALREADY_COMPLETED = "already_completed"


@dataclass(frozen=True)
class SubmissionResult:
    outcome: SubmissionOutcome
    correct: bool
    completed: bool
    message: str
    current_clue_index: int
    clues_found: int
    rank: int | None = None
    reward: int | None = None


@dataclass(frozen=True)
class HintResult:
    level: int
    text: str
    hints_used: int
    hints_remaining: int
    newly_revealed: bool


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def get_hunt(
    db: AsyncSession, hunt_id: int, *, for_update: bool = False, for_share: bool = False,
) -> Hunt:
    """Get a hunt by ID.

    ``for_share`` takes a shared row lock: answer submissions hold it so a
    status transition (which locks the row for update) waits for them.
    """
    q = select(Hunt).where(Hunt.id == hunt_id)
    if for_update:
        q = q.with_for_update().execution_options(populate_existing=True)
    elif for_share:
        q = q.with_for_update(read=True).execution_options(populate_existing=True)
    hunt = (await db.execute(q)).scalar_one_or_none()
    if hunt is None:
        raise NotFoundError(f"Hunt {hunt_id} not found")
    return hunt


async def count_clues(db: AsyncSession, hunt_id: int) -> int:
    result = await db.execute(select(func.count(Clue.id)).where(Clue.hunt_id == hunt_id))
    return result.scalar_one()


async def get_clue_at(db: AsyncSession, hunt_id: int, index: int) -> Clue | None:
    result = await db.execute(
        select(Clue).where(Clue.hunt_id == hunt_id, Clue.clue_order == index)
    )
    return result.scalar_one_or_none()


async def get_participation(
    db: AsyncSession, participation_id: int, *, for_update: bool = False,
) -> Participation:
    """Get a participation by ID, optionally row-locked."""
    q = select(Participation).where(Participation.id == participation_id)
    if for_update:
        q = q.with_for_update().execution_options(populate_existing=True)
    participation = (await db.execute(q)).scalar_one_or_none()
    if participation is None:
        raise NotFoundError(f"Participation {participation_id} not found")
    return participation


async def find_participation(db: AsyncSession, hunt_id: int, user_id: int) -> Participation | None:
    result = await db.execute(
        select(Participation).where(
            Participation.hunt_id == hunt_id,
            Participation.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


def _check_hunt_open(hunt: Hunt, now: datetime) -> None:
    """Hunt must be active and ``now`` inside [starts_at, ends_at)."""
    if hunt.status != HuntStatus.ACTIVE:
        raise ValidationError(f"Hunt is not active (status: {hunt.status})")
    if now < hunt.starts_at:
        raise ValidationError("Hunt has not started yet")
    if now >= hunt.ends_at:
        raise ValidationError("Hunt has ended")


# ---------------------------------------------------------------------------
# Transaction runner
# ---------------------------------------------------------------------------


def _is_conflict(exc: Exception) -> bool:
    if isinstance(exc, (StaleDataError, IntegrityError)):
        return True
    if isinstance(exc, OperationalError):
        text = str(exc.orig if exc.orig is not None else exc).lower()
        return any(marker in text for marker in _LOCK_ERROR_MARKERS)
    return False


async def run_in_transaction(
    db: AsyncSession,
    operation: Callable[[], Awaitable[T]],
    *,
    label: str,
) -> T:
    """Run ``operation`` and commit, retrying lost races.

    ``operation`` must re-read everything it needs; after a rollback all
    previously loaded objects are expired.
    """
    settings = get_settings()
    attempts = max(1, settings.conflict_max_retries)
    for attempt in range(1, attempts + 1):
        try:
            result = await operation()
            await db.commit()
            return result
        except HuntError:
            await db.rollback()
            raise
        except (StaleDataError, IntegrityError, OperationalError) as exc:
            await db.rollback()
            if not _is_conflict(exc):
                raise
            logger.info("%s: conflict on attempt %d/%d (%s)", label, attempt, attempts, type(exc).__name__)
            if attempt < attempts:
                await asyncio.sleep(settings.conflict_backoff_seconds * attempt)
    raise ConcurrencyConflict(f"{label}: gave up after {attempts} conflicting attempts, retry later")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def _claim_participant_slot(db: AsyncSession, hunt: Hunt) -> bool:
    """Atomically bump participant_count unless the hunt is full."""
    stmt = update(HuntCounter).where(HuntCounter.hunt_id == hunt.id)
    if hunt.max_participants is not None:
        stmt = stmt.where(HuntCounter.participant_count < hunt.max_participants)
    stmt = stmt.values(participant_count=HuntCounter.participant_count + 1).execution_options(
        synchronize_session=False,
    )
    result = await db.execute(stmt)
    return result.rowcount == 1


async def join(db: AsyncSession, hunt_id: int, user_id: int) -> Participation:
    """Join a hunt. Creates the participation at clue 0.

    Fails with ValidationError if the hunt is not active, outside its
    window, already joined by the user, or full.
    """

    async def _join() -> Participation:
        hunt = await get_hunt(db, hunt_id)
        now = _utcnow()
        _check_hunt_open(hunt, now)

        if await find_participation(db, hunt_id, user_id) is not None:
            raise ValidationError("Already joined this hunt")

        await ensure_counter(db, hunt_id)
        if not await _claim_participant_slot(db, hunt):
            raise ValidationError("Hunt is full")

        participation = Participation(
            hunt_id=hunt_id,
            user_id=user_id,
            status=ParticipationStatus.IN_PROGRESS.value,
            current_clue_index=0,
            clues_found=0,
            incorrect_attempts=0,
            hints_used=0,
            started_at=now,
        )
        db.add(participation)
        await db.flush()
        return participation

    participation = await run_in_transaction(db, _join, label=f"join hunt={hunt_id} user={user_id}")
    logger.info("User %d joined hunt %d (participation=%d)", user_id, hunt_id, participation.id)
    return participation


def _stored_result(participation: Participation) -> SubmissionResult:
    return SubmissionResult(
        outcome=SubmissionOutcome.ALREADY_COMPLETED,
        correct=True,
        completed=True,
        message="Hunt already completed",
        current_clue_index=participation.current_clue_index,
        clues_found=participation.clues_found,
        rank=participation.rank,
        reward=participation.reward_amount,
    )


async def _complete(db: AsyncSession, hunt: Hunt, participation: Participation) -> RewardLedger:
    """Completion transition. Runs inside the submit transaction.

    Order matters: the rank is claimed first (this queues behind other
    completions of the same hunt), then completed_at is stamped.
    """
    validate_participation_transition(participation.status, ParticipationStatus.COMPLETED)
    rank = await assign_rank(db, hunt.id)
    now = _utcnow()
    # The hunt may have closed while this transaction waited for the rank.
    hunt = await get_hunt(db, hunt.id, for_share=True)
    _check_hunt_open(hunt, now)

    participation.status = ParticipationStatus.COMPLETED.value
    participation.completed_at = now
    participation.time_taken_seconds = max(0.0, (now - participation.started_at).total_seconds())
    participation.rank = rank

    reward = calculate_reward(hunt.difficulty, rank, participation.hints_used)
    participation.reward_amount = reward.total

    entry = RewardLedger(
        hunt_id=hunt.id,
        participation_id=participation.id,
        user_id=participation.user_id,
        kind="completion",
        rank=rank,
        amount=reward.total,
        description=f"Completed {hunt.name} (#{rank})",
        idempotency_key=f"completion:{participation.id}",
        created_at=now,
    )
    db.add(entry)
    await db.flush()
    return entry


async def submit_answer(
    db: AsyncSession,
    redis: object | None,
    participation_id: int,
    answer: str,
) -> SubmissionResult:
    """Submit an answer for the participation's current clue.

    A completed participation returns its stored result untouched, so
    retried requests are safe.
    """
    completion: list[tuple[Hunt, Participation, RewardLedger]] = []

    async def _submit() -> SubmissionResult:
        completion.clear()
        participation = await get_participation(db, participation_id, for_update=True)
        if participation.status == ParticipationStatus.COMPLETED:
            return _stored_result(participation)

        hunt = await get_hunt(db, participation.hunt_id, for_share=True)
        _check_hunt_open(hunt, _utcnow())

        total_clues = await count_clues(db, hunt.id)
        clue = await get_clue_at(db, hunt.id, participation.current_clue_index)
        if clue is None:
            raise NotFoundError("No current clue")

        correct = check_answer(clue, answer)
        db.add(ClueAttempt(
            participation_id=participation.id,
            clue_id=clue.id,
            answer=answer[:_ANSWER_MAX_LENGTH],
            correct=correct,
            attempted_at=_utcnow(),
        ))

        if not correct:
            participation.incorrect_attempts += 1
            await db.flush()
            return SubmissionResult(
                outcome=SubmissionOutcome.INCORRECT,
                correct=False,
                completed=False,
                message="Incorrect answer, try again",
                current_clue_index=participation.current_clue_index,
                clues_found=participation.clues_found,
            )

        participation.clues_found += 1
        participation.current_clue_index += 1

        if participation.current_clue_index < total_clues:
            await db.flush()
            return SubmissionResult(
                outcome=SubmissionOutcome.ADVANCED,
                correct=True,
                completed=False,
                message=f"Correct! Clue {participation.current_clue_index + 1} of {total_clues} unlocked",
                current_clue_index=participation.current_clue_index,
                clues_found=participation.clues_found,
            )

        entry = await _complete(db, hunt, participation)
        completion.append((hunt, participation, entry))
        return SubmissionResult(
            outcome=SubmissionOutcome.COMPLETED,
            correct=True,
            completed=True,
            message=f"Congratulations! You finished #{participation.rank}",
            current_clue_index=participation.current_clue_index,
            clues_found=participation.clues_found,
            rank=participation.rank,
            reward=participation.reward_amount,
        )

    result = await run_in_transaction(db, _submit, label=f"submit participation={participation_id}")

    if completion:
        hunt, participation, entry = completion[0]
        logger.info(
            "Participation %d completed hunt %d: rank=%s reward=%s time=%.1fs",
            participation.id, hunt.id, participation.rank, participation.reward_amount,
            participation.time_taken_seconds or 0.0,
        )
        await emit_reward_due(redis, [entry])
        await emit_completion_notification(redis, hunt, participation)

    return result


async def use_hint(db: AsyncSession, participation_id: int, level: int) -> HintResult:
    """Reveal hint ``level`` of the current clue, spending one from the budget.

    A level already revealed for this clue is returned again for free.
    """

    async def _use_hint() -> HintResult:
        participation = await get_participation(db, participation_id, for_update=True)
        if participation.status == ParticipationStatus.COMPLETED:
            raise ValidationError("Participation already completed")

        hunt = await get_hunt(db, participation.hunt_id)
        clue = await get_clue_at(db, hunt.id, participation.current_clue_index)
        if clue is None:
            raise NotFoundError("No current clue")

        text = get_hint(clue, level)
        allowed = max_hints_allowed(hunt.difficulty)

        revealed = await db.execute(
            select(HintReveal.id).where(
                HintReveal.participation_id == participation.id,
                HintReveal.clue_id == clue.id,
                HintReveal.level == level,
            )
        )
        if revealed.scalar_one_or_none() is not None:
            return HintResult(
                level=level,
                text=text,
                hints_used=participation.hints_used,
                hints_remaining=max(0, allowed - participation.hints_used),
                newly_revealed=False,
            )

        if participation.hints_used >= allowed:
            raise ValidationError(f"Hint budget exceeded ({allowed} allowed for {hunt.difficulty} hunts)")

        participation.hints_used += 1
        db.add(HintReveal(
            participation_id=participation.id,
            clue_id=clue.id,
            level=level,
            revealed_at=_utcnow(),
        ))
        await db.flush()
        return HintResult(
            level=level,
            text=text,
            hints_used=participation.hints_used,
            hints_remaining=allowed - participation.hints_used,
            newly_revealed=True,
        )

    return await run_in_transaction(db, _use_hint, label=f"hint participation={participation_id}")


# ---------------------------------------------------------------------------
# Progress & audit
# ---------------------------------------------------------------------------


async def get_progress(db: AsyncSession, participation_id: int) -> dict:
    """Current progress of a participation, including the clue to solve."""
    participation = await get_participation(db, participation_id)
    hunt = await get_hunt(db, participation.hunt_id)
    total_clues = await count_clues(db, hunt.id)
    allowed = max_hints_allowed(hunt.difficulty)

    current_clue = None
    if participation.status == ParticipationStatus.IN_PROGRESS:
        clue = await get_clue_at(db, hunt.id, participation.current_clue_index)
        if clue is not None:
            current_clue = {
                "clue_id": clue.id,
                "order": clue.clue_order,
                "kind": clue.kind,
                "text": clue.clue_text,
                "image_url": clue.image_url,
                "hint_levels": hint_levels(clue),
            }

    return {
        "participation_id": participation.id,
        "hunt_id": hunt.id,
        "user_id": participation.user_id,
        "status": participation.status,
        "current_clue_index": participation.current_clue_index,
        "clues_found": participation.clues_found,
        "total_clues": total_clues,
        "progress_percentage": round(participation.clues_found / total_clues * 100, 1) if total_clues else 0.0,
        "incorrect_attempts": participation.incorrect_attempts,
        "hints_used": participation.hints_used,
        "hints_remaining": max(0, allowed - participation.hints_used),
        "started_at": participation.started_at,
        "completed_at": participation.completed_at,
        "time_taken_seconds": participation.time_taken_seconds,
        "rank": participation.rank,
        "reward": participation.reward_amount,
        "current_clue": current_clue,
    }


async def replay_attempts(db: AsyncSession, participation_id: int) -> dict:
    """Rebuild clues_found / incorrect_attempts from the attempt log.

    ``consistent`` is False if the stored counters drifted from the log.
    """
    participation = await get_participation(db, participation_id)
    result = await db.execute(
        select(ClueAttempt)
        .where(ClueAttempt.participation_id == participation_id)
        .order_by(ClueAttempt.attempted_at.asc(), ClueAttempt.id.asc())
    )
    attempts = list(result.scalars().all())

    replayed_found = sum(1 for a in attempts if a.correct)
    replayed_incorrect = len(attempts) - replayed_found

    return {
        "participation_id": participation.id,
        "attempts": [
            {
                "clue_id": a.clue_id,
                "answer": a.answer,
                "correct": a.correct,
                "attempted_at": a.attempted_at,
            }
            for a in attempts
        ],
        "replayed": {"clues_found": replayed_found, "incorrect_attempts": replayed_incorrect},
        "stored": {
            "clues_found": participation.clues_found,
            "incorrect_attempts": participation.incorrect_attempts,
        },
        "consistent": (
            replayed_found == participation.clues_found
            and replayed_incorrect == participation.incorrect_attempts
        ),
    }
