"""Hunt lifecycle and top-3 prize payout.

State progression: draft -> active -> completed | expired.
Entering ``completed`` pays the prize pool to ranks 1-3. The payout is
idempotent: each prize has a ledger idempotency key, so re-triggering
hunt completion never disburses twice.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from thunt.db.models import Hunt, HuntCounter, Participation, RewardLedger
from thunt.hunts.errors import ValidationError
from thunt.hunts.events import emit_prize_notifications, emit_reward_due
from thunt.hunts.participation_service import count_clues, get_hunt
from thunt.hunts.rewards import PRIZE_SHARES, prize_for_rank, prize_table
from thunt.hunts.states import (
    HuntStatus,
    ParticipationStatus,
    max_hints_allowed,
    validate_hunt_transition,
)

logger = logging.getLogger(__name__)


async def list_hunts(
    db: AsyncSession,
    status: str | None = None,
    page: int = 1,
    per_page: int = 50,
) -> list[Hunt]:
    """List hunts, soonest first, with an optional status filter."""
    q = select(Hunt)
    if status:
        q = q.where(Hunt.status == status)
    q = q.order_by(Hunt.starts_at.asc(), Hunt.id.asc()).offset((page - 1) * per_page).limit(per_page)
    result = await db.execute(q)
    return list(result.scalars().all())


async def get_hunt_detail(db: AsyncSession, hunt_id: int) -> dict:
    """Hunt with clue count, participant count, hint budget and prize table."""
    hunt = await get_hunt(db, hunt_id)
    participants = (await db.execute(
        select(func.coalesce(HuntCounter.participant_count, 0)).where(HuntCounter.hunt_id == hunt_id)
    )).scalar_one_or_none() or 0
    return {
        "id": hunt.id,
        "name": hunt.name,
        "description": hunt.description,
        "status": hunt.status,
        "difficulty": hunt.difficulty,
        "starts_at": hunt.starts_at,
        "ends_at": hunt.ends_at,
        "max_participants": hunt.max_participants,
        "participant_count": participants,
        "prize_pool": hunt.prize_pool,
        "prizes": prize_table(hunt.prize_pool),
        "max_hints": max_hints_allowed(hunt.difficulty),
        "total_clues": await count_clues(db, hunt.id),
    }


async def transition_hunt(
    db: AsyncSession,
    redis: object | None,
    hunt_id: int,
    target: str,
) -> Hunt:
    """Move a hunt to ``target`` with validation and entry actions.

    Re-sending ``completed`` for an already completed hunt re-runs the
    (idempotent) payout instead of failing, so the upstream completion
    event can be delivered more than once.
    """
    try:
        target_status = HuntStatus(target)
    except ValueError:
        raise ValidationError(f"Unknown hunt status: {target}") from None
    hunt = await get_hunt(db, hunt_id, for_update=True)

    if hunt.status == HuntStatus.COMPLETED and target_status == HuntStatus.COMPLETED:
        await db.commit()
        await disburse_prizes(db, redis, hunt_id)
        return hunt

    try:
        validate_hunt_transition(hunt.status, target_status)
    except ValidationError:
        await db.rollback()
        raise

    now = datetime.now(timezone.utc)
    previous = hunt.status
    hunt.status = target_status.value
    if target_status == HuntStatus.ACTIVE and hunt.started_at is None:
        hunt.started_at = now
    elif target_status in (HuntStatus.COMPLETED, HuntStatus.EXPIRED):
        hunt.completed_at = now
    await db.commit()
    logger.info("Hunt %d: %s -> %s", hunt.id, previous, hunt.status)

    if target_status == HuntStatus.COMPLETED:
        await disburse_prizes(db, redis, hunt.id)

    return hunt


async def disburse_prizes(
    db: AsyncSession,
    redis: object | None,
    hunt_id: int,
) -> list[RewardLedger]:
    """Pay the top-3 prize split for a completed hunt.

    Returns the ledger entries created by this call (empty if everything
    was already paid).
    """
    hunt = await get_hunt(db, hunt_id, for_update=True)
    status = hunt.status
    if status != HuntStatus.COMPLETED:
        await db.rollback()
        raise ValidationError(f"Prizes are paid only for completed hunts (status: {status})")

    winners_result = await db.execute(
        select(Participation)
        .where(
            Participation.hunt_id == hunt_id,
            Participation.status == ParticipationStatus.COMPLETED,
            Participation.rank <= max(PRIZE_SHARES),
        )
        .order_by(Participation.rank.asc())
    )
    winners = list(winners_result.scalars().all())

    keys = {p.rank: f"prize:{hunt_id}:{p.rank}" for p in winners}
    existing_result = await db.execute(
        select(RewardLedger.idempotency_key).where(RewardLedger.idempotency_key.in_(list(keys.values())))
    )
    already_paid = set(existing_result.scalars().all())

    now = datetime.now(timezone.utc)
    created: list[RewardLedger] = []
    for p in winners:
        amount = prize_for_rank(hunt.prize_pool, p.rank)
        key = keys[p.rank]
        if amount <= 0 or key in already_paid:
            continue
        entry = RewardLedger(
            hunt_id=hunt_id,
            participation_id=p.id,
            user_id=p.user_id,
            kind="prize",
            rank=p.rank,
            amount=amount,
            description=f"{hunt.name} prize #{p.rank}",
            idempotency_key=key,
            created_at=now,
        )
        db.add(entry)
        created.append(entry)

    try:
        await db.commit()
    except IntegrityError:
        # Another payout for this hunt committed first.
        await db.rollback()
        await db.refresh(hunt)
        logger.info("Hunt %d: prizes already disbursed concurrently", hunt_id)
        return []

    if created:
        logger.info(
            "Hunt %d: disbursed %d prizes totalling %d",
            hunt_id, len(created), sum(e.amount for e in created),
        )
        await emit_reward_due(redis, created)
        await emit_prize_notifications(redis, hunt, created)
    else:
        logger.info("Hunt %d: no prizes to disburse", hunt_id)

    return created
