"""Race-free completion ranks.

Strategy: each hunt has a row in ``hunt_counters`` whose
``completed_count`` is a monotonic sequence. A completing participation
claims its rank with a single

    UPDATE hunt_counters SET completed_count = completed_count + 1
    WHERE hunt_id = :hunt RETURNING completed_count

inside the completion transaction. The row lock taken by that UPDATE is
held until commit, so concurrent completions of one hunt queue behind
each other and receive consecutive ranks in commit order, never the
same rank. ``completed_at`` is stamped after the claim, which keeps
``rank == 1 + #(completed earlier)`` true even for wall-clock ties.
The (hunt_id, rank) unique constraint is the storage-level backstop; a
violation surfaces as a retryable conflict.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from thunt.db.models import HuntCounter, Participation
from thunt.hunts.states import ParticipationStatus

logger = logging.getLogger(__name__)


async def ensure_counter(db: AsyncSession, hunt_id: int) -> None:
    """Create the hunt's counter row if it does not exist (idempotent, race-safe)."""
    values = {
        "hunt_id": hunt_id,
        "participant_count": 0,
        "completed_count": 0,
        "updated_at": datetime.now(timezone.utc),
    }
    dialect = db.bind.dialect.name if db.bind is not None else ""
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        msg = f"Unsupported database dialect for hunt counters: {dialect!r}"
        raise RuntimeError(msg)
    await db.execute(insert(HuntCounter).values(**values).on_conflict_do_nothing(index_elements=["hunt_id"]))


async def assign_rank(db: AsyncSession, hunt_id: int) -> int:
    """Claim the next completion rank for ``hunt_id``.

    Must run inside the transaction that marks the participation
    completed; the caller commits.
    """
    stmt = (
        update(HuntCounter)
        .where(HuntCounter.hunt_id == hunt_id)
        .values(
            completed_count=HuntCounter.completed_count + 1,
            updated_at=datetime.now(timezone.utc),
        )
        .returning(HuntCounter.completed_count)
        .execution_options(synchronize_session=False)
    )
    rank = (await db.execute(stmt)).scalar_one_or_none()
    if rank is None:
        # Participations created before the counter existed (imports, backfills).
        await ensure_counter(db, hunt_id)
        rank = (await db.execute(stmt)).scalar_one()
    logger.debug("Hunt %d: assigned rank %d", hunt_id, rank)
    return rank


async def audit_ranks(db: AsyncSession, hunt_id: int) -> dict:
    """Check that completed ranks in a hunt are exactly 1..K.

    Returns the completed count, the sorted ranks, and whether they form a
    contiguous sequence without duplicates.
    """
    result = await db.execute(
        select(Participation.rank)
        .where(
            Participation.hunt_id == hunt_id,
            Participation.status == ParticipationStatus.COMPLETED,
        )
        .order_by(Participation.rank)
    )
    ranks = [r for (r,) in result.all()]
    counter = (await db.execute(
        select(func.coalesce(HuntCounter.completed_count, 0)).where(HuntCounter.hunt_id == hunt_id)
    )).scalar_one_or_none() or 0
    return {
        "completed": len(ranks),
        "ranks": ranks,
        "sequence": counter,
        "contiguous": ranks == list(range(1, len(ranks) + 1)) and counter == len(ranks),
    }
