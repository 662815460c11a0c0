"""Hunt leaderboard and statistics.

Read-only. Ranks come straight from the persisted participation rows;
nothing here recomputes them.
"""

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from thunt.db.models import Participation
from thunt.hunts.participation_service import count_clues, get_hunt
from thunt.hunts.rewards import prize_for_rank
from thunt.hunts.states import ParticipationStatus


async def get_leaderboard(db: AsyncSession, hunt_id: int, limit: int = 10) -> dict:
    """Completed participations by (completed_at, time_taken) ascending, at most ``limit``."""
    hunt = await get_hunt(db, hunt_id)
    result = await db.execute(
        select(Participation)
        .where(
            Participation.hunt_id == hunt_id,
            Participation.status == ParticipationStatus.COMPLETED,
        )
        .order_by(
            Participation.completed_at.asc(),
            Participation.time_taken_seconds.asc(),
            Participation.rank.asc(),
        )
        .limit(limit)
    )
    rows = result.scalars().all()

    entries = [
        {
            "rank": p.rank,
            "user_id": p.user_id,
            "participation_id": p.id,
            "clues_found": p.clues_found,
            "hints_used": p.hints_used,
            "time_taken_seconds": p.time_taken_seconds,
            "completed_at": p.completed_at,
            "prize": prize_for_rank(hunt.prize_pool, p.rank),
        }
        for p in rows
    ]
    return {"hunt_id": hunt.id, "entries": entries, "limit": limit}


async def get_statistics(db: AsyncSession, hunt_id: int) -> dict:
    """Participation aggregates for a hunt."""
    hunt = await get_hunt(db, hunt_id)

    participants = (await db.execute(
        select(func.count(Participation.id)).where(Participation.hunt_id == hunt_id)
    )).scalar_one()

    completed_row = (await db.execute(
        select(
            func.count(Participation.id).label("completed"),
            func.avg(Participation.time_taken_seconds).label("avg_time"),
            func.min(Participation.time_taken_seconds).label("fastest"),
        ).where(
            Participation.hunt_id == hunt_id,
            Participation.status == ParticipationStatus.COMPLETED,
        )
    )).one()

    completed = completed_row.completed or 0
    return {
        "hunt_id": hunt.id,
        "total_participants": participants,
        "completed_participants": completed,
        "average_completion_time": float(completed_row.avg_time) if completed_row.avg_time is not None else None,
        "fastest_completion_time": (
            float(completed_row.fastest) if completed_row.fastest is not None else None
        ),
        "completion_rate": round(completed / participants * 100, 2) if participants else 0.0,
        "total_clues": await count_clues(db, hunt.id),
    }
