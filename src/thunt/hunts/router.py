"""Treasure hunt API: hunts, participations, leaderboard."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from thunt.auth.dependencies import get_current_user_id, require_operator
from thunt.config import get_settings
from thunt.database import get_session
from thunt.db.models import Participation
from thunt.hunts import hunt_service, leaderboard_service, participation_service
from thunt.hunts.schemas import (
    AnswerRequest,
    AttemptLogResponse,
    HintRequest,
    HintResponse,
    HuntDetailResponse,
    HuntListResponse,
    HuntSummaryResponse,
    HuntTransitionRequest,
    HuntTransitionResponse,
    LeaderboardResponse,
    ParticipationResponse,
    ProgressResponse,
    StatisticsResponse,
    SubmissionResponse,
)
from thunt.redis_client import get_redis_or_none

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["Treasure Hunts"])


async def _owned_participation(db: AsyncSession, participation_id: int, user_id: int) -> Participation:
    participation = await participation_service.get_participation(db, participation_id)
    if participation.user_id != user_id:
        raise HTTPException(status_code=403, detail="Not your participation")
    return participation


# ── Hunts ──


@router.get("/hunts", response_model=HuntListResponse)
async def list_hunts(
    status: str | None = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=100),
    db: AsyncSession = Depends(get_session),
) -> HuntListResponse:
    """List hunts, optionally filtered by status."""
    hunts = await hunt_service.list_hunts(db, status=status, page=page, per_page=per_page)
    return HuntListResponse(
        hunts=[HuntSummaryResponse.model_validate(h) for h in hunts],
        page=page,
        per_page=per_page,
    )


@router.get("/hunts/{hunt_id}", response_model=HuntDetailResponse)
async def get_hunt(
    hunt_id: int,
    db: AsyncSession = Depends(get_session),
) -> HuntDetailResponse:
    """Hunt detail with clue count and prize table."""
    return HuntDetailResponse(**await hunt_service.get_hunt_detail(db, hunt_id))


@router.post("/hunts/{hunt_id}/join", response_model=ParticipationResponse, status_code=201)
async def join_hunt(
    hunt_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
) -> ParticipationResponse:
    """Join an active hunt."""
    participation = await participation_service.join(db, hunt_id, user_id)
    return ParticipationResponse.model_validate(participation)


@router.get("/hunts/{hunt_id}/me", response_model=ParticipationResponse)
async def get_my_participation(
    hunt_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
) -> ParticipationResponse:
    """The caller's participation in a hunt."""
    participation = await participation_service.find_participation(db, hunt_id, user_id)
    if participation is None:
        raise HTTPException(status_code=404, detail="Not participating in this hunt")
    return ParticipationResponse.model_validate(participation)


@router.get("/hunts/{hunt_id}/leaderboard", response_model=LeaderboardResponse)
async def get_leaderboard(
    hunt_id: int,
    limit: int = Query(10, ge=1),
    db: AsyncSession = Depends(get_session),
) -> LeaderboardResponse:
    """Fastest finishers of a hunt."""
    limit = min(limit, get_settings().leaderboard_max_limit)
    return LeaderboardResponse(**await leaderboard_service.get_leaderboard(db, hunt_id, limit))


@router.get("/hunts/{hunt_id}/statistics", response_model=StatisticsResponse)
async def get_statistics(
    hunt_id: int,
    db: AsyncSession = Depends(get_session),
) -> StatisticsResponse:
    """Participation statistics for a hunt."""
    return StatisticsResponse(**await leaderboard_service.get_statistics(db, hunt_id))


@router.post("/hunts/{hunt_id}/transition", response_model=HuntTransitionResponse)
async def transition_hunt(
    hunt_id: int,
    body: HuntTransitionRequest,
    operator_id: int = Depends(require_operator),
    db: AsyncSession = Depends(get_session),
) -> HuntTransitionResponse:
    """Move a hunt to a new status. Completing a hunt pays out its prizes."""
    hunt = await hunt_service.transition_hunt(db, get_redis_or_none(), hunt_id, body.status)
    logger.info("Operator %d moved hunt %d to %s", operator_id, hunt_id, hunt.status)
    return HuntTransitionResponse(
        id=hunt.id,
        status=hunt.status,
        started_at=hunt.started_at,
        completed_at=hunt.completed_at,
    )


# ── Participations ──


@router.get("/participations/{participation_id}", response_model=ProgressResponse)
async def get_progress(
    participation_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
) -> ProgressResponse:
    """Progress and current clue."""
    await _owned_participation(db, participation_id, user_id)
    return ProgressResponse(**await participation_service.get_progress(db, participation_id))


@router.post("/participations/{participation_id}/answers", response_model=SubmissionResponse)
async def submit_answer(
    participation_id: int,
    body: AnswerRequest,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
) -> SubmissionResponse:
    """Submit an answer for the current clue."""
    await _owned_participation(db, participation_id, user_id)
    result = await participation_service.submit_answer(db, get_redis_or_none(), participation_id, body.answer)
    return SubmissionResponse(
        outcome=result.outcome.value,
        correct=result.correct,
        completed=result.completed,
        message=result.message,
        current_clue_index=result.current_clue_index,
        clues_found=result.clues_found,
        rank=result.rank,
        reward=result.reward,
    )


@router.post("/participations/{participation_id}/hints", response_model=HintResponse)
async def use_hint(
    participation_id: int,
    body: HintRequest,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
) -> HintResponse:
    """Reveal a hint for the current clue."""
    await _owned_participation(db, participation_id, user_id)
    result = await participation_service.use_hint(db, participation_id, body.level)
    return HintResponse(
        level=result.level,
        text=result.text,
        hints_used=result.hints_used,
        hints_remaining=result.hints_remaining,
        newly_revealed=result.newly_revealed,
    )


@router.get("/participations/{participation_id}/attempts", response_model=AttemptLogResponse)
async def get_attempts(
    participation_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
) -> AttemptLogResponse:
    """Attempt log with a replay consistency check."""
    await _owned_participation(db, participation_id, user_id)
    return AttemptLogResponse(**await participation_service.replay_attempts(db, participation_id))
