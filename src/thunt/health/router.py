"""Liveness, readiness and version endpoints."""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from thunt.config import get_settings
from thunt.database import get_session
from thunt.db.models import RewardLedger
from thunt.redis_client import get_redis_or_none

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, str]:
    """Liveness probe: 200 while the process is alive."""
    return {"status": "healthy"}


@router.get("/ready")
async def readiness(
    db: AsyncSession = Depends(get_session),  # noqa: B008
) -> JSONResponse:
    """Readiness probe: 503 unless both the database and Redis answer.

    Also reports how many rewards are still waiting to be credited.
    """
    checks: dict[str, str] = {}
    backlog: int | None = None

    try:
        backlog = (await db.execute(
            select(func.count(RewardLedger.id)).where(
                RewardLedger.credited_at.is_(None),
                RewardLedger.amount > 0,
            )
        )).scalar_one()
        checks["database"] = "ok"
    except SQLAlchemyError as exc:
        checks["database"] = f"error: {exc}"

    redis = get_redis_or_none()
    if redis is None:
        checks["redis"] = "error: not initialized"
    else:
        try:
            await redis.ping()
            checks["redis"] = "ok"
        except (RedisError, OSError) as exc:
            checks["redis"] = f"error: {exc}"

    ready = all(v == "ok" for v in checks.values())
    return JSONResponse(
        status_code=200 if ready else 503,
        content={
            "status": "ready" if ready else "degraded",
            "checks": checks,
            "uncredited_rewards": backlog,
        },
    )


@router.get("/version")
async def version() -> dict[str, str]:
    settings = get_settings()
    return {
        "service": "thunt-api",
        "version": settings.app_version,
        "environment": settings.environment,
    }
