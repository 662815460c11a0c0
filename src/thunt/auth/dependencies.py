"""FastAPI authentication dependencies."""

from __future__ import annotations

from typing import Any

import jwt
import structlog
from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from thunt.auth.jwt import verify_token
from thunt.config import get_settings
from thunt.redis_client import get_redis_or_none

logger = structlog.get_logger()

_bearer = HTTPBearer()


async def get_token_payload(
    credentials: HTTPAuthorizationCredentials = Security(_bearer),
) -> dict[str, Any]:
    """Verify the bearer token. Raises 401 on failure."""
    try:
        return verify_token(credentials.credentials)
    except jwt.InvalidTokenError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e


async def get_current_user_id(
    payload: dict[str, Any] = Depends(get_token_payload),
) -> int:
    """
    Return the caller's user id.

    Suspended users (members of the Redis suspension set) get 403. The
    suspension check is skipped when Redis is unavailable.
    """
    user_id = int(payload["sub"])
    redis = get_redis_or_none()
    if redis is not None:
        try:
            suspended = await redis.sismember(get_settings().suspended_users_key, str(user_id))
        except Exception:
            logger.warning("suspension_check_failed", user_id=user_id, exc_info=True)
            suspended = False
        if suspended:
            raise HTTPException(status_code=403, detail="Account is suspended")
    return user_id


async def require_operator(
    payload: dict[str, Any] = Depends(get_token_payload),
    user_id: int = Depends(get_current_user_id),
) -> int:
    """Same as get_current_user_id but additionally requires the ``operator`` role."""
    if payload.get("role") != "operator":
        raise HTTPException(status_code=403, detail="Operator role required")
    return user_id
