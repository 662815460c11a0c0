"""Fixed-window rate limiting on Redis counters.

Two buckets: a general per-IP budget for every API request, and a much
smaller per-participation budget for answer submissions so clues cannot
be brute-forced. Limiting fails open when Redis is unavailable.
"""

import re
import time
from typing import Any

from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from thunt.redis_client import get_redis

_EXEMPT_PATHS = frozenset({"/health", "/ready", "/version"})
_ANSWER_PATH = re.compile(r"^/api/v1/participations/(\d+)/answers$")


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Per-IP request budget plus a per-participation answer budget."""

    def __init__(
        self,
        app: Any,  # noqa: ANN401
        requests_per_window: int = 100,
        window_seconds: int = 60,
        answers_per_window: int = 20,
    ) -> None:
        super().__init__(app)
        self.requests_per_window = requests_per_window
        self.answers_per_window = answers_per_window
        self.window_seconds = window_seconds

    def bucket(self, request: Request) -> tuple[str, int]:
        """Counter key prefix and limit that apply to ``request``."""
        client_ip = request.client.host if request.client else "unknown"
        match = _ANSWER_PATH.match(request.url.path)
        if match and request.method == "POST":
            return f"ratelimit:answers:{match.group(1)}:{client_ip}", self.answers_per_window
        return f"ratelimit:{client_ip}", self.requests_per_window

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path in _EXEMPT_PATHS:
            return await call_next(request)

        prefix, limit = self.bucket(request)
        window = int(time.time()) // self.window_seconds
        key = f"{prefix}:{window}"

        try:
            pipe = get_redis().pipeline()
            pipe.incr(key)
            pipe.expire(key, self.window_seconds + 1)
            count: int = (await pipe.execute())[0]
        except (RuntimeError, RedisError):
            return await call_next(request)

        if count > limit:
            return JSONResponse(
                status_code=429,
                content={"detail": "Rate limit exceeded. Try again later."},
                headers={
                    "Retry-After": str(self.window_seconds - int(time.time()) % self.window_seconds),
                    "X-RateLimit-Remaining": "0",
                    "X-RateLimit-Limit": str(limit),
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Remaining"] = str(max(0, limit - count))
        response.headers["X-RateLimit-Limit"] = str(limit)
        return response
