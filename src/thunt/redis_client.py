"""Shared Redis client.

Used for the event streams, rate limit counters and the suspension set.
Game state never lives here: every caller on the request path copes with
the client being absent (``get_redis_or_none``).
"""

import redis.asyncio as redis

_client: redis.Redis | None = None


def create_redis(url: str, max_connections: int = 50) -> redis.Redis:
    """A decoded-responses client with timeouts suited to XREADGROUP blocking reads."""
    return redis.from_url(  # type: ignore[no-untyped-call]
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=max_connections,
        socket_connect_timeout=5,
        health_check_interval=30,
    )


async def init_redis(url: str, max_connections: int = 50) -> None:
    global _client  # noqa: PLW0603
    _client = create_redis(url, max_connections)


async def close_redis() -> None:
    global _client  # noqa: PLW0603
    if _client is not None:
        await _client.aclose()
        _client = None


def get_redis() -> redis.Redis:
    """The shared client; RuntimeError before ``init_redis``."""
    if _client is None:
        msg = "Redis not initialized. Call init_redis() first."
        raise RuntimeError(msg)
    return _client


def get_redis_or_none() -> redis.Redis | None:
    """The shared client, or None when Redis was never initialized."""
    return _client
