"""arq worker for reward crediting and notification dispatch.

Runs as a separate process: the stream consumer loop starts on worker
startup and a cron job re-emits rewards whose events were lost.
"""

from __future__ import annotations

import asyncio
import logging

import redis.asyncio as aioredis
from arq import cron
from arq.connections import RedisSettings

from thunt.config import get_settings
from thunt.database import close_db, get_session_factory, init_db, session_scope
from thunt.middleware.logging import setup_logging
from thunt.redis_client import create_redis
from thunt.workers.crediting import CurrencyCreditor, get_creditor
from thunt.workers.reward_consumer import RewardEventConsumer, redeliver_uncredited_rewards

logger = logging.getLogger(__name__)


async def startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize DB, Redis, crediting client and the consumer loop."""
    settings = get_settings()
    setup_logging(settings, service="thunt-worker")
    await init_db(settings.database_url, pool_size=5, max_overflow=5)

    redis_client = create_redis(settings.redis_url, max_connections=20)
    creditor = get_creditor(settings)
    consumer = RewardEventConsumer(
        redis_client=redis_client,
        session_factory=get_session_factory(),
        creditor=creditor,
        consumer_name=settings.consumer_name,
    )
    await consumer.setup_groups()

    ctx["thunt_redis"] = redis_client
    ctx["creditor"] = creditor
    ctx["consumer"] = consumer
    ctx["consumer_task"] = asyncio.create_task(consumer.run())
    logger.info("Reward worker started (consumer=%s)", settings.consumer_name)


async def shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    """Stop the consumer loop and release connections."""
    consumer: RewardEventConsumer | None = ctx.get("consumer")
    if consumer:
        consumer.stop()

    task: asyncio.Task[None] | None = ctx.get("consumer_task")
    if task:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    creditor: CurrencyCreditor | None = ctx.get("creditor")
    if creditor:
        await creditor.aclose()

    redis_client: aioredis.Redis | None = ctx.get("thunt_redis")
    if redis_client:
        await redis_client.aclose()

    await close_db()
    logger.info("Reward worker shut down")


async def redeliver_uncredited(ctx: dict) -> int:  # type: ignore[type-arg]
    """Periodic task: re-emit ledger rows still uncredited after the grace period."""
    redis_client: aioredis.Redis = ctx["thunt_redis"]
    async with session_scope() as session:
        return await redeliver_uncredited_rewards(session, redis_client)


class WorkerSettings:
    """arq worker settings for the reward worker."""

    functions = [redeliver_uncredited]
    cron_jobs = [
        cron(redeliver_uncredited, minute={0, 5, 10, 15, 20, 25, 30, 35, 40, 45, 50, 55}),
    ]
    redis_settings = RedisSettings.from_dsn(get_settings().redis_url)
    on_startup = startup
    on_shutdown = shutdown
    max_jobs = 4
    job_timeout = 300
    allow_abort_jobs = True
