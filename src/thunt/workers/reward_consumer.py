"""Redis Stream consumer for reward-due and notification events.

Reads the reward and notification streams with XREADGROUP in consumer
group 'thunt-reward-consumers'. A message is XACKed only after its side
effect succeeded; failures stay pending and are reclaimed with
XAUTOCLAIM once they have been idle for ``redelivery_idle_ms``.

Delivery is at-least-once. Crediting is idempotent through the ledger
idempotency key and the ledger ``credited_at`` stamp.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any

import redis.asyncio as aioredis
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from thunt.config import get_settings
from thunt.db.models import RewardLedger
from thunt.hunts.events import emit_reward_due
from thunt.workers.crediting import CurrencyCreditor

logger = logging.getLogger(__name__)

CONSUMER_GROUP = "thunt-reward-consumers"


def notification_channel(user_id: int) -> str:
    return f"ws:user:{user_id}"


class RewardEventConsumer:
    """Credits rewards and dispatches notifications from Redis Streams."""

    def __init__(
        self,
        redis_client: aioredis.Redis,
        session_factory: async_sessionmaker[AsyncSession],
        creditor: CurrencyCreditor,
        consumer_name: str = "hunt-worker-1",
    ) -> None:
        settings = get_settings()
        self.redis = redis_client
        self.session_factory = session_factory
        self.creditor = creditor
        self.consumer_name = consumer_name
        self.idle_ms = settings.redelivery_idle_ms
        self.handlers = {
            settings.reward_stream: self._handle_reward,
            settings.notification_stream: self._handle_notification,
        }
        self._running = False
        self._processed = 0
        self._errors = 0

    async def setup_groups(self) -> None:
        """Create consumer groups for all streams (idempotent)."""
        for stream in self.handlers:
            try:
                await self.redis.xgroup_create(stream, CONSUMER_GROUP, id="0", mkstream=True)
                logger.info("Created consumer group for %s", stream)
            except aioredis.ResponseError as e:
                if "BUSYGROUP" not in str(e):
                    raise

    async def consume(self, count: int = 100, block_ms: int = 5000) -> int:
        """Read and process a batch of new events from all streams.

        Returns:
            Number of events processed and acknowledged.
        """
        streams = {s: ">" for s in self.handlers}
        try:
            events = await self.redis.xreadgroup(
                groupname=CONSUMER_GROUP,
                consumername=self.consumer_name,
                streams=streams,
                count=count,
                block=block_ms,
            )
        except aioredis.ResponseError as e:
            logger.error("XREADGROUP error: %s", e)
            return 0

        if not events:
            return 0

        processed = 0
        for stream_name, messages in events:
            stream = stream_name if isinstance(stream_name, str) else stream_name.decode()
            processed += await self._process(stream, messages)
        return processed

    async def reclaim_stale(self, count: int = 100) -> int:
        """Take over messages left pending by failed or dead consumers."""
        processed = 0
        for stream in self.handlers:
            try:
                result = await self.redis.xautoclaim(
                    stream,
                    CONSUMER_GROUP,
                    self.consumer_name,
                    min_idle_time=self.idle_ms,
                    start_id="0-0",
                    count=count,
                )
            except aioredis.ResponseError as e:
                logger.error("XAUTOCLAIM error on %s: %s", stream, e)
                continue
            messages = [m for m in result[1] if m and m[1]]
            if messages:
                logger.info("Reclaimed %d stale messages on %s", len(messages), stream)
                processed += await self._process(stream, messages)
        return processed

    async def _process(self, stream: str, messages: list[Any]) -> int:
        handler = self.handlers.get(stream)
        if handler is None:
            return 0
        processed = 0
        for msg_id, data in messages:
            try:
                await handler(self._parse_data(data))
                await self.redis.xack(stream, CONSUMER_GROUP, msg_id)
                processed += 1
                self._processed += 1
            except Exception:
                # Left pending; reclaim_stale retries it later
                self._errors += 1
                logger.exception("Error handling %s message %s", stream, msg_id)
        return processed

    async def run(self) -> None:
        """Main consumer loop."""
        await self.setup_groups()
        self._running = True
        logger.info("Reward consumer started (consumer=%s)", self.consumer_name)

        while self._running:
            try:
                await self.reclaim_stale()
                await self.consume()
            except Exception:
                logger.exception("Consumer loop error")
                await asyncio.sleep(1)

    def stop(self) -> None:
        """Signal the consumer to stop."""
        self._running = False

    # --- Event Handlers ---

    @staticmethod
    def _parse_data(data: dict[str, str]) -> dict:
        raw = data.get("data")
        if raw is None:
            return dict(data)
        return json.loads(raw) if isinstance(raw, str) else dict(raw)

    async def _handle_reward(self, payload: dict) -> None:
        """Credit one ledger entry, then stamp it credited."""
        key = payload["idempotency_key"]
        async with self.session_factory() as session:
            entry = (await session.execute(
                select(RewardLedger).where(RewardLedger.idempotency_key == key)
            )).scalar_one_or_none()
            if entry is None:
                logger.warning("Reward event for unknown ledger key %s, dropping", key)
                return
            if entry.credited_at is not None:
                logger.debug("Ledger %s already credited", key)
                return

            await self.creditor.credit(
                user_id=entry.user_id,
                amount=entry.amount,
                description=entry.description,
                idempotency_key=entry.idempotency_key,
            )
            entry.credited_at = datetime.now(timezone.utc)
            await session.commit()
            logger.info("Credited %d to user %d (%s)", entry.amount, entry.user_id, key)

    async def _handle_notification(self, payload: dict) -> None:
        """Dispatch to the user's pub/sub channel."""
        user_id = int(payload["user_id"])
        message = json.dumps({
            "type": payload.get("type", "treasure_hunt"),
            "subtype": payload.get("subtype"),
            "data": payload,
        })
        await self.redis.publish(notification_channel(user_id), message)


async def redeliver_uncredited_rewards(
    session: AsyncSession,
    redis_client: aioredis.Redis,
    older_than_minutes: int | None = None,
) -> int:
    """Re-emit reward-due events for ledger rows still uncredited after a grace period.

    Covers events lost between commit and publish. Returns the number re-emitted.
    """
    if older_than_minutes is None:
        older_than_minutes = get_settings().ledger_redelivery_after_minutes
    cutoff = datetime.now(timezone.utc) - timedelta(minutes=older_than_minutes)
    result = await session.execute(
        select(RewardLedger)
        .where(
            RewardLedger.credited_at.is_(None),
            RewardLedger.amount > 0,
            RewardLedger.created_at < cutoff,
        )
        .order_by(RewardLedger.id.asc())
        .limit(500)
    )
    entries = list(result.scalars().all())
    if not entries:
        return 0
    sent = await emit_reward_due(redis_client, entries)
    logger.info("Re-emitted %d/%d uncredited rewards", sent, len(entries))
    return sent
