"""Reward-due and notification events on Redis Streams.

Events are appended only after the game-state transaction committed.
Publishing is best effort: a failure is logged and the reward stays in
the ledger uncredited, where the redelivery task picks it up again.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from thunt.config import get_settings

if TYPE_CHECKING:
    from thunt.db.models import Hunt, Participation, RewardLedger

logger = logging.getLogger(__name__)


def reward_event_payload(entry: "RewardLedger") -> dict:
    return {
        "ledger_id": entry.id,
        "user_id": entry.user_id,
        "hunt_id": entry.hunt_id,
        "participation_id": entry.participation_id,
        "kind": entry.kind,
        "rank": entry.rank,
        "amount": entry.amount,
        "description": entry.description,
        "idempotency_key": entry.idempotency_key,
    }


async def _xadd(redis: object, stream: str, payload: dict) -> bool:
    settings = get_settings()
    try:
        await redis.xadd(  # type: ignore[union-attr]
            stream,
            {"data": json.dumps(payload)},
            maxlen=settings.event_stream_maxlen,
            approximate=True,
        )
    except Exception:
        logger.warning("Failed to append event to %s", stream, exc_info=True)
        return False
    return True


async def emit_reward_due(redis: object | None, entries: list["RewardLedger"]) -> int:
    """Append one reward-due event per ledger entry. Returns the number appended."""
    if redis is None or not entries:
        return 0
    stream = get_settings().reward_stream
    sent = 0
    for entry in entries:
        if entry.amount <= 0:
            continue
        if await _xadd(redis, stream, reward_event_payload(entry)):
            sent += 1
    return sent


async def emit_completion_notification(
    redis: object | None,
    hunt: "Hunt",
    participation: "Participation",
) -> bool:
    """Tell the finisher their rank and reward."""
    if redis is None:
        return False
    payload = {
        "user_id": participation.user_id,
        "type": "treasure_hunt",
        "subtype": "hunt_completed",
        "title": f"Hunt complete: {hunt.name}",
        "description": (
            f"You finished #{participation.rank} in {participation.time_taken_seconds:.0f}s. "
            f"+{participation.reward_amount or 0} coins"
        ),
        "hunt_id": hunt.id,
        "participation_id": participation.id,
        "rank": participation.rank,
    }
    return await _xadd(redis, get_settings().notification_stream, payload)


async def emit_prize_notifications(
    redis: object | None,
    hunt: "Hunt",
    entries: list["RewardLedger"],
) -> int:
    """Tell the top finishers about their prize share."""
    if redis is None:
        return 0
    stream = get_settings().notification_stream
    sent = 0
    for entry in entries:
        payload = {
            "user_id": entry.user_id,
            "type": "treasure_hunt",
            "subtype": "hunt_prize",
            "title": f"Prize won: {hunt.name}",
            "description": f"You placed #{entry.rank} and won {entry.amount} coins from the prize pool",
            "hunt_id": hunt.id,
            "rank": entry.rank,
        }
        if await _xadd(redis, stream, payload):
            sent += 1
    return sent
