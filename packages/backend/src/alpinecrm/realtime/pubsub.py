"""Redis pub/sub — event broadcasting between services and WebSockets.

Learn: Redis pub/sub is fire-and-forget. If no one is listening, the message
is lost. That's fine here: clients invalidate rather than patch their caches,
so the next explicit fetch reconciles whatever they missed.

Channel naming:
    alpinecrm:events:user:{user_id}   — events for one user's sessions
    alpinecrm:events:broadcast        — events for every connected session
"""

from typing import Any, Optional

import redis.asyncio as aioredis
import structlog

from alpinecrm.config import settings
from alpinecrm.events.types import DomainEvent, EventType, encode_frame

logger = structlog.get_logger()

CHANNEL_PREFIX = "alpinecrm:events"
BROADCAST_CHANNEL = f"{CHANNEL_PREFIX}:broadcast"

# Global Redis connection pool (initialized in lifespan)
_redis: Optional[aioredis.Redis] = None


def user_channel(user_id: str) -> str:
    return f"{CHANNEL_PREFIX}:user:{user_id}"


async def init_redis() -> aioredis.Redis:
    """Initialize the Redis connection pool."""
    global _redis
    _redis = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
    )
    # Verify connection
    await _redis.ping()
    return _redis


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _redis
    if _redis:
        await _redis.aclose()
        _redis = None


def get_redis() -> aioredis.Redis:
    """Get the Redis connection (must be initialized first)."""
    if _redis is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis


async def publish_event(event: DomainEvent, user_id: Optional[str] = None) -> int:
    """Publish an event to a user's channel, or to everyone if no user given.

    Returns the number of subscribers that received it (0 when nobody is
    connected — the event is then simply dropped).
    """
    r = get_redis()
    channel = user_channel(user_id) if user_id else BROADCAST_CHANNEL
    receivers = await r.publish(channel, encode_frame(event))
    logger.debug(
        "realtime.published",
        event=event.type.value,
        channel=channel,
        receivers=receivers,
    )
    return receivers


async def emit_to_user(
    user_id: str,
    event_type: EventType,
    data: dict[str, Any],
) -> int:
    """Emit an event to every session of one user."""
    return await publish_event(DomainEvent(type=event_type, payload=data), user_id=user_id)


async def broadcast(event_type: EventType, data: dict[str, Any]) -> int:
    """Emit an event to every connected session."""
    return await publish_event(DomainEvent(type=event_type, payload=data))
