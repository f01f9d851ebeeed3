"""Redis pub/sub — broadcast of org webhook events.

Learn: Redis pub/sub is fire-and-forget. If no one is listening, the message
is lost. That's fine: the events table is the source of truth, this is a
convenience feed.

Channel naming: hookwarden:events:{github_organization_id}
"""

import json
from typing import Any, Optional

import redis.asyncio as aioredis
import structlog

from hookwarden.config import settings

logger = structlog.get_logger()

# Global Redis connection pool (initialized in lifespan)
_redis: Optional[aioredis.Redis] = None


async def init_redis() -> aioredis.Redis:
    """Initialize the Redis connection pool."""
    global _redis
    _redis = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
    )
    await _redis.ping()
    return _redis


async def close_redis() -> None:
    global _redis
    if _redis:
        await _redis.aclose()
        _redis = None


def get_redis() -> aioredis.Redis:
    """Get the Redis connection (must be initialized first)."""
    if _redis is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis


def channel_for(github_organization_id: int) -> str:
    return f"hookwarden:events:{github_organization_id}"


async def publish_event(
    github_organization_id: int,
    event_type: str,
    data: dict[str, Any],
) -> None:
    """Publish an event to the GitHub organization's channel."""
    r = get_redis()
    payload = json.dumps({"type": event_type, **data}, default=str)
    await r.publish(channel_for(github_organization_id), payload)


async def try_publish_event(
    github_organization_id: int,
    event_type: str,
    data: dict[str, Any],
) -> None:
    """publish_event that never fails the caller (Redis is optional)."""
    try:
        await publish_event(github_organization_id, event_type, data)
    except Exception:
        logger.debug("pubsub.publish_skipped", event_type=event_type, exc_info=True)
