"""
Redis connection layer — lazily created async client.

Used by the Redis-backed offline alert store. The client is created on
first use so deployments that keep the offline queue on disk never open
a Redis connection.

Usage:
    from backend.app.core.redis_pool import get_redis, close_redis

    client = await get_redis()
    await client.ping()
"""

from __future__ import annotations

import logging
from typing import Optional

import redis.asyncio as aioredis

from backend.app.core.config import settings

logger = logging.getLogger(__name__)

# Created on first use
_redis_client: Optional[aioredis.Redis] = None


async def get_redis(url: Optional[str] = None) -> aioredis.Redis:
    """Get or create the shared async Redis client."""
    global _redis_client
    if _redis_client is None:
        target = url or settings.REDIS_URL
        _redis_client = aioredis.from_url(
            target,
            encoding="utf-8",
            decode_responses=True,
        )
        logger.info("Redis client created: %s", target.split("@")[-1])
    return _redis_client


async def ping_redis() -> bool:
    """True if Redis answers PING; False on any connection error."""
    try:
        client = await get_redis()
        return bool(await client.ping())
    except (aioredis.RedisError, OSError) as e:
        logger.warning("Redis unavailable: %s", e)
        return False


async def close_redis() -> None:
    """Close Redis connection."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("Redis connection closed")
