"""
Redis Configuration

Async Redis client shared by the rate limiter and the Redis-backed
challenge store. Redis is optional outside production: when it cannot be
reached the client stays ``None`` and callers fall back to process memory.
"""

import logging

from redis.asyncio import Redis, from_url
from redis.exceptions import RedisError

from ums.core.config import settings

logger = logging.getLogger(__name__)

redis_client: Redis | None = None


async def init_redis(required: bool = False) -> Redis | None:
    """
    Connect to Redis on application startup.

    Args:
        required: Raise instead of degrading when Redis is unreachable

    Returns:
        The connected client, or None if Redis is unavailable and not required
    """
    global redis_client
    client = from_url(settings.redis_url, encoding="utf-8", decode_responses=True)
    try:
        await client.ping()
    except (RedisError, OSError) as e:
        await client.aclose()
        if required:
            raise
        logger.warning(f"Redis unavailable, continuing without it: {e}")
        return None

    redis_client = client
    logger.info("Redis connected")
    return redis_client


async def get_redis() -> Redis | None:
    """FastAPI dependency returning the shared client, or None."""
    return redis_client


def is_redis_available() -> bool:
    return redis_client is not None


async def close_redis() -> None:
    global redis_client
    if redis_client:
        await redis_client.aclose()
        redis_client = None
