"""
Rate Limiting Module

Per-client request throttling for unauthenticated endpoints (login and
forgot-password). Uses the shared Redis client when it is connected and an
in-process sliding window otherwise.

This is request throttling by client address. Per-account code cooldowns are
enforced separately by the challenge store.
"""

import logging
import time
from collections.abc import Callable
from functools import wraps
from typing import Any

from fastapi import Request, status
from redis.exceptions import RedisError

from ums.core import redis as redis_module
from ums.core.config import settings
from ums.core.exceptions import ServiceError

logger = logging.getLogger(__name__)

# Fallback storage: {key: [timestamp, ...]} and {key: time its window empties}
_memory_store: dict[str, list[float]] = {}
_memory_expiry: dict[str, float] = {}
_last_sweep = 0.0

SWEEP_INTERVAL_SECONDS = 60.0


class RateLimitExceeded(ServiceError):
    """Raised when a client exceeds an endpoint's request budget."""

    def __init__(self, limit: int, window_seconds: int):
        self.limit = limit
        self.window_seconds = window_seconds
        super().__init__(
            message=f"Too many requests. Maximum {limit} requests per {window_seconds} seconds.",
            error_code="RATE_LIMIT_EXCEEDED",
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            headers={"Retry-After": str(window_seconds)},
        )


async def _check_rate_limit_redis(client, key: str, limit: int, window_seconds: int) -> bool:
    """Sliding window over a Redis sorted set."""
    now = time.time()
    pipe = client.pipeline()
    pipe.zremrangebyscore(key, 0, now - window_seconds)
    pipe.zcard(key)
    pipe.zadd(key, {str(now): now})
    pipe.expire(key, window_seconds)
    results = await pipe.execute()
    return results[1] < limit


def _sweep_memory_store(now: float) -> None:
    """Drop keys whose window has emptied."""
    global _last_sweep
    _last_sweep = now
    for key, expires_at in list(_memory_expiry.items()):
        if expires_at <= now:
            _memory_expiry.pop(key, None)
            _memory_store.pop(key, None)


def _check_rate_limit_memory(key: str, limit: int, window_seconds: int) -> bool:
    """Sliding window in process memory (single instance only)."""
    now = time.time()
    if now - _last_sweep >= SWEEP_INTERVAL_SECONDS:
        _sweep_memory_store(now)

    window = [ts for ts in _memory_store.get(key, []) if ts > now - window_seconds]

    if len(window) >= limit:
        _memory_store[key] = window
        return False

    window.append(now)
    _memory_store[key] = window
    _memory_expiry[key] = now + window_seconds
    return True


def reset_memory_store() -> None:
    """Forget all in-memory counters."""
    global _last_sweep
    _memory_store.clear()
    _memory_expiry.clear()
    _last_sweep = 0.0


async def check_rate_limit(key: str, limit: int, window_seconds: int) -> bool:
    """
    Check whether one more request fits in the window for ``key``.

    Returns:
        True if the request is allowed, False if the limit is exhausted
    """
    client = redis_module.redis_client
    if client is not None:
        try:
            return await _check_rate_limit_redis(client, key, limit, window_seconds)
        except RedisError as e:
            logger.warning(f"Redis rate limit check failed, using memory: {e}")

    return _check_rate_limit_memory(key, limit, window_seconds)


def client_ip_key(request: Request) -> str:
    """Default key: client address plus endpoint path."""
    client_ip = request.client.host if request.client else "unknown"
    return f"rate_limit:{client_ip}:{request.url.path}"


def rate_limit(
    limit: int,
    window_seconds: int,
    key_func: Callable[[Request], str] = client_ip_key,
):
    """
    Rate limiting decorator for FastAPI endpoints.

    The decorated endpoint must accept a ``request: Request`` argument.

    Usage:
        @router.post("/login")
        @rate_limit(limit=10, window_seconds=60)
        async def login(request: Request, ...):
            ...
    """

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            if not settings.rate_limit_enabled:
                return await func(*args, **kwargs)

            request: Request | None = kwargs.get("request")
            if request is None:
                request = next((arg for arg in args if isinstance(arg, Request)), None)

            if request is None:
                logger.warning(
                    f"Rate limit decorator on {func.__name__} couldn't find Request object"
                )
                return await func(*args, **kwargs)

            key = key_func(request)
            if not await check_rate_limit(key, limit, window_seconds):
                logger.warning(f"Rate limit exceeded for {key}: {limit}/{window_seconds}s")
                raise RateLimitExceeded(limit, window_seconds)

            return await func(*args, **kwargs)

        return wrapper

    return decorator


__all__ = [
    "rate_limit",
    "check_rate_limit",
    "client_ip_key",
    "reset_memory_store",
    "RateLimitExceeded",
]
