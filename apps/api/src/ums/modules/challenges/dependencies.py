"""
Challenge store construction and FastAPI injection.

The store lives on ``app.state`` so each application (and each test app)
owns its own instance.
"""

import logging
from datetime import timedelta

from fastapi import Request
from redis.asyncio import Redis

from ums.core.config import Settings
from ums.modules.challenges.backends import (
    ChallengeBackend,
    InMemoryChallengeBackend,
    RedisChallengeBackend,
)
from ums.modules.challenges.store import ChallengeStore

logger = logging.getLogger(__name__)


def build_challenge_store(settings: Settings, redis_client: Redis | None = None) -> ChallengeStore:
    """
    Create the challenge store selected by ``settings.challenge_backend``.

    Falls back to process memory when Redis is requested but not connected,
    except in production where that is a startup error.
    """
    backend: ChallengeBackend
    if settings.challenge_backend == "redis":
        if redis_client is None:
            if settings.is_production:
                raise RuntimeError("CHALLENGE_BACKEND=redis but Redis is not connected")
            logger.warning("Redis unavailable, challenge store using process memory")
            backend = InMemoryChallengeBackend()
        else:
            backend = RedisChallengeBackend(redis_client)
    else:
        backend = InMemoryChallengeBackend()

    logger.info(f"Challenge store backend: {type(backend).__name__}")
    return ChallengeStore(
        backend=backend,
        secret=settings.challenge_secret,
        retention=timedelta(seconds=settings.challenge_retention_seconds),
    )


def get_challenge_store(request: Request) -> ChallengeStore:
    """FastAPI dependency returning the application's challenge store."""
    return request.app.state.challenge_store
