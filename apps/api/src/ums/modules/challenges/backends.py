"""
Challenge Backends

Storage for live challenges, one slot per (purpose, subject key).

Each backend also provides a per-slot lock so that issue, verify and cancel
on the same slot are linearized while unrelated slots proceed in parallel.

- InMemoryChallengeBackend: process-local dict, refcounted asyncio locks.
  Challenges are lost on restart, which the short TTL makes acceptable.
- RedisChallengeBackend: one JSON document per slot with a key TTL and a
  Redis lock per slot. Works across workers.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import replace
from datetime import datetime

from redis.asyncio import Redis

from ums.modules.challenges.models import Challenge

logger = logging.getLogger(__name__)


class ChallengeBackend(ABC):
    """Slot storage used by ChallengeStore."""

    @abstractmethod
    def lock(self, slot: str) -> AbstractAsyncContextManager[None]:
        """Async context manager holding the slot's lock."""

    @abstractmethod
    async def get(self, slot: str) -> Challenge | None: ...

    @abstractmethod
    async def put(self, slot: str, challenge: Challenge, keep_seconds: int) -> None:
        """Store ``challenge``, retaining it for at least ``keep_seconds``."""

    @abstractmethod
    async def delete(self, slot: str) -> None: ...

    @abstractmethod
    async def purge_expired(self, now: datetime) -> int:
        """Drop challenges whose expiry has passed. Returns the count removed."""


class _KeyedLock:
    """asyncio locks created on demand and dropped when nobody holds or awaits them."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class InMemoryChallengeBackend(ChallengeBackend):
    """Process-local challenge storage."""

    def __init__(self) -> None:
        self._challenges: dict[str, Challenge] = {}
        self._locks = _KeyedLock()

    def lock(self, slot: str) -> AbstractAsyncContextManager[None]:
        return self._locks.hold(slot)

    async def get(self, slot: str) -> Challenge | None:
        challenge = self._challenges.get(slot)
        return replace(challenge) if challenge else None

    async def put(self, slot: str, challenge: Challenge, keep_seconds: int) -> None:
        # Expired entries are removed on verify or by the purge job
        self._challenges[slot] = replace(challenge)

    async def delete(self, slot: str) -> None:
        self._challenges.pop(slot, None)

    async def purge_expired(self, now: datetime) -> int:
        candidates = [slot for slot, c in self._challenges.items() if c.is_expired(now)]
        removed = 0
        for slot in candidates:
            async with self.lock(slot):
                current = self._challenges.get(slot)
                # Re-check: the slot may have been re-issued while waiting
                if current is not None and current.is_expired(now):
                    del self._challenges[slot]
                    removed += 1
        return removed

    def __len__(self) -> int:
        return len(self._challenges)


class RedisChallengeBackend(ChallengeBackend):
    """Challenge storage in Redis, shared by every API worker."""

    def __init__(self, client: Redis, key_prefix: str = "challenge", lock_timeout: float = 5.0):
        self.client = client
        self.key_prefix = key_prefix
        self.lock_timeout = lock_timeout

    def _key(self, slot: str) -> str:
        return f"{self.key_prefix}:{slot}"

    def lock(self, slot: str) -> AbstractAsyncContextManager[None]:
        # The lock expires on its own if the holder dies mid-operation
        return self.client.lock(
            f"{self.key_prefix}:lock:{slot}",
            timeout=self.lock_timeout,
            blocking_timeout=self.lock_timeout,
        )

    async def get(self, slot: str) -> Challenge | None:
        raw = await self.client.get(self._key(slot))
        if raw is None:
            return None
        try:
            return Challenge.from_dict(json.loads(raw))
        except (ValueError, KeyError) as e:
            logger.error(f"Discarding unreadable challenge in slot {slot}: {e}")
            await self.client.delete(self._key(slot))
            return None

    async def put(self, slot: str, challenge: Challenge, keep_seconds: int) -> None:
        await self.client.set(
            self._key(slot),
            json.dumps(challenge.to_dict()),
            ex=max(1, keep_seconds),
        )

    async def delete(self, slot: str) -> None:
        await self.client.delete(self._key(slot))

    async def purge_expired(self, now: datetime) -> int:
        # Key TTLs handle eviction
        return 0
