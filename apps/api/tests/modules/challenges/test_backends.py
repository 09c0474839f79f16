"""
Tests for challenge storage backends and their per-slot locking.
"""

import asyncio
import json
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from ums.modules.challenges.backends import (
    InMemoryChallengeBackend,
    RedisChallengeBackend,
    _KeyedLock,
)
from ums.modules.challenges.models import Challenge, ChallengePurpose, Exhausted, Invalid, Verified
from ums.modules.challenges.store import ChallengeStore

NOW = datetime(2026, 3, 1, 9, 0, tzinfo=UTC)


def _challenge(**overrides) -> Challenge:
    values = {
        "subject_key": "u1",
        "purpose": ChallengePurpose.PASSWORD_CHANGE,
        "code_hash": "abc",
        "issued_at": NOW,
        "expires_at": NOW + timedelta(minutes=10),
        "attempts_remaining": 5,
        "aux_payload_hash": None,
        "pending_email": None,
    }
    values.update(overrides)
    return Challenge(**values)


class FakeRedis:
    """Just enough of redis.asyncio.Redis for the challenge backend."""

    def __init__(self):
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.locks: dict[str, asyncio.Lock] = {}

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        self.data[key] = value
        self.ttls[key] = ex

    async def delete(self, key):
        self.data.pop(key, None)

    def lock(self, name, timeout=None, blocking_timeout=None):
        return self.locks.setdefault(name, asyncio.Lock())


class TestKeyedLock:
    @pytest.mark.asyncio
    async def test_same_key_is_serialized(self):
        locks = _KeyedLock()
        order = []

        async def worker(tag):
            async with locks.hold("slot"):
                order.append(f"{tag}-in")
                await asyncio.sleep(0)
                order.append(f"{tag}-out")

        await asyncio.gather(worker("a"), worker("b"))

        assert order == ["a-in", "a-out", "b-in", "b-out"]

    @pytest.mark.asyncio
    async def test_different_keys_do_not_block(self):
        locks = _KeyedLock()
        entered = asyncio.Event()

        async def holder():
            async with locks.hold("one"):
                await entered.wait()

        task = asyncio.create_task(holder())
        await asyncio.sleep(0)
        async with locks.hold("two"):
            entered.set()
        await task

    @pytest.mark.asyncio
    async def test_lock_dropped_after_release(self):
        locks = _KeyedLock()
        async with locks.hold("slot"):
            assert len(locks) == 1
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_lock_dropped_after_error(self):
        locks = _KeyedLock()
        with pytest.raises(RuntimeError):
            async with locks.hold("slot"):
                raise RuntimeError("boom")
        assert len(locks) == 0


class TestInMemoryBackend:
    @pytest.mark.asyncio
    async def test_get_returns_copy(self):
        backend = InMemoryChallengeBackend()
        await backend.put("s", _challenge(), keep_seconds=60)

        copy = await backend.get("s")
        copy.attempts_remaining = 0

        assert (await backend.get("s")).attempts_remaining == 5

    @pytest.mark.asyncio
    async def test_delete_missing_is_noop(self):
        backend = InMemoryChallengeBackend()
        await backend.delete("missing")
        assert len(backend) == 0

    @pytest.mark.asyncio
    async def test_purge_expired(self):
        backend = InMemoryChallengeBackend()
        await backend.put("old", _challenge(expires_at=NOW - timedelta(seconds=1)), 60)
        await backend.put("new", _challenge(), 60)

        assert await backend.purge_expired(NOW) == 1
        assert await backend.get("old") is None
        assert await backend.get("new") is not None


class TestRedisBackend:
    @pytest.mark.asyncio
    async def test_put_stores_json_with_ttl(self):
        client = FakeRedis()
        backend = RedisChallengeBackend(client)

        await backend.put("password_change:u1", _challenge(pending_email="a@b.c"), keep_seconds=900)

        raw = client.data["challenge:password_change:u1"]
        assert json.loads(raw)["pending_email"] == "a@b.c"
        assert client.ttls["challenge:password_change:u1"] == 900

    @pytest.mark.asyncio
    async def test_round_trip(self):
        backend = RedisChallengeBackend(FakeRedis())
        original = _challenge(aux_payload_hash="h")

        await backend.put("s", original, keep_seconds=60)

        assert await backend.get("s") == original

    @pytest.mark.asyncio
    async def test_unreadable_document_is_discarded(self):
        client = FakeRedis()
        client.data["challenge:s"] = "{not json"
        backend = RedisChallengeBackend(client)

        assert await backend.get("s") is None
        assert "challenge:s" not in client.data

    @pytest.mark.asyncio
    async def test_lock_uses_redis_lock_with_timeout(self):
        client = MagicMock()
        client.lock = MagicMock(return_value=asyncio.Lock())
        backend = RedisChallengeBackend(client, lock_timeout=2.0)

        async with backend.lock("slot"):
            pass

        client.lock.assert_called_once_with(
            "challenge:lock:slot", timeout=2.0, blocking_timeout=2.0
        )

    @pytest.mark.asyncio
    async def test_lock_timeout_defaults_to_five_seconds(self):
        client = MagicMock()
        client.lock = MagicMock(return_value=asyncio.Lock())

        async with RedisChallengeBackend(client).lock("slot"):
            pass

        client.lock.assert_called_once_with(
            "challenge:lock:slot", timeout=5.0, blocking_timeout=5.0
        )

    @pytest.mark.asyncio
    async def test_purge_is_left_to_key_ttl(self):
        client = AsyncMock()
        backend = RedisChallengeBackend(client)

        assert await backend.purge_expired(NOW) == 0
        client.delete.assert_not_called()

    @pytest.mark.asyncio
    async def test_store_over_redis_backend(self):
        now = NOW
        store = ChallengeStore(
            backend=RedisChallengeBackend(FakeRedis()),
            secret="s",
            clock=lambda: now,
            code_factory=lambda: "135790",
        )
        ttl, cooldown = timedelta(minutes=10), timedelta(seconds=60)
        purpose = ChallengePurpose.FORGOT_PASSWORD

        await store.issue("a@uni.edu", purpose, ttl=ttl, cooldown=cooldown, max_attempts=2)

        assert await store.verify("a@uni.edu", purpose, "000000") == Invalid(attempts_remaining=1)
        assert await store.verify("a@uni.edu", purpose, "000000") == Exhausted()

        await store.issue("a@uni.edu", purpose, ttl=ttl, cooldown=cooldown, max_attempts=2)
        assert await store.verify("a@uni.edu", purpose, "135790") == Verified()
