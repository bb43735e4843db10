from __future__ import annotations

import logging

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from herald.core.errors import QueueLockUnavailableError
from herald.services.notifications.locks import InMemoryQueueLock, RedisQueueLock
from herald.tests.utils.fakes import FakeClock


class _FakeRedis:
    def __init__(self) -> None:
        self.now = 0.0
        self.values: dict[str, str] = {}
        self.expiry: dict[str, float] = {}

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def _expire(self, key: str) -> None:
        expires_at = self.expiry.get(key)
        if expires_at is not None and self.now >= expires_at:
            self.values.pop(key, None)
            self.expiry.pop(key, None)

    async def set(self, key: str, value: str, nx: bool = False, ex: int | None = None) -> bool | None:
        self._expire(key)
        if nx and key in self.values:
            return None
        self.values[key] = value
        if ex is not None:
            self.expiry[key] = self.now + ex
        return True

    async def get(self, key: str) -> bytes | None:
        self._expire(key)
        value = self.values.get(key)
        return value.encode("utf-8") if value is not None else None

    async def delete(self, key: str) -> int:
        self.expiry.pop(key, None)
        return 1 if self.values.pop(key, None) is not None else 0


class _DownRedis:
    async def set(self, key: str, value: str, nx: bool = False, ex: int | None = None) -> bool | None:
        raise RedisConnectionError("redis unreachable")


@pytest.mark.asyncio
async def test_redis_lock_excludes_second_holder() -> None:
    redis = _FakeRedis()
    first = RedisQueueLock(redis)
    second = RedisQueueLock(redis)

    assert await first.acquire("queue-lock", 45) is True
    assert await second.acquire("queue-lock", 45) is False

    await second.release("queue-lock")
    assert "queue-lock" in redis.values

    await first.release("queue-lock")
    assert "queue-lock" not in redis.values
    assert await second.acquire("queue-lock", 45) is True


@pytest.mark.asyncio
async def test_redis_lock_expires_and_stale_holder_cannot_release() -> None:
    redis = _FakeRedis()
    crashed = RedisQueueLock(redis)
    survivor = RedisQueueLock(redis)
    assert await crashed.acquire("queue-lock", 45) is True

    redis.advance(45)
    assert await survivor.acquire("queue-lock", 45) is True

    await crashed.release("queue-lock")
    assert await RedisQueueLock(redis).acquire("queue-lock", 45) is False


@pytest.mark.asyncio
async def test_redis_lock_outage_raises_lock_unavailable() -> None:
    lock = RedisQueueLock(_DownRedis())

    with pytest.raises(QueueLockUnavailableError):
        await lock.acquire("queue-lock", 45)


@pytest.mark.asyncio
async def test_redis_lock_release_failure_is_logged(caplog: pytest.LogCaptureFixture) -> None:
    redis = _FakeRedis()
    lock = RedisQueueLock(redis)
    assert await lock.acquire("queue-lock", 45) is True

    async def _down(key: str) -> bytes | None:
        raise RedisConnectionError("redis unreachable")

    redis.get = _down  # type: ignore[method-assign]
    with caplog.at_level(logging.WARNING, logger="herald.services.notifications.locks"):
        await lock.release("queue-lock")

    assert "queue_lock_release_failed" in caplog.text
    assert "queue-lock" in redis.values


@pytest.mark.asyncio
async def test_in_memory_lock_honours_ttl() -> None:
    clock = FakeClock()
    lock = InMemoryQueueLock(clock=clock)

    assert await lock.acquire("queue-lock", 45) is True
    assert await lock.acquire("queue-lock", 45) is False
    assert lock.is_held("queue-lock") is True

    clock.advance(44)
    assert await lock.acquire("queue-lock", 45) is False
    clock.advance(1)
    assert lock.is_held("queue-lock") is False
    assert await lock.acquire("queue-lock", 45) is True

    await lock.release("queue-lock")
    assert lock.is_held("queue-lock") is False
