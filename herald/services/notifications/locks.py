from __future__ import annotations

import logging
import time
from typing import Any, Callable, Protocol
from uuid import uuid4

from redis.exceptions import RedisError

from herald.core.errors import QueueLockUnavailableError


logger = logging.getLogger(__name__)


class QueueLock(Protocol):
    async def acquire(self, name: str, ttl_s: int) -> bool:
        ...

    async def release(self, name: str) -> None:
        ...


class RedisQueueLock:
    """TTL lock backed by ``SET NX EX`` with an owner token.

    The TTL releases the lock on its own if the holder crashes mid-pass; release
    only deletes the key while this instance still owns it.
    """

    def __init__(self, redis: Any) -> None:
        self._redis = redis
        self._tokens: dict[str, str] = {}

    async def acquire(self, name: str, ttl_s: int) -> bool:
        token = uuid4().hex
        try:
            acquired = await self._redis.set(name, token, nx=True, ex=max(1, int(ttl_s)))
        except RedisError as exc:
            raise QueueLockUnavailableError(f"queue lock {name} unavailable") from exc
        if not acquired:
            return False
        self._tokens[name] = token
        return True

    async def release(self, name: str) -> None:
        token = self._tokens.pop(name, None)
        if token is None:
            return
        try:
            current = await self._redis.get(name)
            value = current.decode("utf-8") if isinstance(current, (bytes, bytearray)) else str(current or "")
            if value != token:
                logger.warning("queue_lock_lost name=%s", name)
                return
            await self._redis.delete(name)
        except RedisError as exc:
            # The key expires on its TTL if the delete never lands.
            logger.warning("queue_lock_release_failed name=%s", name, exc_info=exc)


class InMemoryQueueLock:
    # Process-local TTL lock for tests and single-process runs.
    def __init__(self, *, clock: Callable[[], float] | None = None) -> None:
        self._clock = clock or time.time
        self._expiry: dict[str, float] = {}

    async def acquire(self, name: str, ttl_s: int) -> bool:
        now = float(self._clock())
        expiry = self._expiry.get(name)
        if expiry is not None and now < expiry:
            return False
        self._expiry[name] = now + max(1, int(ttl_s))
        return True

    async def release(self, name: str) -> None:
        self._expiry.pop(name, None)

    def is_held(self, name: str) -> bool:
        expiry = self._expiry.get(name)
        return expiry is not None and float(self._clock()) < expiry
