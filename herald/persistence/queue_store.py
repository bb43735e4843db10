from __future__ import annotations

import json
import logging
from typing import Any, Protocol

from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from herald.core.errors import QueueStoreUnavailableError
from herald.domain.models import QueueDocument
from herald.domain.notifications import Entry


logger = logging.getLogger(__name__)


class QueueStore(Protocol):
    # Whole-document persistence: every save replaces the full entry list.
    async def load(self) -> list[Entry]:
        ...

    async def save(self, entries: list[Entry]) -> None:
        ...


def _decode_entries(documents: Any, *, max_attempts: int) -> list[Entry]:
    # Skip unreadable documents instead of failing the whole queue.
    if not isinstance(documents, list):
        return []
    entries: list[Entry] = []
    for document in documents:
        entry = Entry.from_dict(document, max_attempts=max_attempts) if isinstance(document, dict) else None
        if entry is None:
            logger.warning("queue_entry_unreadable document_type=%s", type(document).__name__)
            continue
        entries.append(entry)
    return entries


def _encode_entries(entries: list[Entry]) -> list[dict[str, Any]]:
    return [entry.to_dict() for entry in entries]


class InMemoryQueueStore:
    # Keeps serialized documents so callers never share mutable Entry objects with the store.
    def __init__(self, *, max_attempts: int = 5) -> None:
        self._documents: list[dict[str, Any]] = []
        self._max_attempts = max_attempts
        self.save_count = 0

    async def load(self) -> list[Entry]:
        return _decode_entries(json.loads(json.dumps(self._documents)), max_attempts=self._max_attempts)

    async def save(self, entries: list[Entry]) -> None:
        self._documents = json.loads(json.dumps(_encode_entries(entries)))
        self.save_count += 1

    def documents(self) -> list[dict[str, Any]]:
        return json.loads(json.dumps(self._documents))


class SqlQueueStore:
    def __init__(
        self,
        *,
        sessionmaker: async_sessionmaker[AsyncSession],
        name: str,
        max_attempts: int = 5,
    ) -> None:
        self._sessionmaker = sessionmaker
        self._name = name
        self._max_attempts = max_attempts

    async def load(self) -> list[Entry]:
        try:
            async with self._sessionmaker() as session:
                row = await session.get(QueueDocument, self._name)
                documents = list(row.entries_json or []) if row is not None else []
        except SQLAlchemyError as exc:
            raise QueueStoreUnavailableError(f"queue load failed: {exc}") from exc
        return _decode_entries(documents, max_attempts=self._max_attempts)

    async def save(self, entries: list[Entry]) -> None:
        # Single transaction; a failure rolls back and leaves the previous document intact.
        payload = _encode_entries(entries)
        try:
            async with self._sessionmaker() as session:
                row = await session.get(QueueDocument, self._name)
                if row is None:
                    session.add(QueueDocument(name=self._name, entries_json=payload))
                else:
                    row.entries_json = payload
                await session.commit()
        except SQLAlchemyError as exc:
            raise QueueStoreUnavailableError(f"queue save failed: {exc}") from exc


class RedisQueueStore:
    def __init__(self, *, redis: Any, key: str, max_attempts: int = 5) -> None:
        self._redis = redis
        self._key = key
        self._max_attempts = max_attempts

    async def load(self) -> list[Entry]:
        try:
            raw = await self._redis.get(self._key)
        except RedisError as exc:
            raise QueueStoreUnavailableError(f"queue load failed: {exc}") from exc
        if not raw:
            return []
        decoded = raw.decode("utf-8") if isinstance(raw, (bytes, bytearray)) else str(raw)
        try:
            documents = json.loads(decoded)
        except ValueError:
            logger.warning("queue_document_unreadable key=%s", self._key)
            return []
        return _decode_entries(documents, max_attempts=self._max_attempts)

    async def save(self, entries: list[Entry]) -> None:
        payload = json.dumps(_encode_entries(entries), separators=(",", ":"), ensure_ascii=False)
        try:
            await self._redis.set(self._key, payload)
        except RedisError as exc:
            raise QueueStoreUnavailableError(f"queue save failed: {exc}") from exc
