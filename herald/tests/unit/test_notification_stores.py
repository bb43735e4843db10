from __future__ import annotations

import json
import logging
import weakref
from pathlib import Path

import pytest
import pytest_asyncio
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from herald.core.config import Settings
from herald.core.errors import QueueStoreUnavailableError
from herald.domain.models import HistoryEvent
from herald.domain.notifications import ResolutionStep
from herald.persistence import redis_client
from herald.persistence.db import build_engine, build_sessionmaker, create_tables
from herald.persistence.queue_store import InMemoryQueueStore, RedisQueueStore, SqlQueueStore
from herald.services.notifications.admission import normalize_entry
from herald.services.notifications.history import LoggingHistorySink, SqlHistorySink
from herald.services.notifications.receipts import SqlReceiptStore
from herald.tests.utils.fakes import email_candidate


NOW = 1_700_000_000


@pytest_asyncio.fixture
async def sessionmaker(tmp_path: Path) -> async_sessionmaker[AsyncSession]:
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'herald.db'}")
    await create_tables(engine)
    yield build_sessionmaker(engine)
    await engine.dispose()


class _FakeRedis:
    def __init__(self) -> None:
        self.values: dict[str, str] = {}

    async def get(self, key: str) -> bytes | None:
        value = self.values.get(key)
        return value.encode("utf-8") if value is not None else None

    async def set(self, key: str, value: str) -> bool:
        self.values[key] = value
        return True


class _DownRedis:
    async def get(self, key: str) -> bytes | None:
        raise RedisConnectionError("redis unreachable")

    async def set(self, key: str, value: str) -> bool:
        raise RedisConnectionError("redis unreachable")


@pytest.mark.asyncio
async def test_sql_queue_store_round_trip(sessionmaker: async_sessionmaker[AsyncSession], settings: Settings) -> None:
    store = SqlQueueStore(sessionmaker=sessionmaker, name="test-queue")
    assert await store.load() == []

    first = normalize_entry(email_candidate(id="a"), now=NOW, settings=settings)
    second = normalize_entry(email_candidate(id="b", severity="info"), now=NOW, settings=settings)
    await store.save([first, second])
    assert await store.load() == [first, second]

    await store.save([second])
    assert await store.load() == [second]

    other = SqlQueueStore(sessionmaker=sessionmaker, name="other-queue")
    assert await other.load() == []


@pytest.mark.asyncio
async def test_redis_queue_store_round_trip(settings: Settings) -> None:
    redis = _FakeRedis()
    store = RedisQueueStore(redis=redis, key="herald:test-queue")
    entry = normalize_entry(email_candidate(), now=NOW, settings=settings)

    await store.save([entry])

    assert await store.load() == [entry]
    redis.values["herald:test-queue"] = "{not json"
    assert await store.load() == []


@pytest.mark.asyncio
async def test_redis_outage_surfaces_as_store_unavailable() -> None:
    store = RedisQueueStore(redis=_DownRedis(), key="herald:test-queue")

    with pytest.raises(QueueStoreUnavailableError):
        await store.load()
    with pytest.raises(QueueStoreUnavailableError):
        await store.save([])


@pytest.mark.asyncio
async def test_unreadable_documents_are_skipped(settings: Settings) -> None:
    redis = _FakeRedis()
    entry = normalize_entry(email_candidate(id="good"), now=NOW, settings=settings)
    store = InMemoryQueueStore()
    await store.save([entry])
    documents = store.documents() + [{"id": "no-channels", "created_at": NOW}, "garbage"]
    redis.values["queue"] = json.dumps(documents)

    loaded = await RedisQueueStore(redis=redis, key="queue").load()

    assert [item.id for item in loaded] == ["good"]


@pytest.mark.asyncio
async def test_sql_receipts_are_first_write_wins(
    sessionmaker: async_sessionmaker[AsyncSession], settings: Settings
) -> None:
    receipts = SqlReceiptStore(sessionmaker=sessionmaker)
    entry = normalize_entry(email_candidate(id="incident-1"), now=NOW, settings=settings)

    created = await receipts.record_creation(entry)
    assert created.status() == "pending"
    assert await receipts.is_acknowledged("incident-1") is False

    await receipts.acknowledge(entry, actor="Test Operator", at=NOW + 60)
    await receipts.acknowledge(entry, actor="Someone Else", at=NOW + 120)
    resolved = await receipts.resolve(entry, actor="Test Operator", summary="Fixed", at=NOW + 300)

    assert resolved.acknowledged_by == "Test Operator"
    assert resolved.acknowledged_at == NOW + 60
    assert resolved.resolved_at == NOW + 300
    assert [step.type for step in resolved.steps] == ["created", "acknowledged", "resolved"]
    assert await receipts.is_resolved("incident-1") is True

    stored = await receipts.get("incident-1")
    assert stored is not None
    assert stored.to_dict()["status"] == "resolved"
    assert stored.steps[-1].summary == "Fixed"


@pytest.mark.asyncio
async def test_sql_receipts_seed_lazily_and_list_recent(
    sessionmaker: async_sessionmaker[AsyncSession], settings: Settings
) -> None:
    receipts = SqlReceiptStore(sessionmaker=sessionmaker)
    older = normalize_entry(email_candidate(id="older"), now=NOW, settings=settings)
    newer = normalize_entry(email_candidate(id="newer"), now=NOW + 10, settings=settings)

    await receipts.resolve(older, actor="Operator", at=NOW + 30)
    await receipts.record_creation(newer)
    step = ResolutionStep(timestamp=NOW + 90, actor="Operator", summary="Paged the DBA", type="note")
    assert await receipts.add_step("newer", step) is not None
    assert await receipts.add_step("missing", step) is None

    recent = await receipts.list_recent(limit=5)

    assert [receipt.entry_id for receipt in recent] == ["newer", "older"]
    assert recent[1].acknowledged_at == NOW + 30
    assert recent[1].steps[0].actor == "System"


@pytest.mark.asyncio
async def test_sql_history_sink_writes_rows(sessionmaker: async_sessionmaker[AsyncSession]) -> None:
    sink = SqlHistorySink(sessionmaker=sessionmaker)

    await sink.log("notification", "success", 'Notification "backup_failed" sent via email.')
    await sink.log("reminder", "warning", "Reminder #1")

    async with sessionmaker() as session:
        count = (await session.execute(select(func.count()).select_from(HistoryEvent))).scalar_one()
        categories = (await session.execute(select(HistoryEvent.category).order_by(HistoryEvent.id))).scalars().all()
    assert count == 2
    assert categories == ["notification", "reminder"]


@pytest.mark.asyncio
async def test_logging_history_sink_maps_severity_to_level(caplog: pytest.LogCaptureFixture) -> None:
    sink = LoggingHistorySink()

    with caplog.at_level(logging.INFO, logger="herald.services.notifications.history"):
        await sink.log("notification", "failure", 'Notification "backup_failed" abandoned via email: boom')
        await sink.log("reminder", "warning", "Reminder #1")

    levels = [record.levelno for record in caplog.records]
    assert levels == [logging.ERROR, logging.WARNING]
    assert "category=notification" in caplog.records[0].getMessage()


class _PingClient:
    def __init__(self, *, reachable: bool) -> None:
        self.reachable = reachable
        self.closed = False

    async def ping(self) -> bool:
        if not self.reachable:
            raise RedisConnectionError("redis unreachable")
        return True

    async def aclose(self) -> None:
        self.closed = True


@pytest.mark.asyncio
async def test_get_redis_returns_none_when_server_unreachable(monkeypatch: pytest.MonkeyPatch) -> None:
    client = _PingClient(reachable=False)
    monkeypatch.setattr(redis_client, "_clients", weakref.WeakKeyDictionary())
    monkeypatch.setattr(redis_client.Redis, "from_url", lambda *args, **kwargs: client)

    assert await redis_client.get_redis() is None
    assert client.closed is True


@pytest.mark.asyncio
async def test_get_redis_caches_reachable_client(monkeypatch: pytest.MonkeyPatch) -> None:
    created: list[_PingClient] = []

    def _from_url(*args: object, **kwargs: object) -> _PingClient:
        created.append(_PingClient(reachable=True))
        return created[-1]

    monkeypatch.setattr(redis_client, "_clients", weakref.WeakKeyDictionary())
    monkeypatch.setattr(redis_client.Redis, "from_url", _from_url)

    first = await redis_client.get_redis()
    second = await redis_client.get_redis()

    assert first is created[0]
    assert second is first
    assert len(created) == 1
