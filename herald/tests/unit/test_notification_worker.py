from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import pytest

from herald.core.errors import QueueLockUnavailableError, QueueStoreUnavailableError
from herald.services.notifications.factory import NotificationServices
from herald.services.notifications.scheduler import PROCESS_QUEUE_JOB, RUN_REMINDER_JOB, ArqTickScheduler
from herald.tests.utils.fakes import FakeClock, email_candidate
from herald.workers.notification_worker import (
    WorkerSettings,
    process_notification_queue,
    run_notification_reminder,
)


class _FakePool:
    def __init__(self) -> None:
        self.jobs: dict[str, dict[str, Any]] = {}

    async def enqueue_job(self, function: str, *args: Any, **kwargs: Any) -> object | None:
        job_id = kwargs["_job_id"]
        if job_id in self.jobs:
            return None
        self.jobs[job_id] = {"function": function, "args": args, **kwargs}
        return object()


class _BrokenPool:
    async def enqueue_job(self, function: str, *args: Any, **kwargs: Any) -> object | None:
        raise ConnectionError("redis unreachable")


@pytest.mark.asyncio
async def test_worker_runs_a_processing_pass(services: NotificationServices) -> None:
    entry = await services.queue.enqueue(email_candidate())
    assert entry is not None
    ctx: dict[str, Any] = {"services": services}

    result = await process_notification_queue(ctx)

    assert result["status"] == "ok"
    assert result["completed"] == [entry.id]
    assert result["remaining"] == 0


@pytest.mark.asyncio
async def test_worker_reports_store_outage(services: NotificationServices, monkeypatch: pytest.MonkeyPatch) -> None:
    async def _down() -> None:
        raise QueueStoreUnavailableError("database is down")

    monkeypatch.setattr(services.processing, "process_queue", _down)

    result = await process_notification_queue({"services": services})

    assert result == {"status": "store_unavailable"}


@pytest.mark.asyncio
async def test_worker_reports_lock_outage(services: NotificationServices, monkeypatch: pytest.MonkeyPatch) -> None:
    async def _down() -> None:
        raise QueueLockUnavailableError("queue lock unavailable")

    monkeypatch.setattr(services.processing, "process_queue", _down)

    result = await process_notification_queue({"services": services})

    assert result == {"status": "lock_unavailable"}


@pytest.mark.asyncio
async def test_worker_runs_reminder_tick(services: NotificationServices, clock: FakeClock) -> None:
    entry = await services.queue.enqueue(email_candidate())
    assert entry is not None
    clock.advance(300)

    result = await run_notification_reminder({"services": services}, entry.id)

    assert result["status"] == "sent"
    assert result["entry_id"] == entry.id
    assert result["attempts"] == 1


def test_worker_settings_register_jobs() -> None:
    names = {function.__name__ for function in WorkerSettings.functions}
    assert names == {PROCESS_QUEUE_JOB, RUN_REMINDER_JOB}
    assert WorkerSettings.keep_result == 0
    assert len(WorkerSettings.cron_jobs) == 1


@pytest.mark.asyncio
async def test_arq_scheduler_deduplicates_unique_ticks() -> None:
    pool = _FakePool()

    async def pool_factory() -> _FakePool:
        return pool

    scheduler = ArqTickScheduler(queue_name="herald-test", pool_factory=pool_factory)

    assert await scheduler.schedule_processing(1_700_000_015, unique=True) is True
    assert await scheduler.schedule_processing(1_700_000_030, unique=True) is False
    assert await scheduler.schedule_processing(1_700_000_060) is True
    assert await scheduler.schedule_reminder("entry-1", 1_700_000_300) is True

    first = pool.jobs["herald:process:next"]
    assert first["function"] == PROCESS_QUEUE_JOB
    assert first["_queue_name"] == "herald-test"
    assert first["_defer_until"] == datetime.fromtimestamp(1_700_000_015, timezone.utc)
    assert "herald:process:1700000060" in pool.jobs
    reminder = pool.jobs["herald:remind:entry-1:1700000300"]
    assert reminder["function"] == RUN_REMINDER_JOB
    assert reminder["args"] == ("entry-1",)


@pytest.mark.asyncio
async def test_arq_scheduler_swallows_enqueue_failures() -> None:
    async def pool_factory() -> _BrokenPool:
        return _BrokenPool()

    scheduler = ArqTickScheduler(queue_name="herald-test", pool_factory=pool_factory)

    assert await scheduler.schedule_processing(1_700_000_015) is False
    assert await scheduler.schedule_reminder("entry-1", 1_700_000_300) is False
