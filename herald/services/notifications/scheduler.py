from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from typing import Any, Awaitable, Callable, Protocol

from arq import create_pool
from arq.connections import RedisSettings

from herald.core.config import get_settings


logger = logging.getLogger(__name__)

PROCESS_QUEUE_JOB = "process_notification_queue"
RUN_REMINDER_JOB = "run_notification_reminder"

_tick_pool = None
_tick_pool_loop = None
_tick_pool_lock = asyncio.Lock()


class TickScheduler(Protocol):
    # One-shot callbacks at absolute Unix timestamps.
    async def schedule_processing(self, at: int, *, unique: bool = False) -> bool:
        ...

    async def schedule_reminder(self, entry_id: str, at: int) -> bool:
        ...


async def get_tick_pool():
    # Cache the arq pool per event loop so API handlers and workers reuse connections.
    global _tick_pool, _tick_pool_loop
    current_loop = asyncio.get_running_loop()
    if _tick_pool is not None and _tick_pool_loop == current_loop:
        return _tick_pool
    if _tick_pool is not None and _tick_pool_loop != current_loop:
        _tick_pool = None
    async with _tick_pool_lock:
        if _tick_pool is None:
            settings = get_settings()
            _tick_pool = await create_pool(
                RedisSettings.from_dsn(settings.redis_url),
                default_queue_name=settings.notify_queue_name,
            )
            _tick_pool_loop = current_loop
    return _tick_pool


class ArqTickScheduler:
    """Deferred arq jobs as the tick source.

    ``unique`` processing ticks share one job id, so a tick that is already queued
    is not queued twice (arq refuses a duplicate ``_job_id``). Chained ticks and
    reminder ticks carry their target timestamp in the id instead.
    """

    def __init__(
        self,
        *,
        queue_name: str,
        pool_factory: Callable[[], Awaitable[Any]] = get_tick_pool,
    ) -> None:
        self._queue_name = queue_name
        self._pool_factory = pool_factory

    async def _enqueue(self, function: str, *args: Any, at: int, job_id: str) -> bool:
        try:
            pool = await self._pool_factory()
            job = await pool.enqueue_job(
                function,
                *args,
                _job_id=job_id,
                _queue_name=self._queue_name,
                _defer_until=datetime.fromtimestamp(int(at), timezone.utc),
            )
        except Exception as exc:  # noqa: BLE001 - the safety-net cron picks up missed processing ticks.
            logger.warning("tick_enqueue_failed function=%s job_id=%s", function, job_id, exc_info=exc)
            return False
        return job is not None

    async def schedule_processing(self, at: int, *, unique: bool = False) -> bool:
        job_id = "herald:process:next" if unique else f"herald:process:{int(at)}"
        return await self._enqueue(PROCESS_QUEUE_JOB, at=at, job_id=job_id)

    async def schedule_reminder(self, entry_id: str, at: int) -> bool:
        return await self._enqueue(RUN_REMINDER_JOB, entry_id, at=at, job_id=f"herald:remind:{entry_id}:{int(at)}")


@dataclass(frozen=True)
class ScheduledTick:
    kind: str
    at: int
    entry_id: str | None = None
    unique: bool = False


class RecordingTickScheduler:
    # Records requested ticks; tests drive the loop and reminders by hand.
    def __init__(self) -> None:
        self.ticks: list[ScheduledTick] = []

    async def schedule_processing(self, at: int, *, unique: bool = False) -> bool:
        if unique and any(tick.kind == "process" and tick.unique for tick in self.ticks):
            return False
        self.ticks.append(ScheduledTick(kind="process", at=int(at), unique=unique))
        return True

    async def schedule_reminder(self, entry_id: str, at: int) -> bool:
        self.ticks.append(ScheduledTick(kind="reminder", at=int(at), entry_id=entry_id))
        return True

    def processing_ticks(self) -> list[ScheduledTick]:
        return [tick for tick in self.ticks if tick.kind == "process"]

    def reminder_ticks(self, entry_id: str | None = None) -> list[ScheduledTick]:
        return [
            tick
            for tick in self.ticks
            if tick.kind == "reminder" and (entry_id is None or tick.entry_id == entry_id)
        ]

    def clear(self) -> None:
        self.ticks.clear()
