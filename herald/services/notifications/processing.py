from __future__ import annotations

from dataclasses import dataclass, field
import logging
import time
from typing import Callable

from herald.domain.notifications import Entry
from herald.persistence.queue_store import QueueStore
from herald.services.notifications.backoff import next_tick_delay
from herald.services.notifications.channels import (
    HISTORY_CATEGORY,
    DeliveryPolicy,
    completion_summary,
    process_entry,
)
from herald.services.notifications.history import HistorySink
from herald.services.notifications.locks import QueueLock
from herald.services.notifications.scheduler import TickScheduler
from herald.services.notifications.transport import Transport


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProcessingConfig:
    lock_name: str = "herald:notification-queue:lock"
    lock_ttl_s: int = 45
    max_entries_per_run: int = 5
    min_tick_delay_s: int = 15
    idle_tick_delay_s: int = 60


@dataclass(slots=True)
class ProcessingResult:
    status: str
    attempted: int = 0
    completed: list[str] = field(default_factory=list)
    remaining: int = 0
    next_tick_at: int | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "status": self.status,
            "attempted": self.attempted,
            "completed": list(self.completed),
            "remaining": self.remaining,
            "next_tick_at": self.next_tick_at,
        }


def _unix_now() -> int:
    return int(time.time())


def _is_due(entry: Entry, now: int) -> bool:
    if entry.next_attempt_at is not None and entry.next_attempt_at > now:
        return False
    if entry.quiet_until is not None and entry.quiet_until > now:
        return False
    return True


class ProcessingLoop:
    """One locked pass over the queue.

    Overlapping passes are excluded by the lock: a pass that cannot take it
    returns ``skipped_lock`` without reading or writing the queue. Admin
    operations do not take the lock, so a save here can overwrite a concurrent
    admin write (whole-document last-writer-wins).
    """

    def __init__(
        self,
        *,
        store: QueueStore,
        lock: QueueLock,
        transport: Transport,
        history: HistorySink,
        scheduler: TickScheduler,
        policy: DeliveryPolicy | None = None,
        config: ProcessingConfig | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self._store = store
        self._lock = lock
        self._transport = transport
        self._history = history
        self._scheduler = scheduler
        self._policy = policy or DeliveryPolicy()
        self._config = config or ProcessingConfig()
        self._clock = clock or _unix_now

    async def process_queue(self) -> ProcessingResult:
        config = self._config
        if not await self._lock.acquire(config.lock_name, config.lock_ttl_s):
            logger.info("notification_queue_pass_skipped reason=lock_held")
            return ProcessingResult(status="skipped_lock")

        try:
            result = await self._run_pass()
        finally:
            await self._lock.release(config.lock_name)

        if result.status == "empty":
            return result

        # Re-read after release so entries admitted during the pass are counted.
        remaining = await self._store.load()
        result.remaining = len(remaining)
        if remaining:
            now = int(self._clock())
            delay = next_tick_delay(
                remaining,
                now=now,
                min_delay_s=config.min_tick_delay_s,
                idle_delay_s=config.idle_tick_delay_s,
            )
            result.next_tick_at = now + delay
            await self._scheduler.schedule_processing(result.next_tick_at)
        return result

    async def _run_pass(self) -> ProcessingResult:
        queue = await self._store.load()
        if not queue:
            return ProcessingResult(status="empty")

        now = int(self._clock())
        result = ProcessingResult(status="ok")
        updated: list[Entry] = []
        for entry in queue:
            # Cap counts every entry that attempted delivery this pass, completed ones included.
            if result.attempted >= self._config.max_entries_per_run or not _is_due(entry, now):
                updated.append(entry)
                continue

            outcome = await process_entry(
                entry,
                now=now,
                transport=self._transport,
                history=self._history,
                policy=self._policy,
            )
            if outcome.attempted:
                result.attempted += 1
            if outcome.terminal:
                await self._log_completion(entry)
                result.completed.append(entry.id)
                continue
            updated.append(entry)

        await self._store.save(updated)
        logger.info(
            "notification_queue_pass_done attempted=%s completed=%s kept=%s",
            result.attempted,
            len(result.completed),
            len(updated),
        )
        return result

    async def _log_completion(self, entry: Entry) -> None:
        states = completion_summary(entry)
        logger.info("notification_entry_completed entry_id=%s states=%s", entry.id, states)
        if not states:
            return
        await self._history.log(HISTORY_CATEGORY, "info", f'Notification "{entry.event}" closed ({states}).')
