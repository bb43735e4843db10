from __future__ import annotations

from dataclasses import dataclass
import logging
import time
from typing import Any, Callable

from herald.core.config import Settings
from herald.core.errors import ReceiptStoreError
from herald.domain.notifications import Entry, sanitize_key
from herald.persistence.queue_store import QueueStore
from herald.services.notifications.admission import normalize_entry
from herald.services.notifications.receipts import ReceiptStore
from herald.services.notifications.reminders import ReminderResult, ReminderScheduler
from herald.services.notifications.resolution import ResolutionTracker
from herald.services.notifications.scheduler import TickScheduler
from herald.services.notifications.snapshot import build_queue_snapshot


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueueTimings:
    initial_delay_s: int = 15
    retry_delay_s: int = 5

    @classmethod
    def from_settings(cls, settings: Settings) -> "QueueTimings":
        return cls(
            initial_delay_s=max(0, int(settings.queue_initial_delay_s)),
            retry_delay_s=max(0, int(settings.queue_retry_delay_s)),
        )


class NotificationQueue:
    """Admin surface over the persisted queue.

    None of these operations take the processing lock; each is a whole-queue
    load/mutate/save and may race a running pass (last writer wins).
    """

    def __init__(
        self,
        *,
        settings: Settings,
        store: QueueStore,
        receipts: ReceiptStore,
        scheduler: TickScheduler,
        reminders: ReminderScheduler,
        resolution: ResolutionTracker,
        timings: QueueTimings | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self._settings = settings
        self._store = store
        self._receipts = receipts
        self._scheduler = scheduler
        self._reminders = reminders
        self._resolution = resolution
        self._timings = timings or QueueTimings.from_settings(settings)
        self._clock = clock or (lambda: int(time.time()))
        self._resolution.set_broadcaster(self.enqueue)

    async def enqueue(self, candidate: Any) -> Entry | None:
        now = int(self._clock())
        entry = normalize_entry(candidate, now=now, settings=self._settings)
        if entry is None:
            return None

        queue = await self._store.load()
        existing = next((item for item in queue if item.id == entry.id), None)
        if existing is not None:
            logger.info("notification_enqueue_duplicate entry_id=%s", entry.id)
            return existing
        queue.append(entry)
        await self._store.save(queue)
        logger.info(
            "notification_enqueued entry_id=%s event=%s channels=%s",
            entry.id,
            entry.event,
            ",".join(entry.channels),
        )

        try:
            await self._receipts.record_creation(entry)
        except ReceiptStoreError as exc:
            logger.warning("notification_receipt_create_failed entry_id=%s", entry.id, exc_info=exc)
        await self._scheduler.schedule_processing(now + self._timings.initial_delay_s, unique=True)
        if entry.reminders.active and entry.reminders.next_at is not None:
            await self._scheduler.schedule_reminder(entry.id, entry.reminders.next_at)
        return entry

    async def find_entry(self, entry_id: str) -> Entry | None:
        queue = await self._store.load()
        return next((entry for entry in queue if entry.id == entry_id), None)

    async def snapshot(self) -> dict[str, Any]:
        return build_queue_snapshot(await self._store.load())

    async def retry_entry(self, entry_id: str) -> Entry | None:
        queue = await self._store.load()
        entry = next((item for item in queue if item.id == entry_id), None)
        if entry is None:
            return None

        now = int(self._clock())
        for _key, channel in entry.enabled_channels():
            channel.status = "pending"
            channel.attempts = 0
            channel.next_attempt_at = None
            channel.last_error = ""
            channel.last_error_at = None
            channel.failed_at = None
            channel.completed_at = None
        entry.next_attempt_at = now
        entry.last_attempt_at = None
        entry.updated_at = now
        entry.last_error = ""
        await self._store.save(queue)

        logger.info("notification_entry_retry_requested entry_id=%s", entry_id)
        await self._scheduler.schedule_processing(now + self._timings.retry_delay_s)
        return entry

    async def delete_entry(self, entry_id: str) -> bool:
        queue = await self._store.load()
        kept = [entry for entry in queue if entry.id != entry_id]
        if len(kept) == len(queue):
            return False
        await self._store.save(kept)
        logger.info("notification_entry_deleted entry_id=%s", entry_id)
        return True

    async def trigger_manual_reminder(self, entry_id: str) -> ReminderResult:
        return await self._reminders.trigger_manual_reminder(entry_id)

    async def acknowledge_entry(self, entry_id: str, *, user_id: str | None = None, note: str = "") -> Entry | None:
        return await self._resolution.acknowledge_entry(entry_id, user_id=user_id, note=note)

    async def acknowledge_channel(
        self, entry_id: str, channel_key: str, *, user_id: str | None = None, note: str = ""
    ) -> Entry | None:
        return await self._resolution.acknowledge_channel(
            entry_id, sanitize_key(channel_key), user_id=user_id, note=note
        )

    async def resolve_entry(self, entry_id: str, *, user_id: str | None = None, notes: str = "") -> Entry | None:
        return await self._resolution.resolve_entry(entry_id, user_id=user_id, notes=notes)

    async def resolve_channel(
        self, entry_id: str, channel_key: str, *, user_id: str | None = None, notes: str = ""
    ) -> Entry | None:
        return await self._resolution.resolve_channel(
            entry_id, sanitize_key(channel_key), user_id=user_id, notes=notes
        )
