from __future__ import annotations

from dataclasses import dataclass
import logging
import time
from typing import Callable

from herald.domain.notifications import Entry
from herald.persistence.queue_store import QueueStore
from herald.services.notifications.backoff import compute_reminder_delay
from herald.services.notifications.history import HistorySink
from herald.services.notifications.receipts import ReceiptStore
from herald.services.notifications.scheduler import TickScheduler


logger = logging.getLogger(__name__)

REMINDER_CATEGORY = "reminder"


@dataclass(slots=True)
class ReminderResult:
    # sent | silenced | inactive | not_due | not_found
    status: str
    entry_id: str
    next_at: int | None = None
    attempts: int = 0

    def to_dict(self) -> dict[str, object]:
        return {"status": self.status, "entry_id": self.entry_id, "next_at": self.next_at, "attempts": self.attempts}


def _find(queue: list[Entry], entry_id: str) -> Entry | None:
    return next((entry for entry in queue if entry.id == entry_id), None)


class ReminderScheduler:
    """Operator reminders on a growing interval until the entry is acknowledged or resolved.

    Reminders never attempt delivery; they only record a reminder event and
    arrange the next reminder tick.
    """

    def __init__(
        self,
        *,
        store: QueueStore,
        receipts: ReceiptStore,
        history: HistorySink,
        scheduler: TickScheduler,
        min_interval_s: int = 60,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self._store = store
        self._receipts = receipts
        self._history = history
        self._scheduler = scheduler
        self._min_interval_s = min_interval_s
        self._clock = clock or (lambda: int(time.time()))

    async def _is_gated(self, entry: Entry) -> bool:
        if entry.resolution.acknowledged_at is not None or entry.resolution.resolved_at is not None:
            return True
        if await self._receipts.is_resolved(entry.id):
            return True
        return await self._receipts.is_acknowledged(entry.id)

    async def run_reminder(self, entry_id: str) -> ReminderResult:
        queue = await self._store.load()
        entry = _find(queue, entry_id)
        if entry is None:
            return ReminderResult(status="not_found", entry_id=entry_id)

        if await self._is_gated(entry):
            if entry.reminders.active or entry.reminders.next_at is not None:
                entry.reminders.active = False
                entry.reminders.next_at = None
                await self._store.save(queue)
            logger.info("notification_reminder_silenced entry_id=%s", entry_id)
            return ReminderResult(status="silenced", entry_id=entry_id, attempts=entry.reminders.attempts)

        if not entry.reminders.active:
            return ReminderResult(status="inactive", entry_id=entry_id, attempts=entry.reminders.attempts)

        # A stale tick from a superseded chain (e.g. after a manual reminder) is ignored.
        next_at = entry.reminders.next_at
        if next_at is not None and next_at > int(self._clock()):
            return ReminderResult(status="not_due", entry_id=entry_id, next_at=next_at, attempts=entry.reminders.attempts)

        return await self._fire(queue, entry)

    async def trigger_manual_reminder(self, entry_id: str) -> ReminderResult:
        # Operator-initiated: reactivate reminders unless the entry is already acknowledged or resolved.
        queue = await self._store.load()
        entry = _find(queue, entry_id)
        if entry is None:
            return ReminderResult(status="not_found", entry_id=entry_id)
        if await self._is_gated(entry):
            return ReminderResult(status="silenced", entry_id=entry_id, attempts=entry.reminders.attempts)
        entry.reminders.active = True
        return await self._fire(queue, entry)

    async def _fire(self, queue: list[Entry], entry: Entry) -> ReminderResult:
        now = int(self._clock())
        reminders = entry.reminders
        reminders.attempts += 1
        reminders.last_triggered_at = now
        reminders.next_at = now + compute_reminder_delay(reminders, min_interval_s=self._min_interval_s)
        await self._store.save(queue)

        logger.warning(
            "notification_reminder_sent entry_id=%s attempts=%s next_at=%s",
            entry.id,
            reminders.attempts,
            reminders.next_at,
        )
        await self._history.log(
            REMINDER_CATEGORY,
            "warning",
            f'Reminder #{reminders.attempts} for notification "{entry.title or entry.event}": awaiting acknowledgement.',
        )
        await self._scheduler.schedule_reminder(entry.id, reminders.next_at)
        return ReminderResult(status="sent", entry_id=entry.id, next_at=reminders.next_at, attempts=reminders.attempts)
