from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Callable

from herald.core.config import Settings
from herald.persistence.db import get_sessionmaker
from herald.persistence.queue_store import InMemoryQueueStore, QueueStore, RedisQueueStore, SqlQueueStore
from herald.persistence.redis_client import get_redis
from herald.services.notifications.actors import ActorResolver, StaticActorResolver
from herald.services.notifications.channels import DeliveryPolicy
from herald.services.notifications.history import HistorySink, InMemoryHistorySink, SqlHistorySink
from herald.services.notifications.locks import InMemoryQueueLock, QueueLock, RedisQueueLock
from herald.services.notifications.processing import ProcessingConfig, ProcessingLoop
from herald.services.notifications.queue import NotificationQueue
from herald.services.notifications.receipts import InMemoryReceiptStore, ReceiptStore, SqlReceiptStore
from herald.services.notifications.reminders import ReminderScheduler
from herald.services.notifications.resolution import ResolutionTracker
from herald.services.notifications.scheduler import ArqTickScheduler, RecordingTickScheduler, TickScheduler
from herald.services.notifications.transport import DefaultTransport, Transport


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class NotificationServices:
    queue: NotificationQueue
    processing: ProcessingLoop
    reminders: ReminderScheduler
    resolution: ResolutionTracker
    store: QueueStore
    receipts: ReceiptStore
    history: HistorySink
    scheduler: TickScheduler


def processing_config(settings: Settings) -> ProcessingConfig:
    return ProcessingConfig(
        lock_name=settings.queue_lock_name,
        lock_ttl_s=max(1, int(settings.queue_lock_ttl_s)),
        max_entries_per_run=max(1, int(settings.queue_max_entries_per_run)),
        min_tick_delay_s=max(1, int(settings.queue_min_tick_delay_s)),
        idle_tick_delay_s=max(1, int(settings.queue_idle_tick_delay_s)),
    )


def assemble_services(
    *,
    settings: Settings,
    store: QueueStore,
    lock: QueueLock,
    transport: Transport,
    receipts: ReceiptStore,
    history: HistorySink,
    scheduler: TickScheduler,
    actors: ActorResolver | None = None,
    clock: Callable[[], int] | None = None,
) -> NotificationServices:
    # Wire the collaborators explicitly so tests and embedders can swap any of them.
    processing = ProcessingLoop(
        store=store,
        lock=lock,
        transport=transport,
        history=history,
        scheduler=scheduler,
        policy=DeliveryPolicy.from_settings(settings),
        config=processing_config(settings),
        clock=clock,
    )
    reminders = ReminderScheduler(
        store=store,
        receipts=receipts,
        history=history,
        scheduler=scheduler,
        min_interval_s=max(1, int(settings.reminder_min_interval_s)),
        clock=clock,
    )
    resolution = ResolutionTracker(
        store=store,
        receipts=receipts,
        history=history,
        actors=actors or StaticActorResolver(),
        clock=clock,
    )
    queue = NotificationQueue(
        settings=settings,
        store=store,
        receipts=receipts,
        scheduler=scheduler,
        reminders=reminders,
        resolution=resolution,
        clock=clock,
    )
    return NotificationServices(
        queue=queue,
        processing=processing,
        reminders=reminders,
        resolution=resolution,
        store=store,
        receipts=receipts,
        history=history,
        scheduler=scheduler,
    )


def build_in_memory_services(
    *,
    settings: Settings,
    transport: Transport,
    clock: Callable[[], int] | None = None,
    actors: ActorResolver | None = None,
) -> NotificationServices:
    return assemble_services(
        settings=settings,
        store=InMemoryQueueStore(max_attempts=int(settings.queue_max_attempts)),
        lock=InMemoryQueueLock(clock=clock),
        transport=transport,
        receipts=InMemoryReceiptStore(),
        history=InMemoryHistorySink(),
        scheduler=RecordingTickScheduler(),
        actors=actors,
        clock=clock,
    )


async def build_services(settings: Settings) -> NotificationServices:
    # Production wiring: SQL or Redis queue document, Redis lock, arq ticks, SQL receipts/history.
    backend = settings.queue_store_backend.strip().lower()
    if backend == "memory":
        return build_in_memory_services(settings=settings, transport=DefaultTransport(settings=settings))

    redis = await get_redis()
    sessionmaker = get_sessionmaker()
    max_attempts = int(settings.queue_max_attempts)
    store: QueueStore
    if backend == "redis":
        if redis is None:
            raise RuntimeError("queue_store_backend=redis requires a reachable redis_url")
        store = RedisQueueStore(redis=redis, key=settings.queue_document_key, max_attempts=max_attempts)
    else:
        store = SqlQueueStore(sessionmaker=sessionmaker, name=settings.queue_document_key, max_attempts=max_attempts)

    lock: QueueLock
    if redis is not None:
        lock = RedisQueueLock(redis)
    else:
        logger.warning("queue_lock_local_fallback reason=redis_unavailable")
        lock = InMemoryQueueLock()

    return assemble_services(
        settings=settings,
        store=store,
        lock=lock,
        transport=DefaultTransport(settings=settings),
        receipts=SqlReceiptStore(sessionmaker=sessionmaker),
        history=SqlHistorySink(sessionmaker=sessionmaker),
        scheduler=ArqTickScheduler(queue_name=settings.notify_queue_name),
    )
