from __future__ import annotations

import logging
from typing import Any

from arq import cron
from arq.connections import RedisSettings

from herald.core.config import get_settings
from herald.core.errors import QueueLockUnavailableError, QueueStoreUnavailableError
from herald.core.logging import configure_logging
from herald.persistence.db import create_tables, get_engine
from herald.services.notifications.factory import NotificationServices, build_services

logger = logging.getLogger(__name__)


async def _services(ctx) -> NotificationServices:
    services = ctx.get("services")
    if services is None:
        services = await build_services(get_settings())
        ctx["services"] = services
    return services


async def process_notification_queue(ctx) -> dict[str, Any]:
    # One locked pass; a store or lock outage is left for the next tick or the safety-net cron.
    services = await _services(ctx)
    try:
        result = await services.processing.process_queue()
    except QueueStoreUnavailableError as exc:
        logger.warning("notification_queue_pass_failed reason=store_unavailable error=%s", exc)
        return {"status": "store_unavailable"}
    except QueueLockUnavailableError as exc:
        logger.warning("notification_queue_pass_failed reason=lock_unavailable error=%s", exc)
        return {"status": "lock_unavailable"}
    return result.to_dict()


async def run_notification_reminder(ctx, entry_id: str) -> dict[str, Any]:
    services = await _services(ctx)
    try:
        result = await services.reminders.run_reminder(entry_id)
    except QueueStoreUnavailableError as exc:
        logger.warning("notification_reminder_failed entry_id=%s reason=store_unavailable error=%s", entry_id, exc)
        return {"status": "store_unavailable", "entry_id": entry_id}
    return result.to_dict()


async def _startup(ctx) -> None:
    configure_logging()
    settings = get_settings()
    if settings.queue_store_backend == "sql":
        await create_tables(get_engine())
    ctx["services"] = await build_services(settings)


async def _shutdown(ctx) -> None:
    ctx.pop("services", None)


def _safety_net_minutes() -> set[int]:
    interval = max(1, min(60, int(get_settings().notify_safety_net_interval_min)))
    return set(range(0, 60, interval))


class WorkerSettings:
    # Keep worker settings as class attributes for ARQ CLI compatibility.
    settings = get_settings()
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    queue_name = settings.notify_queue_name
    functions = [process_notification_queue, run_notification_reminder]
    # Re-run a pass periodically so entries survive a lost or failed tick.
    cron_jobs = [cron(process_notification_queue, minute=_safety_net_minutes(), run_at_startup=True)]
    # Drop results immediately so a finished unique tick id can be reused.
    keep_result = 0
    max_tries = 1
    on_startup = _startup
    on_shutdown = _shutdown
