from __future__ import annotations

import logging
from typing import Any, Mapping
from uuid import uuid4

from herald.core.config import Settings
from herald.domain.notifications import SEVERITIES, Entry
from herald.services.notifications.backoff import reminder_base_interval


logger = logging.getLogger(__name__)


def new_entry_id() -> str:
    return f"notif_{uuid4().hex}"


def reminder_intervals(settings: Settings) -> dict[str, int]:
    return {
        "critical": int(settings.reminder_interval_critical_s),
        "warning": int(settings.reminder_interval_warning_s),
        "info": int(settings.reminder_interval_info_s),
    }


def normalize_entry(candidate: Any, *, now: int, settings: Settings) -> Entry | None:
    """Validate a candidate entry and fill in admission defaults.

    Returns ``None`` (and has no side effect) when the candidate carries no usable
    channel. Wrong-typed sub-fields are dropped rather than coerced. Running the
    result back through this function yields an equal entry.
    """
    if not isinstance(candidate, Mapping):
        return None
    channels = candidate.get("channels")
    if not isinstance(channels, Mapping) or not channels:
        return None

    document = dict(candidate)
    raw_id = document.get("id")
    document["id"] = raw_id.strip() if isinstance(raw_id, str) and raw_id.strip() else new_entry_id()
    if not isinstance(document.get("created_at"), int) or isinstance(document.get("created_at"), bool):
        document["created_at"] = now
    if document.get("severity") not in SEVERITIES:
        document["severity"] = "info"

    # Fill reminder defaults underneath whatever the caller supplied.
    base_interval = reminder_base_interval(document["severity"], intervals=reminder_intervals(settings))
    reminder_defaults: dict[str, Any] = {
        "attempts": 0,
        "base_interval": base_interval,
        "active": True,
        "backoff_multiplier": float(settings.reminder_backoff_multiplier),
        "max_interval": int(settings.reminder_max_interval_s),
    }
    supplied = document.get("reminders")
    if isinstance(supplied, Mapping):
        reminder_defaults.update({key: value for key, value in supplied.items() if value is not None})
    document["reminders"] = reminder_defaults

    entry = Entry.from_dict(document, max_attempts=int(settings.queue_max_attempts))
    if entry is None:
        logger.info("notification_entry_rejected reason=no_valid_channels")
        return None

    if entry.reminders.base_interval <= 0:
        entry.reminders.base_interval = base_interval
    if entry.reminders.active and entry.reminders.next_at is None:
        entry.reminders.next_at = entry.created_at + entry.reminders.base_interval
    if entry.next_attempt_at is None:
        entry.next_attempt_at = now
    if entry.updated_at is None:
        entry.updated_at = now
    entry.refresh_resolution_fields()
    return entry
