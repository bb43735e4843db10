from __future__ import annotations

from typing import Iterable

from herald.domain.notifications import Entry, ReminderState


DEFAULT_BACKOFF_BASE_S = 60
DEFAULT_BACKOFF_MAX_S = 900
DEFAULT_REMINDER_INTERVALS_S = {"critical": 300, "warning": 600, "info": 900}


def compute_backoff(attempts: int, *, base_s: int = DEFAULT_BACKOFF_BASE_S, max_s: int = DEFAULT_BACKOFF_MAX_S) -> int:
    # 60, 120, 240, 480, 900 seconds for attempts 1..5 with the default base/cap.
    attempts = max(1, int(attempts))
    return int(min(base_s * (2 ** (attempts - 1)), max_s))


def reminder_base_interval(severity: str, *, intervals: dict[str, int] | None = None) -> int:
    table = intervals or DEFAULT_REMINDER_INTERVALS_S
    return int(table.get(severity, table["info"]))


def compute_reminder_delay(reminders: ReminderState, *, min_interval_s: int = 60) -> int:
    # Grows with reminders.attempts; never below the base interval or the floor, never above max_interval.
    base = max(int(reminders.base_interval), 0)
    ceiling = int(reminders.max_interval)
    try:
        scaled = base * (float(reminders.backoff_multiplier) ** int(reminders.attempts))
    except OverflowError:
        scaled = float(ceiling)
    # Anything not below the ceiling (inf and nan included) is clamped to it.
    scaled_s = round(scaled) if scaled < ceiling else ceiling
    delay = min(ceiling, max(base, scaled_s))
    return max(int(min_interval_s), delay)


def next_tick_delay(
    entries: Iterable[Entry],
    *,
    now: int,
    min_delay_s: int = 15,
    idle_delay_s: int = 60,
) -> int:
    # Delay to the nearest future entry attempt; idle cadence when nothing is scheduled ahead.
    upcoming = [
        entry.next_attempt_at
        for entry in entries
        if entry.next_attempt_at is not None and entry.next_attempt_at > now
    ]
    if not upcoming:
        return int(idle_delay_s)
    return max(int(min_delay_s), min(upcoming) - now)
