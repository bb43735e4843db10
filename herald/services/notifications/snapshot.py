from __future__ import annotations

from typing import Any

from herald.domain.notifications import Entry


def _min_time(current: int | None, candidate: int | None) -> int | None:
    # Smallest positive timestamp; unset and zero values never win.
    if candidate is None or candidate <= 0:
        return current
    if current is None:
        return candidate
    return min(current, candidate)


def aggregate_status(statuses: list[str]) -> str:
    # pending beats retry beats failed beats completed; mixed terminal states read as retry.
    if "pending" in statuses:
        return "pending"
    if "retry" in statuses:
        return "retry"
    if statuses and all(status == "failed" for status in statuses):
        return "failed"
    if statuses and all(status == "completed" for status in statuses):
        return "completed"
    return "retry"


def _entry_view(entry: Entry) -> dict[str, Any]:
    channels: list[dict[str, Any]] = []
    statuses: list[str] = []
    last_error = entry.last_error
    max_attempts = 0
    entry_next = entry.next_attempt_at
    escalation_next: int | None = None
    escalation_pending = False

    for key, channel in entry.channels.items():
        if not channel.enabled:
            continue
        entry_next = _min_time(entry_next, channel.next_attempt_at)
        if channel.escalation:
            escalation_next = _min_time(escalation_next, channel.next_attempt_at)
            if channel.status in {"pending", "retry"}:
                escalation_pending = True
        if channel.last_error and not last_error:
            last_error = channel.last_error
        statuses.append(channel.status)
        max_attempts = max(max_attempts, channel.attempts)
        channels.append(
            {
                "key": key,
                "status": channel.status,
                "attempts": channel.attempts,
                "last_error": channel.last_error,
                "next_attempt_at": channel.next_attempt_at,
                "escalation": channel.escalation,
                "acknowledged_at": channel.acknowledged_at,
                "acknowledged_by": channel.acknowledged_by,
                "resolved_at": channel.resolved_at,
            }
        )

    return {
        "id": entry.id,
        "event": entry.event,
        "title": entry.title,
        "severity": entry.severity,
        "status": aggregate_status(statuses),
        "attempts": max_attempts,
        "created_at": entry.created_at,
        "updated_at": entry.updated_at,
        "next_attempt_at": entry_next,
        "last_attempt_at": entry.last_attempt_at,
        "last_error": last_error,
        "channels": channels,
        "quiet_until": entry.quiet_until,
        "escalation": entry.escalation.to_dict() if entry.escalation is not None else None,
        "has_escalation_pending": escalation_pending,
        "escalation_next_attempt": escalation_next,
        "reminders": entry.reminders.to_dict(),
        "acknowledged_at": entry.resolution.acknowledged_at,
        "acknowledged_by": entry.acknowledged_by,
        "resolved_at": entry.resolution.resolved_at,
        "resolution_status": entry.resolution_status,
        "resolution_summary": entry.resolution_summary,
        "resolution_notes": entry.resolution_notes,
        "resolution_steps": [step.to_dict() for step in entry.resolution.steps],
    }


def build_queue_snapshot(entries: list[Entry]) -> dict[str, Any]:
    """Dashboard projection of the queue; computed on demand and never stored."""
    snapshot: dict[str, Any] = {
        "total_entries": len(entries),
        "status_counts": {"pending": 0, "retry": 0, "failed": 0, "completed": 0},
        "next_attempt_at": None,
        "oldest_entry_at": None,
        "entries": [],
    }
    views: list[dict[str, Any]] = []
    for entry in entries:
        view = _entry_view(entry)
        if not view["channels"]:
            continue
        counts = snapshot["status_counts"]
        counts[view["status"]] = counts.get(view["status"], 0) + 1
        snapshot["oldest_entry_at"] = _min_time(snapshot["oldest_entry_at"], entry.created_at)
        snapshot["next_attempt_at"] = _min_time(snapshot["next_attempt_at"], view["next_attempt_at"])
        views.append(view)

    views.sort(key=lambda view: (view["next_attempt_at"] or 0, view["created_at"] or 0))
    snapshot["entries"] = views
    return snapshot
