from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import re
from typing import Any, Literal, Mapping


Severity = Literal["info", "warning", "critical"]
ChannelStatus = Literal["pending", "retry", "completed", "failed", "disabled"]
ResolutionStatus = Literal["pending", "acknowledged", "resolved"]
ChannelKind = Literal["email", "slack", "discord", "teams", "sms", "internal", "unknown"]

SEVERITIES: tuple[str, ...] = ("info", "warning", "critical")
CHANNEL_STATUSES: tuple[str, ...] = ("pending", "retry", "completed", "failed", "disabled")
KNOWN_CHANNEL_KEYS: tuple[str, ...] = ("email", "slack", "discord", "teams", "sms", "internal")
TERMINAL_CHANNEL_STATUSES = frozenset({"completed", "failed"})

_KEY_STRIP = re.compile(r"[^a-z0-9_\-]")


def sanitize_key(value: Any) -> str:
    # Channel keys are lower-case slugs; anything else collapses to an empty (rejected) key.
    if not isinstance(value, str):
        return ""
    return _KEY_STRIP.sub("", value.strip().lower())


def channel_kind(key: str) -> ChannelKind:
    # Map a stored channel key onto the closed set of transports; unrecognized keys stay addressable.
    normalized = sanitize_key(key)
    if normalized in KNOWN_CHANNEL_KEYS:
        return normalized  # type: ignore[return-value]
    return "unknown"


def _as_int(value: Any) -> int | None:
    # Accept integral numbers only; bools and numeric strings are dropped rather than coerced.
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def _as_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    return None


def _as_str(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _as_bool(value: Any, default: bool) -> bool:
    return value if isinstance(value, bool) else default


def _as_mapping(value: Any) -> dict[str, Any] | None:
    if isinstance(value, Mapping):
        return {str(key): item for key, item in value.items()}
    return None


def _key_list(value: Any) -> list[str]:
    if not isinstance(value, (list, tuple)):
        return []
    keys = [sanitize_key(item) for item in value]
    return [key for key in keys if key]


def format_step_time(timestamp: int) -> str:
    return datetime.fromtimestamp(timestamp, timezone.utc).strftime("%Y-%m-%d %H:%M")


@dataclass(slots=True)
class Channel:
    enabled: bool = True
    status: str = "pending"
    attempts: int = 0
    last_error: str = ""
    last_error_at: int | None = None
    completed_at: int | None = None
    failed_at: int | None = None
    next_attempt_at: int | None = None
    escalation: bool = False
    acknowledged_at: int | None = None
    acknowledged_by: str | None = None
    resolved_at: int | None = None
    resolution_notes: str = ""
    # Transport-specific fields (recipients, webhook_url, ...) forwarded untouched.
    addressing: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        payload = dict(self.addressing)
        payload.update(
            {
                "enabled": self.enabled,
                "status": self.status,
                "attempts": self.attempts,
                "last_error": self.last_error,
                "last_error_at": self.last_error_at,
                "completed_at": self.completed_at,
                "failed_at": self.failed_at,
                "next_attempt_at": self.next_attempt_at,
                "escalation": self.escalation,
                "acknowledged_at": self.acknowledged_at,
                "acknowledged_by": self.acknowledged_by,
                "resolved_at": self.resolved_at,
                "resolution_notes": self.resolution_notes,
            }
        )
        return payload

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any], *, max_attempts: int) -> "Channel":
        status = raw.get("status")
        attempts = _as_int(raw.get("attempts")) or 0
        addressing = {
            str(key): value for key, value in raw.items() if str(key) not in _CHANNEL_FIELDS
        }
        return cls(
            enabled=_as_bool(raw.get("enabled"), True),
            status=status if status in CHANNEL_STATUSES else "pending",
            attempts=min(max(attempts, 0), max_attempts),
            last_error=_as_str(raw.get("last_error")) or "",
            last_error_at=_as_int(raw.get("last_error_at")),
            completed_at=_as_int(raw.get("completed_at")),
            failed_at=_as_int(raw.get("failed_at")),
            next_attempt_at=_as_int(raw.get("next_attempt_at")),
            escalation=_as_bool(raw.get("escalation"), False),
            acknowledged_at=_as_int(raw.get("acknowledged_at")),
            acknowledged_by=_as_str(raw.get("acknowledged_by")),
            resolved_at=_as_int(raw.get("resolved_at")),
            resolution_notes=_as_str(raw.get("resolution_notes")) or "",
            addressing=addressing,
        )


_CHANNEL_FIELDS = frozenset(
    {
        "enabled",
        "status",
        "attempts",
        "last_error",
        "last_error_at",
        "completed_at",
        "failed_at",
        "next_attempt_at",
        "escalation",
        "acknowledged_at",
        "acknowledged_by",
        "resolved_at",
        "resolution_notes",
    }
)


@dataclass(slots=True)
class EscalationStep:
    label: str = ""
    channels: list[str] = field(default_factory=list)
    delay: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"label": self.label, "channels": list(self.channels), "delay": self.delay}

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "EscalationStep":
        return cls(
            label=_as_str(raw.get("label")) or "",
            channels=_key_list(raw.get("channels")),
            delay=max(0, _as_int(raw.get("delay")) or 0),
        )


@dataclass(slots=True)
class Escalation:
    # Declarative only: escalation channels are inserted by callers, tagged escalation=True.
    channels: list[str] = field(default_factory=list)
    delay: int = 0
    only_critical: bool = False
    strategy: str = ""
    steps: list[EscalationStep] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "channels": list(self.channels),
            "delay": self.delay,
            "only_critical": self.only_critical,
            "strategy": self.strategy,
            "steps": [step.to_dict() for step in self.steps],
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Escalation":
        steps_raw = raw.get("steps")
        steps = (
            [EscalationStep.from_dict(step) for step in steps_raw if isinstance(step, Mapping)]
            if isinstance(steps_raw, (list, tuple))
            else []
        )
        return cls(
            channels=_key_list(raw.get("channels")),
            delay=max(0, _as_int(raw.get("delay")) or 0),
            only_critical=_as_bool(raw.get("only_critical"), False),
            strategy=_as_str(raw.get("strategy")) or "",
            steps=steps,
        )


@dataclass(slots=True)
class ReminderState:
    attempts: int = 0
    base_interval: int = 0
    next_at: int | None = None
    last_triggered_at: int | None = None
    active: bool = True
    backoff_multiplier: float = 2.0
    max_interval: int = 86400

    def to_dict(self) -> dict[str, Any]:
        return {
            "attempts": self.attempts,
            "base_interval": self.base_interval,
            "next_at": self.next_at,
            "last_triggered_at": self.last_triggered_at,
            "active": self.active,
            "backoff_multiplier": self.backoff_multiplier,
            "max_interval": self.max_interval,
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "ReminderState":
        multiplier = _as_float(raw.get("backoff_multiplier"))
        max_interval = _as_int(raw.get("max_interval"))
        return cls(
            attempts=max(0, _as_int(raw.get("attempts")) or 0),
            base_interval=max(0, _as_int(raw.get("base_interval")) or 0),
            next_at=_as_int(raw.get("next_at")),
            last_triggered_at=_as_int(raw.get("last_triggered_at")),
            active=_as_bool(raw.get("active"), True),
            backoff_multiplier=multiplier if multiplier is not None and multiplier >= 1.0 else 2.0,
            max_interval=max_interval if max_interval is not None and max_interval > 0 else 86400,
        )


@dataclass(slots=True)
class ResolutionStep:
    timestamp: int
    actor: str
    summary: str
    type: str = "note"

    def render(self) -> str:
        return f"{format_step_time(self.timestamp)} — {self.actor}: {self.summary}"

    def to_dict(self) -> dict[str, Any]:
        return {"timestamp": self.timestamp, "actor": self.actor, "summary": self.summary, "type": self.type}

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "ResolutionStep | None":
        timestamp = _as_int(raw.get("timestamp"))
        summary = _as_str(raw.get("summary"))
        if timestamp is None or not summary:
            return None
        return cls(
            timestamp=timestamp,
            actor=_as_str(raw.get("actor")) or "System",
            summary=summary,
            type=_as_str(raw.get("type")) or "note",
        )


@dataclass(slots=True)
class Resolution:
    acknowledged_at: int | None = None
    resolved_at: int | None = None
    steps: list[ResolutionStep] = field(default_factory=list)
    summary: str = ""

    def status(self) -> ResolutionStatus:
        # Derived from timestamps only; never stored independently of them.
        if self.resolved_at is not None:
            return "resolved"
        if self.acknowledged_at is not None:
            return "acknowledged"
        return "pending"

    def render_summary(self) -> str:
        return "\n".join(step.render() for step in self.steps)

    def to_dict(self) -> dict[str, Any]:
        return {
            "acknowledged_at": self.acknowledged_at,
            "resolved_at": self.resolved_at,
            "steps": [step.to_dict() for step in self.steps],
            "summary": self.summary,
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Resolution":
        steps_raw = raw.get("steps")
        steps: list[ResolutionStep] = []
        if isinstance(steps_raw, (list, tuple)):
            for item in steps_raw:
                if not isinstance(item, Mapping):
                    continue
                step = ResolutionStep.from_dict(item)
                if step is not None:
                    steps.append(step)
        return cls(
            acknowledged_at=_as_int(raw.get("acknowledged_at")),
            resolved_at=_as_int(raw.get("resolved_at")),
            steps=steps,
            summary=_as_str(raw.get("summary")) or "",
        )


@dataclass(slots=True)
class Entry:
    id: str
    created_at: int
    channels: dict[str, Channel]
    event: str = "event"
    title: str = ""
    subject: str = ""
    lines: list[str] = field(default_factory=list)
    body: str = ""
    context: dict[str, Any] = field(default_factory=dict)
    severity: str = "info"
    updated_at: int | None = None
    next_attempt_at: int | None = None
    last_attempt_at: int | None = None
    last_error: str = ""
    quiet_until: int | None = None
    quiet_hours: dict[str, Any] | None = None
    escalation: Escalation | None = None
    reminders: ReminderState = field(default_factory=ReminderState)
    resolution: Resolution = field(default_factory=Resolution)
    acknowledged_at: int | None = None
    acknowledged_by: str | None = None
    resolved_at: int | None = None
    resolution_notes: str = ""
    resolution_status: str = "pending"
    resolution_summary: str = ""

    def enabled_channels(self) -> list[tuple[str, Channel]]:
        return [(key, channel) for key, channel in self.channels.items() if channel.enabled]

    def refresh_resolution_fields(self) -> None:
        # Keep denormalized resolution fields a pure projection of `resolution`.
        self.resolution_status = self.resolution.status()
        self.resolution_summary = self.resolution.render_summary()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "event": self.event,
            "title": self.title,
            "subject": self.subject,
            "lines": list(self.lines),
            "body": self.body,
            "context": dict(self.context),
            "severity": self.severity,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "next_attempt_at": self.next_attempt_at,
            "last_attempt_at": self.last_attempt_at,
            "last_error": self.last_error,
            "quiet_until": self.quiet_until,
            "quiet_hours": dict(self.quiet_hours) if self.quiet_hours is not None else None,
            "escalation": self.escalation.to_dict() if self.escalation is not None else None,
            "reminders": self.reminders.to_dict(),
            "resolution": self.resolution.to_dict(),
            "acknowledged_at": self.acknowledged_at,
            "acknowledged_by": self.acknowledged_by,
            "resolved_at": self.resolved_at,
            "resolution_notes": self.resolution_notes,
            "resolution_status": self.resolution_status,
            "resolution_summary": self.resolution_summary,
            "channels": {key: channel.to_dict() for key, channel in self.channels.items()},
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any], *, max_attempts: int = 5) -> "Entry | None":
        # Parse a persisted or candidate document; wrong-typed sub-fields are dropped, not coerced.
        entry_id = _as_str(raw.get("id"))
        created_at = _as_int(raw.get("created_at"))
        channels_raw = raw.get("channels")
        if not entry_id or created_at is None or not isinstance(channels_raw, Mapping):
            return None
        channels: dict[str, Channel] = {}
        for raw_key, raw_channel in channels_raw.items():
            key = sanitize_key(raw_key)
            if not key or not isinstance(raw_channel, Mapping):
                continue
            channels[key] = Channel.from_dict(raw_channel, max_attempts=max_attempts)
        if not channels:
            return None

        severity = raw.get("severity")
        lines_raw = raw.get("lines")
        escalation_raw = raw.get("escalation")
        reminders_raw = _as_mapping(raw.get("reminders"))
        resolution_raw = _as_mapping(raw.get("resolution"))
        entry = cls(
            id=entry_id,
            created_at=created_at,
            channels=channels,
            event=_as_str(raw.get("event")) or "event",
            title=_as_str(raw.get("title")) or "",
            subject=_as_str(raw.get("subject")) or "",
            lines=[line for line in lines_raw if isinstance(line, str)] if isinstance(lines_raw, (list, tuple)) else [],
            body=_as_str(raw.get("body")) or "",
            context=_as_mapping(raw.get("context")) or {},
            severity=severity if severity in SEVERITIES else "info",
            updated_at=_as_int(raw.get("updated_at")),
            next_attempt_at=_as_int(raw.get("next_attempt_at")),
            last_attempt_at=_as_int(raw.get("last_attempt_at")),
            last_error=_as_str(raw.get("last_error")) or "",
            quiet_until=_as_int(raw.get("quiet_until")),
            quiet_hours=_as_mapping(raw.get("quiet_hours")),
            escalation=Escalation.from_dict(escalation_raw) if isinstance(escalation_raw, Mapping) else None,
            reminders=ReminderState.from_dict(reminders_raw) if reminders_raw is not None else ReminderState(),
            resolution=Resolution.from_dict(resolution_raw) if resolution_raw is not None else Resolution(),
            acknowledged_at=_as_int(raw.get("acknowledged_at")),
            acknowledged_by=_as_str(raw.get("acknowledged_by")),
            resolved_at=_as_int(raw.get("resolved_at")),
            resolution_notes=_as_str(raw.get("resolution_notes")) or "",
        )
        entry.refresh_resolution_fields()
        return entry
