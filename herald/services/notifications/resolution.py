from __future__ import annotations

import logging
import re
import time
from typing import Any, Awaitable, Callable

from herald.core.errors import QueueStoreUnavailableError, ReceiptStoreError
from herald.domain.notifications import Entry, ResolutionStep
from herald.persistence.queue_store import QueueStore
from herald.services.notifications.actors import ActorResolver, StaticActorResolver
from herald.services.notifications.history import HistorySink
from herald.services.notifications.receipts import ACKNOWLEDGED_SUMMARY, RESOLVED_SUMMARY, ReceiptStore


logger = logging.getLogger(__name__)

MAX_NOTE_LENGTH = 2000
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b-\x1f\x7f]")
_TAGS = re.compile(r"<[^>]*>")

Broadcaster = Callable[[dict[str, Any]], Awaitable[Any]]


def sanitize_note(value: Any) -> str:
    # Plain text only: markup and control characters are stripped, newlines kept.
    if not isinstance(value, str):
        return ""
    cleaned = _CONTROL_CHARS.sub("", _TAGS.sub("", value)).strip()
    return cleaned[:MAX_NOTE_LENGTH]


def _append_note(existing: str, note: str) -> str:
    return f"{existing}\n{note}" if existing else note


def is_fully_resolved(entry: Entry) -> bool:
    if entry.resolved_at is not None or entry.resolution.resolved_at is not None:
        return True
    enabled = entry.enabled_channels()
    return bool(enabled) and all(channel.resolved_at is not None for _key, channel in enabled)


def _find(queue: list[Entry], entry_id: str) -> Entry | None:
    return next((entry for entry in queue if entry.id == entry_id), None)


class ResolutionTracker:
    """Acknowledgement and resolution bookkeeping for queued entries.

    Every operation is a load/mutate/save of the whole queue without the
    processing lock, and is idempotent: repeating it changes nothing and emits
    nothing. The resolution-completed event fires only on the call that takes
    the entry from not-resolved to resolved. Channel delivery status is never
    touched here.
    """

    def __init__(
        self,
        *,
        store: QueueStore,
        receipts: ReceiptStore,
        history: HistorySink,
        actors: ActorResolver | None = None,
        broadcaster: Broadcaster | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self._store = store
        self._receipts = receipts
        self._history = history
        self._actors = actors or StaticActorResolver()
        self._broadcaster = broadcaster
        self._clock = clock or (lambda: int(time.time()))

    def set_broadcaster(self, broadcaster: Broadcaster | None) -> None:
        self._broadcaster = broadcaster

    async def acknowledge_entry(self, entry_id: str, *, user_id: str | None = None, note: str = "") -> Entry | None:
        def mutate(entry: Entry, actor: str, now: int) -> str | None:
            changed = self._stamp_acknowledgement(entry, actor, now)
            for _key, channel in entry.channels.items():
                if channel.acknowledged_at is None:
                    channel.acknowledged_at = now
                    channel.acknowledged_by = actor
                    changed = True
            if not changed:
                return None
            return sanitize_note(note) or ACKNOWLEDGED_SUMMARY

        return await self._apply(entry_id, None, user_id, "acknowledged", mutate)

    async def acknowledge_channel(
        self, entry_id: str, channel_key: str, *, user_id: str | None = None, note: str = ""
    ) -> Entry | None:
        def mutate(entry: Entry, actor: str, now: int) -> str | None:
            channel = entry.channels[channel_key]
            changed = self._stamp_acknowledgement(entry, actor, now)
            if channel.acknowledged_at is None:
                channel.acknowledged_at = now
                channel.acknowledged_by = actor
                changed = True
            if not changed:
                return None
            return sanitize_note(note) or f"Acknowledged on {channel_key}."

        return await self._apply(entry_id, channel_key, user_id, "acknowledged", mutate)

    async def resolve_entry(self, entry_id: str, *, user_id: str | None = None, notes: str = "") -> Entry | None:
        def mutate(entry: Entry, actor: str, now: int) -> str | None:
            if entry.resolved_at is not None and entry.resolution.resolved_at is not None:
                return None
            cleaned = sanitize_note(notes)
            self._stamp_acknowledgement(entry, actor, now)
            for _key, channel in entry.channels.items():
                if channel.resolved_at is None:
                    channel.resolved_at = now
                if channel.acknowledged_at is None:
                    channel.acknowledged_at = now
                    channel.acknowledged_by = actor
            self._stamp_resolution(entry, now)
            if cleaned:
                entry.resolution_notes = _append_note(entry.resolution_notes, cleaned)
            return cleaned or RESOLVED_SUMMARY

        return await self._apply(entry_id, None, user_id, "resolved", mutate)

    async def resolve_channel(
        self, entry_id: str, channel_key: str, *, user_id: str | None = None, notes: str = ""
    ) -> Entry | None:
        def mutate(entry: Entry, actor: str, now: int) -> str | None:
            channel = entry.channels[channel_key]
            if channel.resolved_at is not None:
                return None
            cleaned = sanitize_note(notes)
            channel.resolved_at = now
            if channel.acknowledged_at is None:
                channel.acknowledged_at = now
                channel.acknowledged_by = actor
            self._stamp_acknowledgement(entry, actor, now)
            if cleaned:
                channel.resolution_notes = _append_note(channel.resolution_notes, cleaned)
                entry.resolution_notes = _append_note(entry.resolution_notes, f"[{channel_key}] {cleaned}")
            # Entry-level resolution only once every enabled channel is resolved.
            if is_fully_resolved(entry):
                self._stamp_resolution(entry, now)
            return cleaned or f"Resolved on {channel_key}."

        return await self._apply(entry_id, channel_key, user_id, "resolved", mutate)

    @staticmethod
    def _stamp_acknowledgement(entry: Entry, actor: str, now: int) -> bool:
        changed = False
        if entry.acknowledged_at is None:
            entry.acknowledged_at = now
            entry.acknowledged_by = actor
            changed = True
        if entry.resolution.acknowledged_at is None:
            entry.resolution.acknowledged_at = now
            changed = True
        return changed

    @staticmethod
    def _stamp_resolution(entry: Entry, now: int) -> None:
        if entry.resolved_at is None:
            entry.resolved_at = now
        if entry.resolution.resolved_at is None:
            entry.resolution.resolved_at = now

    async def _apply(
        self,
        entry_id: str,
        channel_key: str | None,
        user_id: str | None,
        step_type: str,
        mutate: Callable[[Entry, str, int], str | None],
    ) -> Entry | None:
        queue = await self._store.load()
        entry = _find(queue, entry_id)
        if entry is None or (channel_key is not None and channel_key not in entry.channels):
            return None

        now = int(self._clock())
        actor = self._actors.resolve(user_id)
        was_acknowledged = entry.resolution.acknowledged_at is not None
        was_resolved = is_fully_resolved(entry)
        summary = mutate(entry, actor, now)
        if summary is None:
            return entry

        step = ResolutionStep(timestamp=now, actor=actor, summary=summary, type=step_type)
        entry.resolution.steps.append(step)
        flipped = not was_resolved and is_fully_resolved(entry)
        if flipped and not entry.resolution.summary:
            entry.resolution.summary = summary
        entry.updated_at = now
        entry.refresh_resolution_fields()
        await self._store.save(queue)
        logger.info(
            "notification_resolution_updated entry_id=%s channel=%s type=%s status=%s",
            entry_id,
            channel_key or "*",
            step_type,
            entry.resolution_status,
        )

        await self._sync_receipt(entry, step, acknowledged=not was_acknowledged, resolved=flipped)
        if flipped:
            await self._on_resolved(entry, actor=actor, summary=summary)
        return entry

    async def _sync_receipt(self, entry: Entry, step: ResolutionStep, *, acknowledged: bool, resolved: bool) -> None:
        # Receipts mirror the entry; the entry's own resolution state stays authoritative for gating.
        try:
            if resolved:
                await self._receipts.resolve(entry, actor=step.actor, summary=step.summary, at=step.timestamp)
            elif acknowledged:
                await self._receipts.acknowledge(entry, actor=step.actor, summary=step.summary, at=step.timestamp)
            else:
                await self._receipts.add_step(entry.id, step)
        except ReceiptStoreError as exc:
            logger.warning("notification_receipt_sync_failed entry_id=%s", entry.id, exc_info=exc)

    async def _on_resolved(self, entry: Entry, *, actor: str, summary: str) -> None:
        logger.info("notification_resolved entry_id=%s actor=%s", entry.id, actor)
        await self._history.log(
            "notification_resolved",
            "info",
            f'Notification "{entry.title or entry.event}" resolved by {actor}: {summary}',
        )
        if self._broadcaster is None:
            return
        candidate = build_resolution_broadcast(entry, actor=actor, summary=summary)
        if candidate is None:
            return
        try:
            broadcast = await self._broadcaster(candidate)
        except QueueStoreUnavailableError as exc:
            # The resolution itself is already saved; only the follow-up entry is lost.
            logger.warning("notification_resolution_broadcast_failed entry_id=%s", entry.id, exc_info=exc)
            await self._history.log(
                "notification_resolution_broadcast_failed",
                "warning",
                f'Resolution of "{entry.title or entry.event}" could not be broadcast: queue storage unavailable.',
            )
            return
        if broadcast is not None:
            await self._history.log(
                "notification_resolution_broadcast",
                "info",
                f'Resolution of "{entry.title or entry.event}" broadcast via {", ".join(candidate["channels"])}.',
            )


def build_resolution_broadcast(entry: Entry, *, actor: str, summary: str) -> dict[str, Any] | None:
    # Follow-up entry to the resolved entry's enabled channels; reminders stay off for it.
    channels = {
        key: {**channel.addressing, "enabled": True}
        for key, channel in entry.enabled_channels()
    }
    if not channels:
        return None
    label = entry.title or entry.event
    lines = [f"Resolved by {actor}: {summary}"]
    if entry.resolution_summary:
        lines.extend(entry.resolution_summary.splitlines())
    return {
        "event": "notification_resolved",
        "title": f"Resolved: {label}",
        "subject": f"Resolved: {label}",
        "lines": lines,
        "severity": "info",
        "context": {"resolved_entry_id": entry.id, "event": entry.event},
        "reminders": {"active": False},
        "channels": channels,
    }
