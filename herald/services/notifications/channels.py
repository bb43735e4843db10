from __future__ import annotations

from dataclasses import dataclass
import logging

from herald.core.config import Settings
from herald.domain.notifications import TERMINAL_CHANNEL_STATUSES, Channel, Entry
from herald.services.notifications.backoff import compute_backoff
from herald.services.notifications.history import HistorySink
from herald.services.notifications.transport import Transport, TransportResult


logger = logging.getLogger(__name__)

UNKNOWN_ERROR = "unknown error"
HISTORY_CATEGORY = "notification"


@dataclass(frozen=True)
class DeliveryPolicy:
    max_attempts: int = 5
    backoff_base_s: int = 60
    backoff_max_s: int = 900

    @classmethod
    def from_settings(cls, settings: Settings) -> "DeliveryPolicy":
        return cls(
            max_attempts=max(1, int(settings.queue_max_attempts)),
            backoff_base_s=max(1, int(settings.queue_backoff_base_s)),
            backoff_max_s=max(1, int(settings.queue_backoff_max_s)),
        )

    def backoff(self, attempts: int) -> int:
        return compute_backoff(attempts, base_s=self.backoff_base_s, max_s=self.backoff_max_s)


@dataclass(slots=True)
class EntryOutcome:
    attempted: bool
    terminal: bool


def channel_is_terminal(channel: Channel) -> bool:
    return channel.status in TERMINAL_CHANNEL_STATUSES


def is_terminal(entry: Entry) -> bool:
    # Disabled channels never hold an entry open.
    return all(channel_is_terminal(channel) for _key, channel in entry.enabled_channels())


def completion_summary(entry: Entry) -> str:
    return ", ".join(f"{key}:{channel.status}" for key, channel in entry.enabled_channels())


async def _send(transport: Transport, key: str, channel: Channel, entry: Entry) -> TransportResult:
    # Transport exceptions count as failed attempts so one bad channel cannot abort the pass.
    try:
        return await transport.send(
            key,
            dict(channel.addressing),
            title=entry.title,
            subject=entry.subject or entry.title,
            lines=list(entry.lines),
            body=entry.body or "\n".join(entry.lines),
        )
    except Exception as exc:  # noqa: BLE001 - transport bugs become ordinary delivery failures.
        logger.exception("notification_transport_error entry_id=%s channel=%s", entry.id, key)
        return TransportResult(success=False, message=str(exc) or exc.__class__.__name__)


async def attempt_channel(
    key: str,
    channel: Channel,
    entry: Entry,
    *,
    now: int,
    transport: Transport,
    history: HistorySink,
    policy: DeliveryPolicy,
) -> bool:
    """Run one state-machine step for a channel; returns True when the transport was called."""
    if not channel.enabled:
        channel.status = "disabled"
        return False
    if channel_is_terminal(channel):
        return False
    if channel.next_attempt_at is not None and channel.next_attempt_at > now:
        return False

    result = await _send(transport, key, channel, entry)
    if result.success:
        channel.status = "completed"
        channel.completed_at = now
        channel.last_error = ""
        logger.info("notification_channel_delivered entry_id=%s channel=%s", entry.id, key)
        await history.log(HISTORY_CATEGORY, "success", f'Notification "{entry.event}" sent via {key}.')
        return True

    channel.attempts += 1
    channel.last_error = (result.message or "").strip() or UNKNOWN_ERROR
    channel.last_error_at = now
    entry.last_error = channel.last_error
    if channel.attempts >= policy.max_attempts:
        channel.attempts = policy.max_attempts
        channel.status = "failed"
        channel.failed_at = now
        logger.warning(
            "notification_channel_failed entry_id=%s channel=%s attempts=%s error=%s",
            entry.id,
            key,
            channel.attempts,
            channel.last_error,
        )
        await history.log(
            HISTORY_CATEGORY,
            "failure",
            f'Notification "{entry.event}" abandoned via {key}: {channel.last_error}',
        )
        return True

    channel.status = "retry"
    channel.next_attempt_at = now + policy.backoff(channel.attempts)
    logger.warning(
        "notification_channel_retry entry_id=%s channel=%s attempts=%s next_attempt_at=%s",
        entry.id,
        key,
        channel.attempts,
        channel.next_attempt_at,
    )
    await history.log(
        HISTORY_CATEGORY,
        "warning",
        f'Retrying notification "{entry.event}" via {key} (#{channel.attempts}): {channel.last_error}',
    )
    return True


async def process_entry(
    entry: Entry,
    *,
    now: int,
    transport: Transport,
    history: HistorySink,
    policy: DeliveryPolicy,
) -> EntryOutcome:
    # Step every channel, then recompute the entry's next attempt from the channels still open.
    attempted = False
    for key, channel in entry.channels.items():
        if await attempt_channel(key, channel, entry, now=now, transport=transport, history=history, policy=policy):
            attempted = True

    terminal = is_terminal(entry)
    upcoming = [
        channel.next_attempt_at
        for _key, channel in entry.enabled_channels()
        if not channel_is_terminal(channel) and channel.next_attempt_at is not None and channel.next_attempt_at > now
    ]
    if upcoming:
        entry.next_attempt_at = min(upcoming)
    else:
        entry.next_attempt_at = now if terminal else now + policy.backoff(1)
    if attempted:
        entry.last_attempt_at = now
    entry.updated_at = now
    return EntryOutcome(attempted=attempted, terminal=terminal)
