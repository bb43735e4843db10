from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from herald.services.notifications.transport import TransportResult


class FakeClock:
    def __init__(self, start: int = 1_700_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += int(seconds)


@dataclass
class SentMessage:
    channel_key: str
    addressing: dict[str, Any]
    title: str
    subject: str
    lines: list[str]
    body: str


@dataclass
class ScriptedTransport:
    """Returns queued results per channel key, then falls back to ``default``."""

    default: TransportResult = field(default_factory=lambda: TransportResult(success=True))
    scripts: dict[str, list[TransportResult | Exception]] = field(default_factory=dict)
    sent: list[SentMessage] = field(default_factory=list)

    def script(self, channel_key: str, *results: TransportResult | Exception) -> None:
        self.scripts.setdefault(channel_key, []).extend(results)

    def always_fail(self, message: str = "boom") -> None:
        self.default = TransportResult(success=False, message=message)

    def calls_for(self, channel_key: str) -> list[SentMessage]:
        return [message for message in self.sent if message.channel_key == channel_key]

    async def send(
        self,
        channel_key: str,
        addressing: Mapping[str, Any],
        *,
        title: str,
        subject: str,
        lines: list[str],
        body: str,
    ) -> TransportResult:
        self.sent.append(
            SentMessage(
                channel_key=channel_key,
                addressing=dict(addressing),
                title=title,
                subject=subject,
                lines=list(lines),
                body=body,
            )
        )
        queued = self.scripts.get(channel_key)
        result: TransportResult | Exception = queued.pop(0) if queued else self.default
        if isinstance(result, Exception):
            raise result
        return result


class FailingQueueStore:
    """Wraps a store and raises on save while ``fail_saves`` is set.

    ``fail_after`` lets that many saves through before the failures start.
    """

    def __init__(self, inner: Any, error: Exception, *, fail_after: int = 0) -> None:
        self._inner = inner
        self._error = error
        self.fail_saves = True
        self.fail_after = fail_after

    async def load(self):  # noqa: ANN201
        return await self._inner.load()

    async def save(self, entries) -> None:  # noqa: ANN001
        if self.fail_saves:
            if self.fail_after <= 0:
                raise self._error
            self.fail_after -= 1
        await self._inner.save(entries)


def email_candidate(**overrides: Any) -> dict[str, Any]:
    candidate: dict[str, Any] = {
        "event": "backup_failed",
        "title": "Backup failed",
        "lines": ["Nightly backup failed", "Disk full"],
        "severity": "critical",
        "channels": {"email": {"enabled": True, "recipients": ["ops@example.com"]}},
    }
    candidate.update(overrides)
    return candidate
