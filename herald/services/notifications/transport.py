from __future__ import annotations

import asyncio
from dataclasses import dataclass
from email.message import EmailMessage
import logging
import re
from typing import Any, Awaitable, Callable, Mapping, Protocol

import aiosmtplib
import httpx

from herald.core.config import Settings
from herald.domain.notifications import channel_kind


logger = logging.getLogger(__name__)

_EMAIL_PATTERN = re.compile(r"^[^@\s,;]+@[^@\s,;]+\.[^@\s,;]+$")

EmailSender = Callable[[EmailMessage], Awaitable[None]]


@dataclass(frozen=True)
class TransportResult:
    success: bool
    message: str = ""


class Transport(Protocol):
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
        ...


def normalize_email_recipients(raw: Any) -> list[str]:
    # Accept a list or a comma/newline separated string; keep unique valid addresses in order.
    if isinstance(raw, str):
        parts = re.split(r"[,\n]+", raw)
    elif isinstance(raw, (list, tuple)):
        parts = [item for item in raw if isinstance(item, str)]
    else:
        return []
    valid: list[str] = []
    for part in parts:
        address = part.strip()
        if address and _EMAIL_PATTERN.match(address) and address not in valid:
            valid.append(address)
    return valid


def is_valid_webhook_url(value: Any) -> bool:
    if not isinstance(value, str) or not value.strip():
        return False
    try:
        url = httpx.URL(value.strip())
    except (httpx.InvalidURL, ValueError):
        return False
    return url.scheme in {"http", "https"} and bool(url.host)


def slack_payload(title: str, lines: list[str]) -> dict[str, Any]:
    return {"text": f"*{title}*\n" + "\n".join(lines)}


def discord_payload(title: str, lines: list[str]) -> dict[str, Any]:
    return {"content": f"**{title}**\n" + "\n".join(lines)}


def teams_payload(title: str, lines: list[str]) -> dict[str, Any]:
    text = "\n\n".join(str(line) for line in lines)
    return {
        "@type": "MessageCard",
        "@context": "http://schema.org/extensions",
        "summary": title,
        "themeColor": "0078D7",
        "title": title,
        "text": f"**{title}**\n\n{text}" if title else text,
    }


def sms_payload(title: str, lines: list[str]) -> dict[str, Any]:
    body_lines = [str(line) for line in lines if str(line)]
    parts = [title] if title else []
    if body_lines:
        parts.append(" | ".join(body_lines))
    return {"title": title, "message": " - ".join(parts), "lines": body_lines}


_WEBHOOK_PAYLOADS: dict[str, Callable[[str, list[str]], dict[str, Any]]] = {
    "slack": slack_payload,
    "discord": discord_payload,
    "teams": teams_payload,
    "sms": sms_payload,
}

_WEBHOOK_LABELS = {"slack": "Slack", "discord": "Discord", "teams": "Teams", "sms": "SMS"}


class DefaultTransport:
    """Deliver entries over SMTP (email) and JSON webhooks (slack, discord, teams, sms).

    Never raises for delivery problems: every failure becomes a ``TransportResult``
    with ``success=False`` so the channel state machine can schedule a retry.
    """

    def __init__(
        self,
        *,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
        email_sender: EmailSender | None = None,
    ) -> None:
        self._settings = settings
        self._http_client = http_client
        self._email_sender = email_sender or self._send_smtp

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
        kind = channel_kind(channel_key)
        if kind == "internal":
            return TransportResult(success=True)
        if kind == "email":
            return await self._send_email(addressing.get("recipients"), subject=subject or title, body=body)
        if kind in _WEBHOOK_PAYLOADS:
            return await self._post_webhook(kind, addressing.get("webhook_url"), _WEBHOOK_PAYLOADS[kind](title, lines))
        return TransportResult(success=False, message=f"unknown channel: {channel_key}")

    async def _send_email(self, raw_recipients: Any, *, subject: str, body: str) -> TransportResult:
        recipients = normalize_email_recipients(raw_recipients)
        if not recipients:
            return TransportResult(success=False, message="no valid email recipient")
        message = EmailMessage()
        message["From"] = self._settings.smtp_sender
        message["To"] = ", ".join(recipients)
        message["Subject"] = subject
        message.set_content(body, charset="utf-8")
        try:
            await self._email_sender(message)
        except (aiosmtplib.SMTPException, OSError, asyncio.TimeoutError) as exc:
            logger.warning("notification_email_failed recipients=%s error=%s", len(recipients), exc)
            return TransportResult(success=False, message=f"email delivery failed: {exc}")
        return TransportResult(success=True)

    async def _send_smtp(self, message: EmailMessage) -> None:
        settings = self._settings
        await aiosmtplib.send(
            message,
            hostname=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            timeout=settings.smtp_timeout_s,
        )

    async def _post_webhook(self, kind: str, webhook_url: Any, payload: dict[str, Any]) -> TransportResult:
        label = _WEBHOOK_LABELS[kind]
        if not is_valid_webhook_url(webhook_url):
            return TransportResult(success=False, message=f"invalid {label} webhook url")
        try:
            if self._http_client is not None:
                response = await self._http_client.post(str(webhook_url).strip(), json=payload)
            else:
                async with httpx.AsyncClient(timeout=self._settings.notify_http_timeout_s) as client:
                    response = await client.post(str(webhook_url).strip(), json=payload)
        except httpx.HTTPError as exc:
            return TransportResult(success=False, message=str(exc) or exc.__class__.__name__)
        if 200 <= response.status_code < 300:
            return TransportResult(success=True)
        return TransportResult(success=False, message=f"unexpected {label} response: {response.status_code}")
