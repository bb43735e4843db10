from __future__ import annotations

from herald.core.config import Settings
from herald.domain.notifications import Entry
from herald.services.notifications.admission import normalize_entry
from herald.tests.utils.fakes import email_candidate


NOW = 1_700_000_000


def test_rejects_candidates_without_usable_channels(settings: Settings) -> None:
    assert normalize_entry(email_candidate(channels={}), now=NOW, settings=settings) is None
    assert normalize_entry({"event": "x"}, now=NOW, settings=settings) is None
    assert normalize_entry({"channels": {"email": "not-a-mapping"}}, now=NOW, settings=settings) is None
    assert normalize_entry({"channels": {"!!!": {}}}, now=NOW, settings=settings) is None
    assert normalize_entry(["channels"], now=NOW, settings=settings) is None


def test_fills_admission_defaults(settings: Settings) -> None:
    entry = normalize_entry(email_candidate(), now=NOW, settings=settings)

    assert entry is not None
    assert entry.id.startswith("notif_")
    assert entry.created_at == NOW
    assert entry.next_attempt_at == NOW
    assert entry.updated_at == NOW
    assert entry.severity == "critical"
    channel = entry.channels["email"]
    assert channel.status == "pending"
    assert channel.attempts == 0
    assert channel.addressing == {"recipients": ["ops@example.com"]}
    assert entry.resolution_status == "pending"
    assert entry.resolution_summary == ""


def test_reminder_defaults_follow_severity(settings: Settings) -> None:
    expected = {"critical": 300, "warning": 600, "info": 900}
    for severity, interval in expected.items():
        entry = normalize_entry(email_candidate(severity=severity), now=NOW, settings=settings)
        assert entry is not None
        assert entry.reminders.base_interval == interval
        assert entry.reminders.next_at == NOW + interval
        assert entry.reminders.active is True
        assert entry.reminders.attempts == 0


def test_unknown_severity_falls_back_to_info(settings: Settings) -> None:
    entry = normalize_entry(email_candidate(severity="apocalyptic"), now=NOW, settings=settings)
    assert entry is not None
    assert entry.severity == "info"
    assert entry.reminders.base_interval == 900


def test_supplied_reminder_fields_win_over_defaults(settings: Settings) -> None:
    entry = normalize_entry(
        email_candidate(reminders={"active": False, "base_interval": 120, "next_at": None}),
        now=NOW,
        settings=settings,
    )
    assert entry is not None
    assert entry.reminders.active is False
    assert entry.reminders.base_interval == 120
    assert entry.reminders.next_at is None


def test_wrong_typed_fields_are_dropped(settings: Settings) -> None:
    entry = normalize_entry(
        email_candidate(
            title=42,
            lines=["ok", 7, None, "also ok"],
            quiet_until="tomorrow",
            context=["not", "a", "mapping"],
            channels={
                "Email": {"enabled": "yes", "attempts": "3", "status": "exploded", "recipients": ["a@example.com"]},
            },
        ),
        now=NOW,
        settings=settings,
    )
    assert entry is not None
    assert entry.title == ""
    assert entry.lines == ["ok", "also ok"]
    assert entry.quiet_until is None
    assert entry.context == {}
    channel = entry.channels["email"]
    assert channel.enabled is True
    assert channel.attempts == 0
    assert channel.status == "pending"


def test_attempts_are_clamped_to_ceiling(settings: Settings) -> None:
    entry = normalize_entry(
        email_candidate(channels={"email": {"attempts": 40, "status": "retry", "recipients": "ops@example.com"}}),
        now=NOW,
        settings=settings,
    )
    assert entry is not None
    assert entry.channels["email"].attempts == settings.queue_max_attempts


def test_explicit_id_and_timestamps_are_kept(settings: Settings) -> None:
    entry = normalize_entry(
        email_candidate(id="  incident-42  ", created_at=NOW - 600, next_attempt_at=NOW + 30),
        now=NOW,
        settings=settings,
    )
    assert entry is not None
    assert entry.id == "incident-42"
    assert entry.created_at == NOW - 600
    assert entry.next_attempt_at == NOW + 30
    assert entry.reminders.next_at == NOW - 600 + 300


def test_normalizing_a_normalized_entry_is_a_no_op(settings: Settings) -> None:
    entry = normalize_entry(
        email_candidate(
            channels={
                "email": {"recipients": ["ops@example.com"]},
                "slack": {"webhook_url": "https://hooks.example.com/T/1", "escalation": True},
                "internal": {"enabled": False},
            },
            escalation={"channels": ["slack"], "delay": 600, "only_critical": True},
        ),
        now=NOW,
        settings=settings,
    )
    assert entry is not None

    again = normalize_entry(entry.to_dict(), now=NOW + 3600, settings=settings)

    assert again == entry
    assert Entry.from_dict(entry.to_dict()) == entry
