from herald.services.notifications.admission import normalize_entry
from herald.services.notifications.backoff import compute_backoff, compute_reminder_delay
from herald.services.notifications.channels import DeliveryPolicy, attempt_channel, is_terminal
from herald.services.notifications.processing import ProcessingLoop, ProcessingResult
from herald.services.notifications.queue import NotificationQueue
from herald.services.notifications.reminders import ReminderResult, ReminderScheduler
from herald.services.notifications.resolution import ResolutionTracker, is_fully_resolved
from herald.services.notifications.snapshot import build_queue_snapshot
from herald.services.notifications.transport import DefaultTransport, Transport, TransportResult

__all__ = [
    "normalize_entry",
    "compute_backoff",
    "compute_reminder_delay",
    "DeliveryPolicy",
    "attempt_channel",
    "is_terminal",
    "ProcessingLoop",
    "ProcessingResult",
    "NotificationQueue",
    "ReminderResult",
    "ReminderScheduler",
    "ResolutionTracker",
    "is_fully_resolved",
    "build_queue_snapshot",
    "DefaultTransport",
    "Transport",
    "TransportResult",
]
