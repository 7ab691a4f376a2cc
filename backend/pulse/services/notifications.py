"""Notification trigger: translates RSVP/event outcomes into payloads.

Nothing here knows how a user is actually reached. Payloads are handed to a
``Notifier`` chosen by dependency injection; delivery failures are logged and
never reach the caller, whose state change is already committed.
"""
import enum
import logging
from dataclasses import dataclass, asdict
from typing import Iterable, Optional, Protocol

from fastapi import BackgroundTasks

from pulse.config import settings
from pulse.errors import CollaboratorUnavailable
from pulse.models.rsvp import RSVPStatus

logger = logging.getLogger(__name__)


class NotificationKind(str, enum.Enum):
    rsvp_confirmed = "rsvp_confirmed"
    rsvp_waitlisted = "rsvp_waitlisted"
    rsvp_cancelled = "rsvp_cancelled"
    event_cancelled = "event_cancelled"
    event_updated = "event_updated"


_KIND_FOR_STATUS = {
    RSVPStatus.yes: NotificationKind.rsvp_confirmed,
    RSVPStatus.waitlist: NotificationKind.rsvp_waitlisted,
    RSVPStatus.cancelled: NotificationKind.rsvp_cancelled,
}


@dataclass(frozen=True)
class Notification:
    kind: NotificationKind
    user_id: str
    event_id: str
    status: Optional[str] = None

    def as_dict(self) -> dict:
        data = asdict(self)
        data["kind"] = self.kind.value
        return data


def for_rsvp(event_id: str, user_id: str, rsvp_status: RSVPStatus) -> Notification:
    """Payload describing a user's new RSVP status."""
    return Notification(
        kind=_KIND_FOR_STATUS[rsvp_status],
        user_id=user_id,
        event_id=event_id,
        status=rsvp_status.value,
    )


def for_event_change(
    kind: NotificationKind,
    event_id: str,
    recipients: Iterable[tuple[str, RSVPStatus]],
) -> list[Notification]:
    """One payload per attendee for an event-level change (update / cancel)."""
    if kind not in (NotificationKind.event_updated, NotificationKind.event_cancelled):
        raise ValueError(f"Not an event-level notification kind: {kind}")
    return [
        Notification(kind=kind, user_id=user_id, event_id=event_id, status=rsvp_status.value)
        for user_id, rsvp_status in recipients
    ]


class Notifier(Protocol):
    def send(self, notification: Notification) -> None:
        ...


class LoggingNotifier:
    """Writes each payload to the log instead of a mail relay."""

    def send(self, notification: Notification) -> None:
        logger.info(
            "NOTIFY %s user=%s event=%s status=%s",
            notification.kind.value,
            notification.user_id,
            notification.event_id,
            notification.status,
        )


class NullNotifier:
    def send(self, notification: Notification) -> None:
        return None


def deliver(notifier: Notifier, notification: Notification) -> bool:
    """Send one payload, isolating any failure. Returns True when delivered."""
    try:
        notifier.send(notification)
        return True
    except CollaboratorUnavailable as exc:
        logger.warning(
            "Notification %s for user %s on event %s not delivered: %s",
            notification.kind.value, notification.user_id, notification.event_id, exc,
        )
    except Exception:
        logger.exception(
            "Notifier failed on %s for user %s on event %s",
            notification.kind.value, notification.user_id, notification.event_id,
        )
    return False


def dispatch(notifier: Notifier, notifications: Iterable[Notification]) -> int:
    """Deliver every payload; returns how many were accepted."""
    return sum(1 for n in notifications if deliver(notifier, n))


class BackgroundNotifier:
    """Defers delivery until after the response is sent."""

    def __init__(self, background_tasks: BackgroundTasks, delivery: Notifier):
        self.background_tasks = background_tasks
        self.delivery = delivery

    def send(self, notification: Notification) -> None:
        self.background_tasks.add_task(deliver, self.delivery, notification)


def build_delivery() -> Notifier:
    """Delivery backend selected by the NOTIFIER setting."""
    if settings.NOTIFIER == "none":
        return NullNotifier()
    if settings.NOTIFIER == "log":
        return LoggingNotifier()
    raise ValueError(f"Unknown NOTIFIER setting: {settings.NOTIFIER!r}")


def get_notifier(background_tasks: BackgroundTasks) -> Notifier:
    """FastAPI dependency: request-scoped notifier backed by BackgroundTasks."""
    return BackgroundNotifier(background_tasks, build_delivery())
