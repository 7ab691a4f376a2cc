"""Event service: creation, editing and cancellation of events.

Responsibilities:
- Authorization hook: only the creator may update/cancel
- Optimistic locking via the event ``version`` field
- Mutation ledger (EventMutation) for every write
- Capacity edits coordinated with RSVP arbitration (same lock, same guard)
- Cancellation is a status change; RSVP rows are kept
"""
import logging
from datetime import datetime, timezone
from typing import Optional, Any

import pytz
from sqlalchemy.orm import Session

from pulse.config import settings
from pulse.errors import ConcurrencyConflict, Forbidden, InvalidState, NotFound, VersionMismatch
from pulse.models.event import Event, EventStatus, Visibility
from pulse.models.event_mutation import EventMutation, ActionType
from pulse.models.rsvp import EventRSVP, RSVPStatus
from pulse.services import capacity_ledger, notifications, promotion_policy
from pulse.services.notifications import NotificationKind, Notifier
from pulse.services.rsvp_arbiter import run_with_retry

logger = logging.getLogger(__name__)

_IMMUTABLE_FIELDS = ("event_id", "creator_user_id", "domain", "version", "rsvp_version", "created_at", "status")
_REQUIRED_FIELDS = ("title", "start_at", "end_at", "is_virtual", "tags", "visibility", "allowed_domains")


def to_utc(value: datetime) -> datetime:
    """Normalise a client datetime to UTC; naive values are read in DEFAULT_TIMEZONE."""
    if value.tzinfo is None:
        value = pytz.timezone(settings.DEFAULT_TIMEZONE).localize(value)
    return value.astimezone(pytz.utc)


def _stored_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def _event_snapshot(event: Event) -> dict[str, Any]:
    """Serialize an event to a JSON-safe dict for the mutation ledger."""
    return {
        "event_id": event.event_id,
        "title": event.title,
        "start_at": event.start_at.isoformat() if event.start_at else None,
        "end_at": event.end_at.isoformat() if event.end_at else None,
        "capacity": event.capacity,
        "status": event.status.value if event.status else None,
        "visibility": event.visibility.value if event.visibility else None,
        "version": event.version,
    }


def _check_authorization(event: Event, actor_user_id: str) -> None:
    if event.creator_user_id != actor_user_id:
        raise Forbidden("Only the event creator may modify this event")


def _load_for_edit(db: Session, event_id: str, actor_user_id: str, version: int) -> Event:
    event = db.query(Event).populate_existing().filter(Event.event_id == event_id).first()
    if not event:
        raise NotFound("Event not found")
    _check_authorization(event, actor_user_id)
    if event.status == EventStatus.cancelled:
        raise InvalidState("Event is already cancelled")
    if event.version != version:
        raise VersionMismatch(event.version, version)
    return event


def _claim_rsvp_version(db: Session, event: Event) -> None:
    updated = (
        db.query(Event)
        .filter(Event.event_id == event.event_id, Event.rsvp_version == event.rsvp_version)
        .update({Event.rsvp_version: event.rsvp_version + 1}, synchronize_session=False)
    )
    if updated != 1:
        raise ConcurrencyConflict(event.event_id)


def attendees(db: Session, event_id: str) -> list[tuple[str, RSVPStatus]]:
    """(user_id, status) for everyone confirmed or waitlisted."""
    rows = (
        db.query(EventRSVP.user_id, EventRSVP.status)
        .filter(
            EventRSVP.event_id == event_id,
            EventRSVP.status.in_([RSVPStatus.yes, RSVPStatus.waitlist]),
        )
        .all()
    )
    return [(user_id, RSVPStatus(rsvp_status)) for user_id, rsvp_status in rows]


def create_event(
    db: Session,
    creator_user_id: str,
    creator_domain: str,
    title: str,
    start_at: datetime,
    end_at: datetime,
    capacity: Optional[int] = None,
    description: Optional[str] = None,
    tags: Optional[list[str]] = None,
    location_text: Optional[str] = None,
    campus: Optional[str] = None,
    is_virtual: bool = False,
    visibility: str = "company_only",
    allowed_domains: Optional[list[str]] = None,
) -> Event:
    """Create an active event and write its 'create' mutation."""
    start_utc, end_utc = to_utc(start_at), to_utc(end_at)
    if end_utc <= start_utc:
        raise InvalidState("Event must end after it starts")
    if capacity is not None and capacity < 1:
        raise InvalidState("Capacity must be a positive integer")

    event = Event(
        creator_user_id=creator_user_id,
        domain=creator_domain.lower(),
        title=title,
        description=description,
        tags=tags or [],
        location_text=location_text,
        campus=campus,
        is_virtual=is_virtual,
        start_at=start_utc,
        end_at=end_utc,
        capacity=capacity,
        visibility=Visibility(visibility),
        allowed_domains=[d.lower() for d in (allowed_domains or [])],
        status=EventStatus.active,
        version=1,
        rsvp_version=0,
    )
    db.add(event)
    db.flush()

    db.add(EventMutation(
        event_id=event.event_id,
        actor_user_id=creator_user_id,
        action_type=ActionType.create,
        before_snapshot=None,
        after_snapshot=_event_snapshot(event),
    ))
    db.commit()
    db.refresh(event)
    logger.info("Created event '%s' (%s) by %s, capacity %s", title, event.event_id, creator_user_id, capacity)
    return event


def update_event(
    db: Session,
    event_id: str,
    actor_user_id: str,
    version: int,
    updates: dict[str, Any],
    notifier: Notifier,
) -> Event:
    """Apply a creator's edit; raising or removing the capacity promotes from the waitlist."""

    def attempt() -> tuple[Event, list[str]]:
        event = _load_for_edit(db, event_id, actor_user_id, version)
        before = _event_snapshot(event)
        changes = dict(updates)

        for key in ("start_at", "end_at"):
            if changes.get(key) is not None:
                changes[key] = to_utc(changes[key])
        if changes.get("visibility") is not None:
            changes["visibility"] = Visibility(changes["visibility"])
        if changes.get("allowed_domains") is not None:
            changes["allowed_domains"] = [d.lower() for d in changes["allowed_domains"]]

        capacity_changed = "capacity" in changes and changes["capacity"] != event.capacity
        if capacity_changed and changes["capacity"] is not None:
            confirmed = capacity_ledger.count_confirmed(db, event_id).confirmed
            if changes["capacity"] < confirmed:
                raise InvalidState(
                    f"Capacity {changes['capacity']} is below the {confirmed} confirmed attendees"
                )

        for key, value in changes.items():
            if value is None and key in _REQUIRED_FIELDS:
                continue
            if hasattr(event, key) and key not in _IMMUTABLE_FIELDS:
                setattr(event, key, value)

        if _stored_utc(event.end_at) <= _stored_utc(event.start_at):
            db.rollback()
            raise InvalidState("Event must end after it starts")

        event.version += 1
        event.updated_at = datetime.now(timezone.utc)

        promoted: list[str] = []
        if capacity_changed:
            db.flush()
            promoted = promotion_policy.fill_open_seats(db, event_id)
            _claim_rsvp_version(db, event)

        db.add(EventMutation(
            event_id=event.event_id,
            actor_user_id=actor_user_id,
            action_type=ActionType.update,
            before_snapshot=before,
            after_snapshot=_event_snapshot(event),
        ))
        db.commit()
        db.refresh(event)
        return event, promoted

    event, promoted = run_with_retry(db, event_id, attempt)
    logger.info("Updated event %s to version %d (promoted %d)", event_id, event.version, len(promoted))
    pending = notifications.for_event_change(NotificationKind.event_updated, event_id, attendees(db, event_id))
    pending += [notifications.for_rsvp(event_id, uid, RSVPStatus.yes) for uid in promoted]
    notifications.dispatch(notifier, pending)
    return event


def cancel_event(
    db: Session,
    event_id: str,
    actor_user_id: str,
    version: int,
    notifier: Notifier,
    cancel_reason: Optional[str] = None,
) -> Event:
    """Mark an event cancelled; RSVPs are left as history and attendees are notified."""

    def attempt() -> Event:
        event = _load_for_edit(db, event_id, actor_user_id, version)
        before = _event_snapshot(event)

        now = datetime.now(timezone.utc)
        event.status = EventStatus.cancelled
        event.cancelled_at = now
        event.cancel_reason = cancel_reason
        event.version += 1
        event.updated_at = now
        _claim_rsvp_version(db, event)

        db.add(EventMutation(
            event_id=event.event_id,
            actor_user_id=actor_user_id,
            action_type=ActionType.cancel,
            before_snapshot=before,
            after_snapshot=_event_snapshot(event),
        ))
        db.commit()
        db.refresh(event)
        return event

    event = run_with_retry(db, event_id, attempt)
    logger.info("Cancelled event %s (reason: %s)", event_id, cancel_reason)
    notifications.dispatch(
        notifier,
        notifications.for_event_change(NotificationKind.event_cancelled, event_id, attendees(db, event_id)),
    )
    return event
