"""RSVP arbiter: the only code path that changes RSVP status.

Responsibilities:
- Decide yes vs waitlist against the event's current capacity
- Keep one RSVP row per (event, user), mutated in place
- Promote from the waitlist when a confirmed attendee leaves
- Emit notifications after commit, isolated from delivery failures

The read-count-then-write sequence is guarded twice. A per-event lock
serialises arbitration inside this process, and every write bumps
``events.rsvp_version`` with a compare-and-set before commit so writers in
other processes are detected. A lost compare-and-set (or a unique-constraint
collision on insert) rolls back and retries up to ``RSVP_MAX_ATTEMPTS``.
"""
import logging
import threading
import weakref
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pulse.config import settings
from pulse.errors import ConcurrencyConflict, InvalidState, NotFound
from pulse.models.event import Event, EventStatus
from pulse.models.rsvp import EventRSVP, RSVPStatus
from pulse.services import capacity_ledger, notifications, promotion_policy
from pulse.services.notifications import Notification, Notifier

logger = logging.getLogger(__name__)

T = TypeVar("T")

MESSAGES = {
    RSVPStatus.yes: "RSVP confirmed",
    RSVPStatus.waitlist: "Added to waitlist",
    RSVPStatus.cancelled: "RSVP cancelled",
}


class _EventLock:
    """Re-entrant lock that can sit in a WeakValueDictionary."""

    def __init__(self):
        self._lock = threading.RLock()

    def __enter__(self):
        self._lock.acquire()
        return self

    def __exit__(self, *exc_info):
        self._lock.release()


# Entries disappear once no thread holds or waits on the lock
_event_locks: "weakref.WeakValueDictionary[str, _EventLock]" = weakref.WeakValueDictionary()
_event_locks_mutex = threading.Lock()


@contextmanager
def event_lock(event_id: str):
    """Hold the arbitration lock for one event."""
    with _event_locks_mutex:
        lock = _event_locks.get(event_id)
        if lock is None:
            lock = _EventLock()
            _event_locks[event_id] = lock
    with lock:
        yield


@dataclass
class RSVPOutcome:
    event_id: str
    user_id: str
    status: Optional[RSVPStatus]
    message: str
    changed: bool = False
    promoted_user_ids: list[str] = field(default_factory=list)
    notifications: list[Notification] = field(default_factory=list)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _load_event(db: Session, event_id: str) -> Optional[Event]:
    # populate_existing: capacity and status must never come from the identity map
    return db.query(Event).populate_existing().filter(Event.event_id == event_id).first()


def _load_rsvp(db: Session, event_id: str, user_id: str) -> Optional[EventRSVP]:
    return (
        db.query(EventRSVP)
        .populate_existing()
        .filter(EventRSVP.event_id == event_id, EventRSVP.user_id == user_id)
        .first()
    )


def _claim_rsvp_version(db: Session, event_id: str, seen_version: int) -> bool:
    """Compare-and-set on events.rsvp_version; False if another writer got there first."""
    updated = (
        db.query(Event)
        .filter(Event.event_id == event_id, Event.rsvp_version == seen_version)
        .update({Event.rsvp_version: seen_version + 1}, synchronize_session=False)
    )
    return updated == 1


def run_with_retry(db: Session, event_id: str, attempt_fn: Callable[[], T]) -> T:
    """Run ``attempt_fn`` under the event lock, retrying lost compare-and-sets.

    Each attempt must reload whatever it reads; the session is rolled back
    between attempts.
    """
    max_attempts = max(1, settings.RSVP_MAX_ATTEMPTS)
    for attempt in range(1, max_attempts + 1):
        try:
            with event_lock(event_id):
                return attempt_fn()
        except ConcurrencyConflict:
            db.rollback()
            logger.warning("Write conflict on event %s (attempt %d/%d)", event_id, attempt, max_attempts)
        except IntegrityError:
            db.rollback()
            logger.warning("Duplicate RSVP insert on event %s (attempt %d/%d)", event_id, attempt, max_attempts)
    logger.error("Giving up on write to event %s after %d attempts", event_id, max_attempts)
    raise ConcurrencyConflict(event_id, attempts=max_attempts)


def _commit_guarded(db: Session, event_id: str, seen_version: int) -> None:
    if not _claim_rsvp_version(db, event_id, seen_version):
        raise ConcurrencyConflict(event_id)
    db.commit()


def request_join(db: Session, event_id: str, user_id: str, notifier: Notifier) -> RSVPOutcome:
    """Confirm the user if a seat is free, otherwise waitlist them.

    Repeating the call is safe: an already confirmed user stays confirmed and
    no second row is ever created.
    """

    def attempt() -> RSVPOutcome:
        event = _load_event(db, event_id)
        if not event:
            raise NotFound("Event not found")
        if event.status != EventStatus.active:
            raise InvalidState(f"Cannot RSVP to an event that is {event.status.value}")

        seen_version = event.rsvp_version
        counts = capacity_ledger.count_confirmed(db, event_id)
        rsvp = _load_rsvp(db, event_id, user_id)

        if rsvp is not None and rsvp.status == RSVPStatus.yes:
            target = RSVPStatus.yes
        elif event.capacity is None or counts.confirmed < event.capacity:
            target = RSVPStatus.yes
        else:
            target = RSVPStatus.waitlist

        if rsvp is not None and rsvp.status == target:
            # Already there; a waitlisted user keeps their place in line
            db.rollback()
            return RSVPOutcome(event_id, user_id, target, MESSAGES[target])

        now = _now()
        if rsvp is None:
            rsvp = EventRSVP(event_id=event_id, user_id=user_id, status=target)
            db.add(rsvp)
        rsvp.status = target
        rsvp.updated_at = now
        if target == RSVPStatus.waitlist:
            rsvp.waitlisted_at = now

        _commit_guarded(db, event_id, seen_version)
        logger.info(
            "User %s RSVP '%s' on event %s (confirmed %d, capacity %s)",
            user_id, target.value, event_id, counts.confirmed, event.capacity,
        )
        return RSVPOutcome(
            event_id, user_id, target, MESSAGES[target],
            changed=True,
            notifications=[notifications.for_rsvp(event_id, user_id, target)],
        )

    outcome = run_with_retry(db, event_id, attempt)
    notifications.dispatch(notifier, outcome.notifications)
    return outcome


def request_leave(db: Session, event_id: str, user_id: str, notifier: Notifier) -> RSVPOutcome:
    """Cancel the user's RSVP and hand any freed seat to the waitlist.

    Never fails on state: no RSVP (or no event) is a no-op.
    """

    def attempt() -> RSVPOutcome:
        rsvp = _load_rsvp(db, event_id, user_id)
        if rsvp is None or rsvp.status == RSVPStatus.cancelled:
            existing = rsvp.status if rsvp else None
            db.rollback()
            return RSVPOutcome(event_id, user_id, existing, MESSAGES[RSVPStatus.cancelled])

        event = _load_event(db, event_id)
        seen_version = event.rsvp_version if event else 0

        rsvp.status = RSVPStatus.cancelled
        rsvp.updated_at = _now()
        db.flush()

        promoted = promotion_policy.fill_open_seats(db, event_id) if event else []
        if event:
            _commit_guarded(db, event_id, seen_version)
        else:
            db.commit()

        logger.info("User %s cancelled RSVP on event %s; promoted %s", user_id, event_id, promoted or "nobody")
        pending = [notifications.for_rsvp(event_id, user_id, RSVPStatus.cancelled)]
        pending += [notifications.for_rsvp(event_id, uid, RSVPStatus.yes) for uid in promoted]
        return RSVPOutcome(
            event_id, user_id, RSVPStatus.cancelled, MESSAGES[RSVPStatus.cancelled],
            changed=True,
            promoted_user_ids=promoted,
            notifications=pending,
        )

    outcome = run_with_retry(db, event_id, attempt)
    notifications.dispatch(notifier, outcome.notifications)
    return outcome


def current_status(db: Session, event_id: str, user_id: str) -> Optional[RSVPStatus]:
    rsvp = _load_rsvp(db, event_id, user_id)
    return rsvp.status if rsvp else None
