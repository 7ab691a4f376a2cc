"""Promotion policy: moves waitlisted users into freed seats.

Promotion is automatic and FIFO: the RSVP that has been on the waitlist
longest (``waitlisted_at``, then ``created_at``, then ``rsvp_id``) goes
first. Functions here never commit; they run inside the caller's
transaction so the capacity check and the promotion land together.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from pulse.models.event import Event, EventStatus
from pulse.models.rsvp import EventRSVP, RSVPStatus
from pulse.services import capacity_ledger

logger = logging.getLogger(__name__)


def next_in_line(db: Session, event_id: str) -> Optional[EventRSVP]:
    return (
        db.query(EventRSVP)
        .filter(EventRSVP.event_id == event_id, EventRSVP.status == RSVPStatus.waitlist)
        .order_by(EventRSVP.waitlisted_at, EventRSVP.created_at, EventRSVP.rsvp_id)
        .first()
    )


def promote_if_room_available(db: Session, event_id: str) -> Optional[str]:
    """Promote the earliest waitlisted user if a seat is free.

    Returns the promoted user's id, or None when the event is not active, is
    full, or has nobody waiting.
    """
    event = db.query(Event).filter(Event.event_id == event_id).first()
    if not event or event.status != EventStatus.active:
        return None

    if event.capacity is not None:
        counts = capacity_ledger.count_confirmed(db, event_id)
        if counts.confirmed >= event.capacity:
            return None

    candidate = next_in_line(db, event_id)
    if candidate is None:
        return None

    candidate.status = RSVPStatus.yes
    candidate.updated_at = datetime.now(timezone.utc)
    db.flush()
    logger.info("Promoted user %s from waitlist on event %s", candidate.user_id, event_id)
    return candidate.user_id


def fill_open_seats(db: Session, event_id: str) -> list[str]:
    """Promote repeatedly until the event is full or the waitlist is empty."""
    promoted = []
    while True:
        user_id = promote_if_room_available(db, event_id)
        if user_id is None:
            return promoted
        promoted.append(user_id)
