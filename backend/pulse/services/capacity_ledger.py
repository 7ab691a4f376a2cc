"""Capacity ledger: read-only RSVP counts per event."""
from dataclasses import dataclass

from sqlalchemy import func
from sqlalchemy.orm import Session

from pulse.models.rsvp import EventRSVP, RSVPStatus


@dataclass(frozen=True)
class CapacityCount:
    confirmed: int = 0
    waitlist: int = 0


def count_confirmed(db: Session, event_id: str) -> CapacityCount:
    """Count confirmed and waitlisted RSVPs for one event.

    Zero counts for an event without RSVPs, and for an event that does not
    exist; callers verify existence themselves.
    """
    return count_many(db, [event_id]).get(event_id, CapacityCount())


def count_many(db: Session, event_ids: list[str]) -> dict[str, CapacityCount]:
    """Grouped counts for several events in a single query."""
    if not event_ids:
        return {}
    rows = (
        db.query(EventRSVP.event_id, EventRSVP.status, func.count())
        .filter(
            EventRSVP.event_id.in_(event_ids),
            EventRSVP.status.in_([RSVPStatus.yes, RSVPStatus.waitlist]),
        )
        .group_by(EventRSVP.event_id, EventRSVP.status)
        .all()
    )
    counts: dict[str, dict[str, int]] = {}
    for event_id, rsvp_status, n in rows:
        counts.setdefault(event_id, {})[RSVPStatus(rsvp_status).value] = int(n)
    return {
        eid: CapacityCount(confirmed=c.get("yes", 0), waitlist=c.get("waitlist", 0))
        for eid, c in counts.items()
    }
