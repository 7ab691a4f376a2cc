"""Event API routes: feed, detail and creator edits via event_service."""
import logging
from typing import Optional
from datetime import datetime
from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy import or_
from sqlalchemy.orm import Session

from pulse.database import get_db
from pulse.errors import NotFound
from pulse.identity import Identity, get_identity
from pulse.models.event import Event, EventStatus
from pulse.models.rsvp import EventRSVP, RSVPStatus
from pulse.models.user import User
from pulse.schemas.event import (
    AttendeeOut, EventCancelRequest, EventCreate, EventDetail, EventFeedItem, EventOut, EventUpdate,
)
from pulse.services import calendar_export, capacity_ledger, event_service
from pulse.services.notifications import Notifier, get_notifier

logger = logging.getLogger(__name__)
router = APIRouter()


def visible_event_or_404(db: Session, event_id: str, identity: Identity) -> Event:
    """Fetch an event the caller may see; hidden events only show to their creator."""
    event = db.query(Event).filter(Event.event_id == event_id).first()
    if not event or not event.is_visible_to(identity.domain):
        raise NotFound("Event not found")
    if event.status == EventStatus.hidden and event.creator_user_id != identity.user_id:
        raise NotFound("Event not found")
    return event


def _feed_items(db: Session, events: list[Event], user_id: str) -> list[EventFeedItem]:
    event_ids = [e.event_id for e in events]
    counts = capacity_ledger.count_many(db, event_ids)
    own = {}
    if event_ids:
        own = dict(
            db.query(EventRSVP.event_id, EventRSVP.status)
            .filter(EventRSVP.user_id == user_id, EventRSVP.event_id.in_(event_ids))
            .all()
        )
    items = []
    for event in events:
        c = counts.get(event.event_id, capacity_ledger.CapacityCount())
        rsvp_status = own.get(event.event_id)
        items.append(EventFeedItem.model_validate(event).model_copy(update={
            "attendee_count": c.confirmed,
            "waitlist_count": c.waitlist,
            "user_rsvp_status": RSVPStatus(rsvp_status).value if rsvp_status else None,
        }))
    return items


@router.get("/", response_model=list[EventFeedItem])
def list_events(
    query: Optional[str] = Query(None, description="Matches title or description"),
    tags: Optional[str] = Query(None, description="Comma-separated; any match"),
    start_after: Optional[datetime] = Query(None, alias="from"),
    start_before: Optional[datetime] = Query(None, alias="to"),
    virtual: Optional[bool] = Query(None),
    campus: Optional[str] = Query(None),
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
):
    """Feed of active events visible to the caller's domain."""
    q = db.query(Event).filter(Event.status == EventStatus.active)
    if query:
        pattern = f"%{query}%"
        q = q.filter(or_(Event.title.ilike(pattern), Event.description.ilike(pattern)))
    if start_after:
        q = q.filter(Event.start_at >= event_service.to_utc(start_after))
    if start_before:
        q = q.filter(Event.start_at <= event_service.to_utc(start_before))
    if virtual is not None:
        q = q.filter(Event.is_virtual == virtual)
    if campus:
        q = q.filter(Event.campus.ilike(f"%{campus}%"))

    events = [e for e in q.order_by(Event.start_at).all() if e.is_visible_to(identity.domain)]
    if tags:
        wanted = {t.strip().lower() for t in tags.split(",") if t.strip()}
        events = [e for e in events if wanted & {t.lower() for t in (e.tags or [])}]
    return _feed_items(db, events, identity.user_id)


@router.post("/", response_model=EventOut, status_code=status.HTTP_201_CREATED)
def create_event(payload: EventCreate, identity: Identity = Depends(get_identity), db: Session = Depends(get_db)):
    """Create a new event owned by the caller."""
    return event_service.create_event(
        db=db,
        creator_user_id=identity.user_id,
        creator_domain=identity.domain,
        title=payload.title,
        start_at=payload.start_at,
        end_at=payload.end_at,
        capacity=payload.capacity,
        description=payload.description,
        tags=payload.tags,
        location_text=payload.location_text,
        campus=payload.campus,
        is_virtual=payload.is_virtual,
        visibility=payload.visibility,
        allowed_domains=payload.allowed_domains,
    )


@router.get("/created", response_model=list[EventFeedItem])
def list_created_events(identity: Identity = Depends(get_identity), db: Session = Depends(get_db)):
    """Events the caller created, in any status."""
    events = (
        db.query(Event)
        .filter(Event.creator_user_id == identity.user_id)
        .order_by(Event.start_at)
        .all()
    )
    return _feed_items(db, events, identity.user_id)


@router.get("/rsvped", response_model=list[EventFeedItem])
def list_rsvped_events(identity: Identity = Depends(get_identity), db: Session = Depends(get_db)):
    """Events where the caller is confirmed or waitlisted."""
    events = (
        db.query(Event)
        .join(EventRSVP, EventRSVP.event_id == Event.event_id)
        .filter(
            EventRSVP.user_id == identity.user_id,
            EventRSVP.status.in_([RSVPStatus.yes, RSVPStatus.waitlist]),
        )
        .order_by(Event.start_at)
        .all()
    )
    return _feed_items(db, events, identity.user_id)


@router.get("/{event_id}", response_model=EventDetail)
def get_event(event_id: str, identity: Identity = Depends(get_identity), db: Session = Depends(get_db)):
    """Event with creator, confirmed attendees, counts and the caller's RSVP status."""
    event = visible_event_or_404(db, event_id, identity)
    item = _feed_items(db, [event], identity.user_id)[0]
    rows = (
        db.query(User, EventRSVP.status)
        .join(EventRSVP, EventRSVP.user_id == User.user_id)
        .filter(EventRSVP.event_id == event_id, EventRSVP.status == RSVPStatus.yes)
        .order_by(EventRSVP.created_at)
        .all()
    )
    attendees = [
        AttendeeOut(
            user_id=user.user_id,
            email=user.email,
            domain=user.domain,
            display_name=user.display_name,
            avatar_url=user.avatar_url,
            rsvp_status=RSVPStatus(rsvp_status).value,
        )
        for user, rsvp_status in rows
    ]
    return EventDetail(**item.model_dump(), attendees=attendees)


@router.patch("/{event_id}", response_model=EventOut)
def update_event(
    event_id: str,
    payload: EventUpdate,
    identity: Identity = Depends(get_identity),
    notifier: Notifier = Depends(get_notifier),
    db: Session = Depends(get_db),
):
    """Update an event (creator only, optimistic locking enforced)."""
    updates = payload.model_dump(exclude_unset=True, exclude={"version"})
    return event_service.update_event(
        db=db,
        event_id=event_id,
        actor_user_id=identity.user_id,
        version=payload.version,
        updates=updates,
        notifier=notifier,
    )


@router.post("/{event_id}/cancel", response_model=EventOut)
def cancel_event(
    event_id: str,
    payload: EventCancelRequest,
    identity: Identity = Depends(get_identity),
    notifier: Notifier = Depends(get_notifier),
    db: Session = Depends(get_db),
):
    """Cancel an event (status change, creator only, optimistic locking enforced)."""
    return event_service.cancel_event(
        db=db,
        event_id=event_id,
        actor_user_id=identity.user_id,
        version=payload.version,
        notifier=notifier,
        cancel_reason=payload.cancel_reason,
    )


@router.get("/{event_id}/ics", response_class=Response)
def export_event_ics(event_id: str, identity: Identity = Depends(get_identity), db: Session = Depends(get_db)):
    """Download the event as an iCalendar file."""
    event = visible_event_or_404(db, event_id, identity)
    body = calendar_export.event_to_ical(event)
    logger.info("User %s exported event %s as ICS", identity.user_id, event_id)
    return Response(
        content=body,
        media_type="text/calendar",
        headers={"Content-Disposition": f'attachment; filename="{calendar_export.filename_for(event)}"'},
    )
