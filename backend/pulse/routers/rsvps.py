"""RSVP API routes: join, leave and capacity, all through the arbiter."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from pulse.database import get_db
from pulse.identity import Identity, get_identity
from pulse.routers.events import visible_event_or_404
from pulse.schemas.rsvp import CapacityOut, RSVPRequest, RSVPResult
from pulse.services import capacity_ledger, rsvp_arbiter
from pulse.services.notifications import Notifier, get_notifier

router = APIRouter()


def _result(outcome: rsvp_arbiter.RSVPOutcome) -> RSVPResult:
    return RSVPResult(
        status=outcome.status.value if outcome.status else None,
        message=outcome.message,
        promoted_user_ids=outcome.promoted_user_ids,
    )


@router.post("/{event_id}/join", response_model=RSVPResult)
def join_event(
    event_id: str,
    identity: Identity = Depends(get_identity),
    notifier: Notifier = Depends(get_notifier),
    db: Session = Depends(get_db),
):
    """RSVP yes; confirmed while seats remain, waitlisted after."""
    visible_event_or_404(db, event_id, identity)
    return _result(rsvp_arbiter.request_join(db, event_id, identity.user_id, notifier))


@router.post("/{event_id}/leave", response_model=RSVPResult)
def leave_event(
    event_id: str,
    identity: Identity = Depends(get_identity),
    notifier: Notifier = Depends(get_notifier),
    db: Session = Depends(get_db),
):
    """Cancel the caller's RSVP. Always succeeds, even without an RSVP."""
    return _result(rsvp_arbiter.request_leave(db, event_id, identity.user_id, notifier))


@router.post("/{event_id}/rsvp", response_model=RSVPResult)
def set_rsvp(
    event_id: str,
    payload: RSVPRequest,
    identity: Identity = Depends(get_identity),
    notifier: Notifier = Depends(get_notifier),
    db: Session = Depends(get_db),
):
    """Single-endpoint form: ``{"status": "yes"}`` joins, ``{"status": "no"}`` leaves."""
    if payload.status == "no":
        return leave_event(event_id, identity, notifier, db)
    return join_event(event_id, identity, notifier, db)


@router.get("/{event_id}/capacity", response_model=CapacityOut)
def get_capacity(event_id: str, identity: Identity = Depends(get_identity), db: Session = Depends(get_db)):
    """Confirmed and waitlisted counts next to the event's capacity."""
    event = visible_event_or_404(db, event_id, identity)
    counts = capacity_ledger.count_confirmed(db, event_id)
    return CapacityOut(confirmed=counts.confirmed, waitlist=counts.waitlist, capacity=event.capacity)
