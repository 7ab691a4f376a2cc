"""Event report routes: users flag events for moderator review."""
import logging
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from pulse.database import get_db
from pulse.identity import Identity, get_identity
from pulse.models.report import EventReport, ReportStatus
from pulse.routers.events import visible_event_or_404
from pulse.schemas.report import ReportCreate, ReportOut

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/{event_id}/report", response_model=ReportOut, status_code=status.HTTP_201_CREATED)
def report_event(
    event_id: str,
    payload: ReportCreate,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
):
    """File an open report against an event the caller can see."""
    visible_event_or_404(db, event_id, identity)
    report = EventReport(
        event_id=event_id,
        reporter_user_id=identity.user_id,
        reason_text=payload.reason.strip(),
        status=ReportStatus.open,
    )
    db.add(report)
    db.commit()
    db.refresh(report)
    logger.info("User %s reported event %s (report %s)", identity.user_id, event_id, report.report_id)
    return report
