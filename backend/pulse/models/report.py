"""EventReport ORM model: a user flagging an event for moderators."""
import uuid
import enum
from sqlalchemy import Column, String, Text, DateTime, ForeignKey, Enum as SAEnum
from sqlalchemy.sql import func
from pulse.database import Base


class ReportStatus(str, enum.Enum):
    open = "open"
    triaged = "triaged"
    closed = "closed"


class EventReport(Base):
    __tablename__ = "event_reports"

    report_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    event_id = Column(String(36), ForeignKey("events.event_id"), nullable=False, index=True)
    reporter_user_id = Column(String(36), ForeignKey("users.user_id"), nullable=False)
    reason_text = Column(Text, nullable=False)
    status = Column(SAEnum(ReportStatus, native_enum=False), nullable=False, default=ReportStatus.open)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
