"""EventRSVP ORM model: a user's attendance intent for an event.

At most one row per (event, user); status changes mutate the row in place and
rows are never deleted.
"""
import uuid
import enum
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, UniqueConstraint, Enum as SAEnum
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from pulse.database import Base


class RSVPStatus(str, enum.Enum):
    yes = "yes"
    waitlist = "waitlist"
    cancelled = "cancelled"


class EventRSVP(Base):
    __tablename__ = "event_rsvps"

    rsvp_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    event_id = Column(String(36), ForeignKey("events.event_id"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.user_id"), nullable=False, index=True)
    status = Column(SAEnum(RSVPStatus, native_enum=False), nullable=False)
    attended = Column(Boolean, nullable=True)
    # Position in line: set each time the row enters the waitlist
    waitlisted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    event = relationship("Event", back_populates="rsvps")
    user = relationship("User")

    __table_args__ = (
        UniqueConstraint("event_id", "user_id", name="uq_event_rsvps_event_user"),
    )
