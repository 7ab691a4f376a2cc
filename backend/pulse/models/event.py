"""Event ORM model."""
import uuid
import enum
from sqlalchemy import (
    Column, String, Text, Boolean, DateTime, Integer, JSON, ForeignKey, CheckConstraint, Enum as SAEnum,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from pulse.database import Base


class EventStatus(str, enum.Enum):
    active = "active"
    cancelled = "cancelled"
    hidden = "hidden"


class Visibility(str, enum.Enum):
    company_only = "company_only"
    cross_company = "cross_company"


class Event(Base):
    __tablename__ = "events"

    event_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    creator_user_id = Column(String(36), ForeignKey("users.user_id"), nullable=False, index=True)
    domain = Column(String(255), nullable=False, index=True)  # creator's company domain
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    tags = Column(JSON, nullable=False, default=list)
    location_text = Column(String(500), nullable=True)
    campus = Column(String(255), nullable=True)
    is_virtual = Column(Boolean, nullable=False, default=False)
    start_at = Column(DateTime(timezone=True), nullable=False, index=True)
    end_at = Column(DateTime(timezone=True), nullable=False)
    capacity = Column(Integer, nullable=True)  # NULL = unlimited
    visibility = Column(SAEnum(Visibility, native_enum=False), nullable=False, default=Visibility.company_only)
    allowed_domains = Column(JSON, nullable=False, default=list)
    status = Column(SAEnum(EventStatus, native_enum=False), nullable=False, default=EventStatus.active)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancel_reason = Column(String(500), nullable=True)
    version = Column(Integer, nullable=False, default=1)
    # Compare-and-set guard bumped by every RSVP arbitration write
    rsvp_version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    creator = relationship("User")
    rsvps = relationship("EventRSVP", back_populates="event")

    __table_args__ = (
        CheckConstraint("capacity IS NULL OR capacity > 0", name="ck_events_capacity_positive"),
    )

    def is_visible_to(self, domain: str) -> bool:
        """Company-only events are visible to the creator's domain; cross-company
        events to any domain in ``allowed_domains`` (all domains when empty)."""
        domain = domain.lower()
        if self.domain == domain:
            return True
        if self.visibility != Visibility.cross_company:
            return False
        allowed = [d.lower() for d in (self.allowed_domains or [])]
        return not allowed or domain in allowed
