"""Pydantic schemas for Events."""
from __future__ import annotations
from datetime import datetime
from typing import Literal, Optional
from pydantic import BaseModel, Field, model_validator

from pulse.schemas.user import UserOut


class EventCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    tags: list[str] = []
    location_text: Optional[str] = None
    campus: Optional[str] = None
    is_virtual: bool = False
    start_at: datetime
    end_at: datetime
    capacity: Optional[int] = Field(None, gt=0)  # None = unlimited
    visibility: Literal["company_only", "cross_company"] = "company_only"
    allowed_domains: list[str] = []

    @model_validator(mode="after")
    def _check_window(self):
        same_kind = (self.start_at.tzinfo is None) == (self.end_at.tzinfo is None)
        if same_kind and self.end_at <= self.start_at:
            raise ValueError("end_at must be after start_at")
        return self


class EventUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    tags: Optional[list[str]] = None
    location_text: Optional[str] = None
    campus: Optional[str] = None
    is_virtual: Optional[bool] = None
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    capacity: Optional[int] = Field(None, gt=0)
    visibility: Optional[Literal["company_only", "cross_company"]] = None
    allowed_domains: Optional[list[str]] = None
    version: int  # required for optimistic locking


class EventCancelRequest(BaseModel):
    cancel_reason: Optional[str] = None
    version: int  # required for optimistic locking


class EventOut(BaseModel):
    event_id: str
    creator_user_id: str
    domain: str
    title: str
    description: Optional[str] = None
    tags: list[str] = []
    location_text: Optional[str] = None
    campus: Optional[str] = None
    is_virtual: bool
    start_at: datetime
    end_at: datetime
    capacity: Optional[int] = None
    visibility: str
    allowed_domains: list[str] = []
    status: str
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    version: int
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class EventFeedItem(EventOut):
    creator: UserOut
    attendee_count: int = 0
    waitlist_count: int = 0
    user_rsvp_status: Optional[str] = None


class AttendeeOut(UserOut):
    rsvp_status: str


class EventDetail(EventFeedItem):
    attendees: list[AttendeeOut] = []
