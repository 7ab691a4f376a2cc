"""Pydantic schemas for event reports."""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class ReportCreate(BaseModel):
    reason: str = Field(..., min_length=1, max_length=2000)


class ReportOut(BaseModel):
    report_id: str
    event_id: str
    reporter_user_id: str
    reason_text: str
    status: str
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
