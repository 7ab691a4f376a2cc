"""Pydantic schemas for Users."""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class UserUpdate(BaseModel):
    display_name: Optional[str] = Field(None, min_length=1, max_length=100)
    avatar_url: Optional[str] = Field(None, max_length=1000)


class UserOut(BaseModel):
    user_id: str
    email: str
    domain: str
    display_name: str
    avatar_url: Optional[str] = None

    model_config = {"from_attributes": True}


class MeOut(UserOut):
    created_at: Optional[datetime] = None
