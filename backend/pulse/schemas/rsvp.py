"""Pydantic schemas for RSVPs and capacity."""
from typing import Literal, Optional
from pydantic import BaseModel


class RSVPRequest(BaseModel):
    status: Literal["yes", "no"]


class RSVPResult(BaseModel):
    status: Optional[str] = None
    message: str
    promoted_user_ids: list[str] = []


class CapacityOut(BaseModel):
    confirmed: int
    waitlist: int
    capacity: Optional[int] = None
