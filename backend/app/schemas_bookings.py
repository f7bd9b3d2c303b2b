from __future__ import annotations

from datetime import date
from typing import Optional

from pydantic import BaseModel, Field


class GuestsIn(BaseModel):
    adults: int = Field(default=1, ge=1)
    children: int = Field(default=0, ge=0)
    country: Optional[str] = None


class BookingCreateIn(BaseModel):
    rate_id: str
    property_id: str
    room_type_id: str
    check_in: date
    check_out: date
    rooms: int = Field(default=1, ge=1)
    guests: GuestsIn = Field(default_factory=GuestsIn)
    channel: Optional[str] = None
    special_requests: Optional[str] = Field(default=None, max_length=1000)


class BookingCancelIn(BaseModel):
    reason: Optional[str] = None
