from __future__ import annotations

from datetime import date
from typing import Optional

from pydantic import BaseModel, Field


class MaterializeIn(BaseModel):
    property_id: str
    room_type_id: str
    from_date: date
    horizon_days: Optional[int] = Field(default=None, ge=1, le=730)


class DateRangeIn(BaseModel):
    property_id: str
    room_type_id: str
    start_date: date
    end_date: date


class InventoryRatesIn(DateRangeIn):
    base_rate: float = Field(ge=0)
    selling_rate: float = Field(ge=0)
    currency: str = Field(min_length=3, max_length=3)


class RestrictionsIn(DateRangeIn):
    stop_sell: Optional[bool] = None
    closed_to_arrival: Optional[bool] = None
    closed_to_departure: Optional[bool] = None
    minimum_stay: Optional[int] = Field(default=None, ge=1)
    maximum_stay: Optional[int] = Field(default=None, ge=1)


class BlockIn(DateRangeIn):
    rooms: int = Field(ge=1)
    reason: Optional[str] = None


class RoomTypeIn(BaseModel):
    property_id: str
    code: str = Field(min_length=1, max_length=20)
    name: str = Field(min_length=1, max_length=100)
    max_occupancy: int = Field(default=2, ge=1)
    base_rate: float = Field(default=0.0, ge=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    total_rooms: int = Field(default=0, ge=0)
    category: str = "standard"


class RoomTypeUpdateIn(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    max_occupancy: Optional[int] = Field(default=None, ge=1)
    base_rate: Optional[float] = Field(default=None, ge=0)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    total_rooms: Optional[int] = Field(default=None, ge=0)
    category: Optional[str] = None
