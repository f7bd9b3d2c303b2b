from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends

from app.auth import RESERVATION_AGENTS, get_current_user, require_roles
from app.db import get_db
from app.schemas_bookings import BookingCancelIn, BookingCreateIn
from app.services.booking_consumer import BookingConsumer
from app.services.fx import MongoCurrencyConverter

router = APIRouter(prefix="/api/bookings", tags=["bookings"])


def _consumer(db) -> BookingConsumer:
    return BookingConsumer(db, converter=MongoCurrencyConverter(db))


@router.post("", status_code=201)
async def create_booking(payload: BookingCreateIn, db=Depends(get_db), user=Depends(require_roles(RESERVATION_AGENTS))):
    return await _consumer(db).create_direct_booking(payload, user)


@router.get("/{booking_id}")
async def get_booking(booking_id: str, db=Depends(get_db), user=Depends(get_current_user)):
    return await _consumer(db).get_booking(booking_id)


@router.post("/{booking_id}/cancel")
async def cancel_booking(
    booking_id: str,
    payload: Optional[BookingCancelIn] = None,
    db=Depends(get_db),
    user=Depends(require_roles(RESERVATION_AGENTS)),
):
    reason = payload.reason if payload else None
    return await _consumer(db).cancel_booking(booking_id, user, reason=reason)
