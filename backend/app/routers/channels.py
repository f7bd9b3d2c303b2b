from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends

from app.auth import require_roles
from app.db import get_db
from app.services.booking_consumer import BookingConsumer
from app.services.channels.sync_service import ChannelSyncService
from app.services.fx import MongoCurrencyConverter

router = APIRouter(prefix="/api/channels", tags=["channels"])

CHANNEL_CALLERS = ["channel", "admin"]


@router.post("/{channel_id}/reservations")
async def incoming_reservation(
    channel_id: str,
    payload: Dict[str, Any] = Body(...),
    db=Depends(get_db),
    user=Depends(require_roles(CHANNEL_CALLERS)),
):
    consumer = BookingConsumer(db, converter=MongoCurrencyConverter(db))
    return await consumer.handle_incoming_reservation(channel_id, payload)


@router.post("/properties/{property_id}/sync")
async def sync_property(
    property_id: str,
    since: Optional[str] = None,
    db=Depends(get_db),
    user=Depends(require_roles(["admin"])),
):
    return await ChannelSyncService(db).sync_property(property_id, since=since)
