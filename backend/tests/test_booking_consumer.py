from __future__ import annotations

from datetime import date, timedelta
from typing import Any, Dict

import pytest

from app.errors import InsufficientInventory, NotFound, StateViolation, StayViolation
from app.schemas_bookings import BookingCreateIn
from app.services.booking_consumer import BookingConsumer
from app.services.fx import MongoCurrencyConverter
from app.services.inventory_ledger import InventoryLedger

from conftest import materialize_all


OCT_10 = date(2025, 10, 10)


def _webhook(**overrides: Any) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "type": "new_booking",
        "externalBookingId": "BDC123",
        "externalRoomTypeId": "BDC-DLX",
        "checkIn": "2025-10-10",
        "checkOut": "2025-10-12",
        "rate": 2500,
        "currency": "INR",
        "guests": {"adults": 2},
    }
    body.update(overrides)
    return body


async def _sold(db: Any, day: str, room_type_id: str = "RT1", property_id: str = "P1") -> int:
    doc = await db.inventory.find_one({"_id": f"{property_id}:{room_type_id}:{day}"})
    return int(doc["sold_rooms"])


# ---- direct bookings ----


@pytest.mark.anyio
async def test_direct_booking_reserves_and_prices(make_rate, seeded_db) -> None:
    today = date.today()
    await materialize_all(seeded_db, today, 20, property_ids=["P1"])
    rate = await make_rate()
    consumer = BookingConsumer(seeded_db)

    check_in = today + timedelta(days=5)
    booking = await consumer.create_direct_booking(
        BookingCreateIn(
            rate_id=rate.rate_id,
            property_id="P1",
            room_type_id="RT1",
            check_in=check_in,
            check_out=check_in + timedelta(days=2),
            rooms=2,
            guests={"adults": 2},
        ),
        {"user_id": "u_fd", "role": "front_desk"},
    )

    assert booking["status"] == "confirmed"
    assert booking["source"] == "direct"
    assert booking["total_amount"] == 400.0
    assert booking["pricing"]["quote"]["per_night_rate"] == 100.0
    assert booking["inventory_dates"] == [check_in.isoformat(), (check_in + timedelta(days=1)).isoformat()]
    for day in booking["inventory_dates"]:
        assert await _sold(seeded_db, day) == 2

    fetched = await consumer.get_booking(booking["id"])
    assert fetched["id"] == booking["id"]
    events = await seeded_db.domain_events.find({"aggregate.id": booking["id"]}).to_list(length=None)
    assert [e["type"] for e in events] == ["booking.created"]


@pytest.mark.anyio
async def test_direct_booking_rejections_leave_inventory_untouched(make_rate, seeded_db) -> None:
    today = date.today()
    await materialize_all(seeded_db, today, 20, property_ids=["P1"])
    rate = await make_rate(stay_restrictions={"minimum_stay": 3})
    consumer = BookingConsumer(seeded_db)
    check_in = today + timedelta(days=5)

    def payload(**kw: Any) -> BookingCreateIn:
        data = {
            "rate_id": rate.rate_id,
            "property_id": "P1",
            "room_type_id": "RT1",
            "check_in": check_in,
            "check_out": check_in + timedelta(days=3),
        }
        data.update(kw)
        return BookingCreateIn.model_validate(data)

    with pytest.raises(StayViolation):
        await consumer.create_direct_booking(payload(check_out=check_in + timedelta(days=1)))

    with pytest.raises(NotFound):
        await consumer.create_direct_booking(payload(room_type_id="RT2"))

    with pytest.raises(InsufficientInventory):
        await consumer.create_direct_booking(payload(rooms=11))

    assert await seeded_db.bookings.count_documents({}) == 0
    assert await _sold(seeded_db, check_in.isoformat()) == 0


@pytest.mark.anyio
async def test_cancel_releases_once(make_rate, seeded_db) -> None:
    today = date.today()
    await materialize_all(seeded_db, today, 20, property_ids=["P1"])
    rate = await make_rate()
    consumer = BookingConsumer(seeded_db)
    check_in = today + timedelta(days=3)
    booking = await consumer.create_direct_booking(
        BookingCreateIn(rate_id=rate.rate_id, property_id="P1", room_type_id="RT1", check_in=check_in, check_out=check_in + timedelta(days=1))
    )

    first = await consumer.cancel_booking(booking["id"], reason="guest request")
    second = await consumer.cancel_booking(booking["id"])

    assert first["status"] == "cancelled"
    assert first["cancellation_reason"] == "guest request"
    assert second["status"] == "cancelled"
    assert await _sold(seeded_db, check_in.isoformat()) == 0
    cancelled_events = await seeded_db.domain_events.count_documents({"type": "booking.cancelled"})
    assert cancelled_events == 1

    with pytest.raises(NotFound):
        await consumer.cancel_booking("bk_missing")


# ---- channel webhook ----


@pytest.mark.anyio
async def test_channel_webhook_creates_booking_once(channel_connection, seeded_db) -> None:
    """booking_com delivers BDC123 twice; only one booking and one reservation exist."""

    await materialize_all(seeded_db, OCT_10 - timedelta(days=2), 10, property_ids=["P1"])
    consumer = BookingConsumer(seeded_db)

    created = await consumer.handle_incoming_reservation("booking_com", _webhook())
    assert created["status"] == "created"
    booking = created["booking"]
    assert booking["source"] == "booking_com"
    assert booking["external_booking_id"] == "BDC123"
    assert booking["room_type_id"] == "RT1"
    assert booking["inventory_dates"] == ["2025-10-10", "2025-10-11"]
    assert await _sold(seeded_db, "2025-10-10") == 1
    assert await _sold(seeded_db, "2025-10-11") == 1
    assert await _sold(seeded_db, "2025-10-12") == 0

    again = await consumer.handle_incoming_reservation("booking_com", _webhook())
    assert again["status"] == "duplicate"
    assert again["booking"]["id"] == booking["id"]
    assert await _sold(seeded_db, "2025-10-10") == 1
    assert await seeded_db.bookings.count_documents({}) == 1


@pytest.mark.anyio
async def test_channel_webhook_unknown_room_mapping(channel_connection, seeded_db) -> None:
    consumer = BookingConsumer(seeded_db)
    with pytest.raises(NotFound):
        await consumer.handle_incoming_reservation("booking_com", _webhook(externalRoomTypeId="BDC-SUITE"))


@pytest.mark.anyio
async def test_channel_cancellation_is_idempotent(channel_connection, seeded_db) -> None:
    await materialize_all(seeded_db, OCT_10, 5, property_ids=["P1"])
    consumer = BookingConsumer(seeded_db)
    await consumer.handle_incoming_reservation("booking_com", _webhook())

    cancel = {"type": "cancellation", "externalBookingId": "BDC123"}
    first = await consumer.handle_incoming_reservation("booking_com", cancel)
    second = await consumer.handle_incoming_reservation("booking_com", cancel)

    assert first["status"] == "cancelled"
    assert second["status"] == "unchanged"
    assert await _sold(seeded_db, "2025-10-10") == 0

    with pytest.raises(NotFound):
        await consumer.handle_incoming_reservation("booking_com", {"type": "cancellation", "externalBookingId": "NOPE"})

    with pytest.raises(StateViolation):
        await consumer.handle_incoming_reservation("booking_com", _webhook(type="modification", checkOut="2025-10-13"))


@pytest.mark.anyio
async def test_channel_modification_moves_reservation(channel_connection, seeded_db) -> None:
    await materialize_all(seeded_db, OCT_10, 6, property_ids=["P1"])
    consumer = BookingConsumer(seeded_db)
    await consumer.handle_incoming_reservation("booking_com", _webhook())

    out = await consumer.handle_incoming_reservation(
        "booking_com",
        {"type": "modification", "externalBookingId": "BDC123", "checkIn": "2025-10-11", "checkOut": "2025-10-14"},
    )

    assert out["status"] == "modified"
    assert out["booking"]["inventory_dates"] == ["2025-10-11", "2025-10-12", "2025-10-13"]
    assert await _sold(seeded_db, "2025-10-10") == 0
    assert await _sold(seeded_db, "2025-10-13") == 1

    same = await consumer.handle_incoming_reservation(
        "booking_com",
        {"type": "modification", "externalBookingId": "BDC123", "checkIn": "2025-10-11", "checkOut": "2025-10-14"},
    )
    assert same["status"] == "unchanged"


@pytest.mark.anyio
async def test_failed_modification_restores_original_stay(channel_connection, seeded_db) -> None:
    await materialize_all(seeded_db, OCT_10, 6, property_ids=["P1"])
    consumer = BookingConsumer(seeded_db)
    created = await consumer.handle_incoming_reservation("booking_com", _webhook())
    assert (await InventoryLedger(seeded_db).reserve("P1", "RT1", "2025-10-13", "2025-10-14", 10, "FULL")).ok

    with pytest.raises(InsufficientInventory):
        await consumer.handle_incoming_reservation(
            "booking_com",
            {"type": "modification", "externalBookingId": "BDC123", "checkIn": "2025-10-10", "checkOut": "2025-10-14"},
        )

    assert await _sold(seeded_db, "2025-10-10") == 1
    assert await _sold(seeded_db, "2025-10-11") == 1
    assert await _sold(seeded_db, "2025-10-12") == 0
    stored = await consumer.get_booking(created["booking"]["id"])
    assert stored["check_out"] == "2025-10-12"


@pytest.mark.anyio
async def test_channel_currency_mismatch_and_conversion(channel_connection, make_rate, seeded_db) -> None:
    today = date.today()
    check_in = today + timedelta(days=10)
    await materialize_all(seeded_db, check_in, 5, property_ids=["P1"])
    rate = await make_rate()
    await seeded_db.channel_connections.update_one({"_id": "conn_p1_bdc"}, {"$set": {"default_rate_id": rate.rate_id}})
    body = _webhook(checkIn=check_in.isoformat(), checkOut=(check_in + timedelta(days=2)).isoformat())

    plain = await BookingConsumer(seeded_db).handle_incoming_reservation("booking_com", body)
    pricing = plain["booking"]["pricing"]
    assert pricing["rate_id"] == rate.rate_id
    assert pricing["quote"]["status"] == "priced"
    assert pricing["currency_mismatch"] is True

    await seeded_db.fx_rates.insert_one({"base": "INR", "quote": "USD", "rate": 0.012, "as_of": "2020-01-01T00:00:00.000000Z"})
    converter = MongoCurrencyConverter(seeded_db)
    converted = await BookingConsumer(seeded_db, converter=converter).handle_incoming_reservation(
        "booking_com", {**body, "externalBookingId": "BDC124"}
    )
    pricing = converted["booking"]["pricing"]
    assert pricing["currency_mismatch"] is False
    assert pricing["channel"]["converted_amount"] == 30.0
    assert pricing["channel"]["converted_currency"] == "USD"
