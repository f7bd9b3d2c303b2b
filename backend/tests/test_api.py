from __future__ import annotations

from datetime import date, timedelta
from typing import Any, Dict

import pytest

from conftest import materialize_all


def _rate_body(**overrides: Any) -> Dict[str, Any]:
    today = date.today()
    body: Dict[str, Any] = {
        "rate_name": "Best Available",
        "group_id": "G1",
        "rate_type": "BAR",
        "base_pricing": {"base_price": 100.0, "currency": "USD"},
        "validity_period": {"start_date": today.isoformat(), "end_date": (today + timedelta(days=60)).isoformat()},
    }
    body.update(overrides)
    return body


@pytest.mark.anyio
async def test_requests_without_token_are_rejected(async_client) -> None:
    resp = await async_client.get("/api/rates")
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "unauthorized"


@pytest.mark.anyio
async def test_front_desk_cannot_author_rates(async_client, seeded_db, front_desk_headers) -> None:
    resp = await async_client.post("/api/rates", json=_rate_body(), headers=front_desk_headers)
    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "forbidden"


@pytest.mark.anyio
async def test_invalid_payload_uses_error_envelope(async_client, seeded_db, revenue_headers) -> None:
    resp = await async_client.post("/api/rates", json={"rate_name": ""}, headers=revenue_headers)
    assert resp.status_code == 422
    body = resp.json()
    assert body["error"]["code"] == "validation_error"
    assert body["error"]["details"]["errors"]

    missing = await async_client.get("/api/rates/rate_missing", headers=revenue_headers)
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "not_found"


@pytest.mark.anyio
async def test_rate_lifecycle_over_http(async_client, seeded_db, revenue_headers, admin_headers) -> None:
    created = await async_client.post("/api/rates", json=_rate_body(), headers=revenue_headers)
    assert created.status_code == 201
    rate_id = created.json()["rate_id"]
    assert created.json()["approval_status"] == "draft"

    submitted = await async_client.post(f"/api/rates/{rate_id}/transition", json={"action": "submit"}, headers=revenue_headers)
    assert submitted.status_code == 200

    # revenue managers cannot approve their own rates
    denied = await async_client.post(f"/api/rates/{rate_id}/transition", json={"action": "approve"}, headers=revenue_headers)
    assert denied.status_code == 403

    approved = await async_client.post(f"/api/rates/{rate_id}/transition", json={"action": "approve"}, headers=admin_headers)
    assert approved.status_code == 200
    assert approved.json()["rate"]["approval_status"] == "approved"
    # G1 has auto_sync off
    assert approved.json()["distribution"] is None

    preview = await async_client.post(f"/api/rates/{rate_id}/distribution/preview", json={}, headers=revenue_headers)
    assert preview.status_code == 200

    dist = await async_client.post(f"/api/rates/{rate_id}/distribute", json={}, headers=admin_headers)
    assert dist.status_code == 200
    result = dist.json()
    assert result["sync_status"] == "synced"
    assert sorted(result["success"]) == ["P1", "P2", "P3"]

    history = await async_client.get(f"/api/rates/{rate_id}/history", headers=revenue_headers)
    assert history.json()[0]["action"] == "status:approved"

    report = await async_client.get("/api/groups/G1/distribution-report", headers=revenue_headers)
    assert report.json()[0]["synced"] == 3

    check_in = date.today() + timedelta(days=5)
    quote = await async_client.post(
        "/api/quotes",
        json={
            "rate_id": rate_id,
            "property_id": "P1",
            "room_type_id": "RT1",
            "check_in": check_in.isoformat(),
            "check_out": (check_in + timedelta(days=2)).isoformat(),
            "guests": 2,
        },
        headers=revenue_headers,
    )
    assert quote.status_code == 200
    assert quote.json()["status"] == "priced"
    assert quote.json()["total_before_tax"] == 200.0


@pytest.mark.anyio
async def test_inventory_and_bookings_over_http(async_client, seeded_db, make_rate, revenue_headers, front_desk_headers) -> None:
    today = date.today()
    materialized = await async_client.post(
        "/api/inventory/materialize",
        json={"property_id": "P1", "room_type_id": "RT1", "from_date": today.isoformat(), "horizon_days": 14},
        headers=revenue_headers,
    )
    assert materialized.json() == {"created": 14}

    rate = await make_rate()
    check_in = today + timedelta(days=3)
    booking = await async_client.post(
        "/api/bookings",
        json={
            "rate_id": rate.rate_id,
            "property_id": "P1",
            "room_type_id": "RT1",
            "check_in": check_in.isoformat(),
            "check_out": (check_in + timedelta(days=1)).isoformat(),
            "rooms": 3,
        },
        headers=front_desk_headers,
    )
    assert booking.status_code == 201
    booking_id = booking.json()["id"]

    rows = await async_client.get(
        "/api/inventory",
        params={"property_id": "P1", "room_type_id": "RT1", "start": check_in.isoformat(), "end": check_in.isoformat()},
        headers=front_desk_headers,
    )
    assert rows.json()[0]["available_rooms"] == 7

    restricted = await async_client.post(
        "/api/inventory/restrictions",
        json={
            "property_id": "P1",
            "room_type_id": "RT1",
            "start_date": check_in.isoformat(),
            "end_date": check_in.isoformat(),
            "closed_to_arrival": True,
        },
        headers=revenue_headers,
    )
    assert restricted.status_code == 200

    blocked = await async_client.post(
        "/api/bookings",
        json={
            "rate_id": rate.rate_id,
            "property_id": "P1",
            "room_type_id": "RT1",
            "check_in": check_in.isoformat(),
            "check_out": (check_in + timedelta(days=1)).isoformat(),
        },
        headers=front_desk_headers,
    )
    assert blocked.status_code == 409
    assert blocked.json()["error"]["code"] == "restriction_violation"

    cancelled = await async_client.post(f"/api/bookings/{booking_id}/cancel", json={"reason": "no show"}, headers=front_desk_headers)
    assert cancelled.json()["status"] == "cancelled"


@pytest.mark.anyio
async def test_channel_webhook_over_http(async_client, channel_connection, seeded_db, channel_headers, front_desk_headers) -> None:
    await materialize_all(seeded_db, date(2025, 10, 8), 10, property_ids=["P1"])
    body = {
        "type": "new_booking",
        "externalBookingId": "BDC123",
        "externalRoomTypeId": "BDC-DLX",
        "checkIn": "2025-10-10",
        "checkOut": "2025-10-12",
        "rate": 2500,
        "currency": "INR",
        "guests": {"adults": 2},
    }

    denied = await async_client.post("/api/channels/booking_com/reservations", json=body, headers=front_desk_headers)
    assert denied.status_code == 403

    first = await async_client.post("/api/channels/booking_com/reservations", json=body, headers=channel_headers)
    second = await async_client.post("/api/channels/booking_com/reservations", json=body, headers=channel_headers)
    assert first.json()["status"] == "created"
    assert second.json()["status"] == "duplicate"
    assert first.json()["booking"]["id"] == second.json()["booking"]["id"]

    bad = await async_client.post("/api/channels/booking_com/reservations", json={"type": "refund"}, headers=channel_headers)
    assert bad.status_code == 422
