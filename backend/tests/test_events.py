from __future__ import annotations

import pytest

from app.domain.events import DomainEvent, booking_events, rate_events
from app.services.event_outbox import EventOutbox


def _rate(**kw):
    doc = {"_id": "rate_1", "approval_status": "draft", "version": 1, "distribution_settings": {"sync_status": "pending"}}
    doc.update(kw)
    return doc


def test_rate_created_event() -> None:
    events = rate_events(None, _rate())
    assert events == [DomainEvent("rate.created", "rate", "rate_1", {"version": 1})]


def test_status_change_and_version_bump() -> None:
    events = rate_events(_rate(), _rate(approval_status="pending", version=2))
    assert [e.type for e in events] == ["rate.submitted", "rate.version_bumped"]
    assert events[1].payload == {"from": 1, "to": 2}


def test_sync_partial_carries_recent_errors() -> None:
    errors = [{"property_id": f"P{i}", "error": "timeout"} for i in range(12)]
    after = _rate(distribution_settings={"sync_status": "partial", "sync_errors": errors})
    events = rate_events(_rate(), after)
    assert [e.type for e in events] == ["rate.sync_partial"]
    assert len(events[0].payload["errors"]) == 10
    assert events[0].payload["errors"][0]["property_id"] == "P2"


def test_unchanged_rate_emits_nothing() -> None:
    assert rate_events(_rate(), _rate()) == []


def test_booking_lifecycle_events() -> None:
    booking = {
        "_id": "bk_1",
        "property_id": "P1",
        "room_type_id": "RT1",
        "check_in": "2025-10-10",
        "check_out": "2025-10-12",
        "rooms": 1,
        "source": "direct",
        "status": "confirmed",
    }
    assert [e.type for e in booking_events(None, booking)] == ["booking.created"]

    moved = {**booking, "check_out": "2025-10-13"}
    modified = booking_events(booking, moved)
    assert [e.type for e in modified] == ["booking.modified"]
    assert modified[0].payload["changes"] == {"check_out": {"before": "2025-10-12", "after": "2025-10-13"}}

    cancelled = {**booking, "status": "cancelled"}
    assert [e.type for e in booking_events(booking, cancelled)] == ["booking.cancelled"]
    assert booking_events(cancelled, cancelled) == []


@pytest.mark.anyio
async def test_outbox_publish_list_and_dispatch(test_db) -> None:
    outbox = EventOutbox(test_db)
    published = await outbox.publish(rate_events(None, _rate()) + rate_events(_rate(), _rate(approval_status="pending", version=2)))
    assert published == 3
    assert await outbox.publish([]) == 0

    events = await outbox.list_events(aggregate_id="rate_1")
    assert len(events) == 3
    assert all(e["status"] == "pending" for e in events)

    submitted = await outbox.list_events(type="rate.submitted")
    assert await outbox.mark_dispatched([submitted[0]["_id"]]) == 1
    doc = await test_db.domain_events.find_one({"_id": submitted[0]["_id"]})
    assert doc["status"] == "dispatched"
