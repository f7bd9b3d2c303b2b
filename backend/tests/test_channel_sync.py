from __future__ import annotations

import asyncio
from datetime import date
from typing import Any, Dict, List

import pytest

from app.services.channels.normalizer import normalize_reservation
from app.services.channels.providers.base import BaseChannelProvider
from app.services.channels.providers.mock_ari import MockAriChannelProvider
from app.services.channels.registry import NotImplementedChannelProvider, get_provider_adapter, register_provider
from app.services.channels.sync_service import ChannelSyncService
from app.services.channels.types import AriUpdate, ChannelPushResult
from app.services.inventory_ledger import InventoryLedger


START = date(2025, 10, 8)


async def _dirty_dates(db: Any) -> List[str]:
    docs = await db.inventory.find({"property_id": "P1", "needs_sync": True}).sort("date", 1).to_list(length=None)
    return [d["date"] for d in docs]


@pytest.mark.anyio
async def test_accepted_dates_are_acknowledged(channel_connection, seeded_db) -> None:
    await InventoryLedger(seeded_db).materialize("P1", "RT1", START, 3)
    provider = MockAriChannelProvider(reject_dates={"2025-10-09"})
    service = ChannelSyncService(seeded_db, resolve_provider=lambda _: provider)

    summary = await service.sync_property("P1")

    assert summary["records"] == 3
    assert summary["acknowledged"] == 2
    assert summary["channels"] == [
        {"channel_id": "booking_com", "ok": False, "code": "REJECTED", "pushed": 3, "accepted": 2}
    ]
    assert await _dirty_dates(seeded_db) == ["2025-10-09"]
    assert [p["room_type_id"] for p in provider.pushed] == ["BDC-DLX", "BDC-DLX"]
    assert provider.pushed[0]["available"] == 10
    assert provider.pushed[0]["price"] == 100.0

    acked = await seeded_db.inventory.find_one({"_id": "P1:RT1:2025-10-08"})
    assert acked["channel_inventory"][0]["channel"] == "booking_com"


@pytest.mark.anyio
async def test_reservation_redirties_record(channel_connection, seeded_db) -> None:
    ledger = InventoryLedger(seeded_db)
    await ledger.materialize("P1", "RT1", START, 2)
    service = ChannelSyncService(seeded_db, resolve_provider=lambda _: MockAriChannelProvider())
    await service.sync_property("P1")
    assert await _dirty_dates(seeded_db) == []

    await ledger.reserve("P1", "RT1", "2025-10-08", "2025-10-09", 1, "B1")
    assert await _dirty_dates(seeded_db) == ["2025-10-08"]

    provider = MockAriChannelProvider()
    await ChannelSyncService(seeded_db, resolve_provider=lambda _: provider).sync_property("P1")
    assert [p["available"] for p in provider.pushed] == [9]


@pytest.mark.anyio
async def test_unknown_provider_keeps_records_dirty(channel_connection, seeded_db) -> None:
    await seeded_db.channel_connections.update_one({"_id": "conn_p1_bdc"}, {"$set": {"provider": "expedia_v9"}})
    await InventoryLedger(seeded_db).materialize("P1", "RT1", START, 2)

    summary = await ChannelSyncService(seeded_db).sync_property("P1")

    assert summary["channels"][0]["code"] == "NOT_IMPLEMENTED"
    assert summary["acknowledged"] == 0
    assert await _dirty_dates(seeded_db) == ["2025-10-08", "2025-10-09"]


@pytest.mark.anyio
async def test_mock_provider_keeps_only_latest_lines(channel_connection, seeded_db) -> None:
    await InventoryLedger(seeded_db).materialize("P1", "RT1", START, 3)
    provider = MockAriChannelProvider(max_pushed=2)

    summary = await ChannelSyncService(seeded_db, resolve_provider=lambda _: provider).sync_property("P1")

    assert summary["acknowledged"] == 3
    assert [p["date"] for p in provider.pushed] == ["2025-10-09", "2025-10-10"]


class _SlowProvider(BaseChannelProvider):
    provider_name = "slow"

    async def push_ari(self, *, connection: Dict[str, Any], updates: List[AriUpdate]) -> ChannelPushResult:  # type: ignore[override]
        await asyncio.sleep(5)
        return ChannelPushResult(ok=True, code="OK")


@pytest.mark.anyio
async def test_provider_timeout_is_contained(channel_connection, seeded_db) -> None:
    await InventoryLedger(seeded_db).materialize("P1", "RT1", START, 1)
    service = ChannelSyncService(seeded_db, resolve_provider=lambda _: _SlowProvider(), timeout_seconds=0.05)

    summary = await service.sync_property("P1")

    assert summary["channels"][0]["ok"] is False
    assert summary["channels"][0]["code"] == "PROVIDER_UNAVAILABLE"
    assert await _dirty_dates(seeded_db) == ["2025-10-08"]


@pytest.mark.anyio
async def test_property_without_connections(seeded_db) -> None:
    await InventoryLedger(seeded_db).materialize("P2", "RT2", START, 2)
    summary = await ChannelSyncService(seeded_db).sync_property("P2")
    assert summary == {"property_id": "P2", "records": 2, "channels": [], "acknowledged": 0}


def test_registry_falls_back_to_not_implemented() -> None:
    assert isinstance(get_provider_adapter("MOCK_ARI"), MockAriChannelProvider)
    assert isinstance(get_provider_adapter("unknown"), NotImplementedChannelProvider)

    slow = _SlowProvider()
    register_provider("Slow_Test", slow)
    assert get_provider_adapter("slow_test") is slow


def test_normalize_reservation_accepts_aliases() -> None:
    res = normalize_reservation(
        {
            "type": "modify",
            "externalBookingId": 991,
            "checkIn": "2025-10-10",
            "checkOut": "2025-10-12",
            "numberOfRooms": "2",
            "guests": {"adults": 3, "children": 1, "country": "IN"},
        }
    )
    assert res.type == "modification"
    assert res.external_booking_id == "991"
    assert res.rooms == 2
    assert (res.adults, res.children, res.country) == (3, 1, "IN")
