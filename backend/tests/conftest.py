"""Shared test configuration and fixtures for backend tests.

Key principles:
- All HTTP calls go through the local ASGI app (httpx + ASGITransport).
- AnyIO is the single async runner (@pytest.mark.anyio).
- Every test gets its own database. With MONGO_URL set it is a real Mongo
  database dropped on teardown; otherwise an in-memory mongomock-motor one.
"""

from typing import Any, AsyncGenerator, Awaitable, Callable, Dict, List, Optional

import os
import sys
import uuid
from datetime import date, timedelta
from pathlib import Path

import httpx
import pytest
from httpx import ASGITransport

# Ensure backend root is on sys.path so that `server` module is importable
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from server import app
from app.auth import create_access_token
from app.db import get_db
from app.schemas_rates import RateCreateIn
from app.services.rate_store import RateStore


MONGO_URL = os.environ.get("MONGO_URL")

GROUP_ID = "G1"
PROPERTY_IDS = ["P1", "P2", "P3"]
# one room type per property; RT1 belongs to P1
ROOM_TYPES = {"P1": "RT1", "P2": "RT2", "P3": "RT3"}


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Force pytest-anyio to use asyncio event loop."""

    return "asyncio"


@pytest.fixture(scope="session")
async def mongo_client() -> AsyncGenerator[Any, None]:
    """Session-scoped client: Motor when MONGO_URL is set, mongomock-motor otherwise."""

    if MONGO_URL:
        from motor.motor_asyncio import AsyncIOMotorClient

        client = AsyncIOMotorClient(MONGO_URL)
    else:
        from mongomock_motor import AsyncMongoMockClient

        client = AsyncMongoMockClient()
    try:
        yield client
    finally:
        client.close()


@pytest.fixture(scope="function")
async def test_db(mongo_client: Any) -> AsyncGenerator[Any, None]:
    """Function-scoped isolated database for each test, dropped on teardown."""

    db_name = f"rate_hub_test_{uuid.uuid4().hex}"
    db = mongo_client[db_name]
    try:
        yield db
    finally:
        await mongo_client.drop_database(db_name)


@pytest.fixture(scope="function")
async def app_with_overrides(test_db) -> AsyncGenerator[Any, None]:
    """FastAPI app instance whose get_db dependency points to test_db."""

    async def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield app
    finally:
        app.dependency_overrides.clear()


@pytest.fixture(scope="function")
async def async_client(app_with_overrides) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app instance."""

    transport = ASGITransport(app=app_with_overrides)
    async with httpx.AsyncClient(transport=transport, base_url="http://test", timeout=30.0) as client:
        yield client


# ---- seed data ----


async def _seed_group(db: Any, *, auto_sync: bool = False, overbooking: Optional[Dict[str, Any]] = None) -> None:
    await db.property_groups.insert_one(
        {
            "_id": GROUP_ID,
            "name": "Coastal Collection",
            "properties": list(PROPERTY_IDS),
            "settings": {"auto_sync": auto_sync, "base_currency": "USD"},
        }
    )
    for pid in PROPERTY_IDS:
        await db.properties.insert_one(
            {
                "_id": pid,
                "group_id": GROUP_ID,
                "name": f"Hotel {pid}",
                "timezone": "UTC",
                "settings": {"overbooking": overbooking or {"enabled": False, "limit": 0, "allow_channel": False}},
            }
        )
        await db.room_types.insert_one(
            {
                "_id": ROOM_TYPES[pid],
                "property_id": pid,
                "code": "DLX",
                "name": "Deluxe",
                "max_occupancy": 3,
                "base_rate": 100.0,
                "currency": "USD",
                "total_rooms": 10,
                "category": "standard",
                "is_active": True,
            }
        )


@pytest.fixture
async def seeded_db(test_db) -> Any:
    """Group G1 = {P1, P2, P3}, one 10-room type per property, no overbooking."""

    await _seed_group(test_db)
    return test_db


@pytest.fixture
async def channel_connection(seeded_db) -> Dict[str, Any]:
    """booking_com connection for P1 mapping external room BDC-DLX to RT1."""

    doc = {
        "_id": "conn_p1_bdc",
        "channel_id": "booking_com",
        "provider": "mock_ari",
        "property_id": "P1",
        "active": True,
        "default_rate_id": None,
        "commission_percent": 15.0,
        "room_type_mappings": [{"channel_room_type_id": "BDC-DLX", "room_type_id": "RT1", "active": True}],
        "rate_plan_mappings": [],
    }
    await seeded_db.channel_connections.insert_one(doc)
    return doc


def rate_payload(**overrides: Any) -> RateCreateIn:
    """Valid BAR rate for G1 covering the next 60 days."""

    today = date.today()
    data: Dict[str, Any] = {
        "rate_name": "Best Available",
        "group_id": GROUP_ID,
        "rate_type": "BAR",
        "base_pricing": {"base_price": 100.0, "currency": "USD"},
        "validity_period": {
            "start_date": today.isoformat(),
            "end_date": (today + timedelta(days=60)).isoformat(),
        },
    }
    data.update(overrides)
    return RateCreateIn.model_validate(data)


@pytest.fixture
def make_rate(seeded_db) -> Callable[..., Awaitable[Any]]:
    """Factory: create a rate and optionally walk it to approved."""

    store = RateStore(seeded_db)
    actor = {"user_id": "u_admin", "role": "admin"}

    async def _make(*, approve: bool = True, **overrides: Any):
        rate = await store.create(rate_payload(**overrides), actor)
        if approve:
            await store.transition(rate.rate_id, "submit", actor)
            rate = await store.transition(rate.rate_id, "approve", actor)
        return rate

    return _make


async def materialize_all(db: Any, start: date, days: int, property_ids: Optional[List[str]] = None) -> None:
    from app.services.inventory_ledger import InventoryLedger

    ledger = InventoryLedger(db)
    for pid in property_ids or PROPERTY_IDS:
        await ledger.materialize(pid, ROOM_TYPES[pid], start, days)


# ---- auth ----


def _headers(role: str, user_id: str) -> Dict[str, str]:
    token = create_access_token(user_id=user_id, role=role)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers() -> Dict[str, str]:
    return _headers("admin", "u_admin")


@pytest.fixture
def revenue_headers() -> Dict[str, str]:
    return _headers("revenue_manager", "u_rm")


@pytest.fixture
def front_desk_headers() -> Dict[str, str]:
    return _headers("front_desk", "u_fd")


@pytest.fixture
def channel_headers() -> Dict[str, str]:
    return _headers("channel", "svc_booking_com")
