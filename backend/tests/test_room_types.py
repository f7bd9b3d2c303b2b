from __future__ import annotations

import pytest

from app.errors import NotFound, StateViolation
from app.schemas_inventory import RoomTypeIn, RoomTypeUpdateIn
from app.services.room_types import RoomTypeService


ACTOR = {"user_id": "u_rm", "role": "revenue_manager"}


@pytest.mark.anyio
async def test_create_normalizes_code_and_currency(seeded_db) -> None:
    service = RoomTypeService(seeded_db)
    doc = await service.create(
        RoomTypeIn(property_id="P1", code="ste", name="Suite", base_rate=250, currency="eur", total_rooms=4),
        ACTOR,
    )
    assert doc["code"] == "STE"
    assert doc["currency"] == "EUR"
    assert doc["is_active"] is True

    codes = [d["code"] for d in await service.list("P1")]
    assert codes == ["DLX", "STE"]

    with pytest.raises(StateViolation):
        await service.create(RoomTypeIn(property_id="P1", code="STE", name="Other"), ACTOR)

    with pytest.raises(NotFound):
        await service.create(RoomTypeIn(property_id="P404", code="X", name="Nowhere"), ACTOR)


@pytest.mark.anyio
async def test_update_and_deactivate(seeded_db) -> None:
    service = RoomTypeService(seeded_db)
    updated = await service.update("RT1", RoomTypeUpdateIn(base_rate=120, total_rooms=12), ACTOR)
    assert updated["base_rate"] == 120
    assert updated["total_rooms"] == 12

    unchanged = await service.update("RT1", RoomTypeUpdateIn(), ACTOR)
    assert unchanged["updated_at"] == updated["updated_at"]

    deactivated = await service.deactivate("RT1", ACTOR)
    assert deactivated["is_active"] is False
    assert await service.list("P1") == []
    assert [d["_id"] for d in await service.list("P1", active_only=False)] == ["RT1"]

    audit_docs = await seeded_db.audit_logs.find({"target.id": "RT1"}).to_list(length=None)
    audit_actions = [d["action"] for d in audit_docs]
    assert audit_actions == ["room_type.updated", "room_type.deactivated"]

    with pytest.raises(NotFound):
        await service.get("RT404")
