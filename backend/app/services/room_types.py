from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from pymongo.errors import DuplicateKeyError

from app.errors import NotFound, StateViolation
from app.repositories.property_repository import PropertyRepository
from app.schemas_inventory import RoomTypeIn, RoomTypeUpdateIn
from app.services.audit import write_audit_log
from app.utils import iso_ts, new_id


logger = logging.getLogger(__name__)


class RoomTypeService:
    """Room type catalog per property. Codes are unique within a property."""

    def __init__(self, db) -> None:
        self.db = db
        self._properties = PropertyRepository(db)

    async def create(self, payload: RoomTypeIn, actor: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not await self._properties.get_property(payload.property_id):
            raise NotFound("property not found", {"property_id": payload.property_id})

        code = payload.code.strip().upper()
        if await self._properties.find_room_type_by_code(payload.property_id, code):
            raise StateViolation("room type code already exists", {"property_id": payload.property_id, "code": code})

        now = iso_ts()
        doc = payload.model_dump()
        doc.update(
            {
                "_id": new_id("rt"),
                "code": code,
                "currency": payload.currency.upper(),
                "is_active": True,
                "created_at": now,
                "updated_at": now,
            }
        )
        try:
            await self._properties.insert_room_type(doc)
        except DuplicateKeyError:
            raise StateViolation("room type code already exists", {"property_id": payload.property_id, "code": code})

        logger.info("room type created %s %s/%s", doc["_id"], payload.property_id, code)
        await write_audit_log(
            self.db,
            actor=actor,
            action="room_type.created",
            target_type="room_type",
            target_id=doc["_id"],
            after=doc,
        )
        return doc

    async def get(self, room_type_id: str) -> Dict[str, Any]:
        doc = await self._properties.get_room_type(room_type_id)
        if not doc:
            raise NotFound("room type not found", {"room_type_id": room_type_id})
        return doc

    async def list(self, property_id: str, *, active_only: bool = True) -> List[Dict[str, Any]]:
        return await self._properties.list_room_types(property_id, active_only=active_only)

    async def update(self, room_type_id: str, patch: RoomTypeUpdateIn, actor: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        before = await self.get(room_type_id)
        updates = patch.model_dump(exclude_none=True)
        if "currency" in updates:
            updates["currency"] = updates["currency"].upper()
        if not updates:
            return before
        updates["updated_at"] = iso_ts()

        after = await self._properties.update_room_type(room_type_id, updates)
        if after is None:
            raise NotFound("room type not found", {"room_type_id": room_type_id})
        await write_audit_log(
            self.db,
            actor=actor,
            action="room_type.updated",
            target_type="room_type",
            target_id=room_type_id,
            before=before,
            after=after,
        )
        return after

    async def deactivate(self, room_type_id: str, actor: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        before = await self.get(room_type_id)
        if not before.get("is_active", True):
            return before
        after = await self._properties.update_room_type(room_type_id, {"is_active": False, "updated_at": iso_ts()})
        logger.info("room type deactivated %s", room_type_id)
        await write_audit_log(
            self.db,
            actor=actor,
            action="room_type.deactivated",
            target_type="room_type",
            target_id=room_type_id,
            before=before,
            after=after,
        )
        return after or before
