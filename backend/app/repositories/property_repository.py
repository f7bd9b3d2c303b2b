from __future__ import annotations

from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from app.repositories.base_repository import get_collection
from app.services.resilience import db_errors_as_transient


DEFAULT_OVERBOOKING: Dict[str, Any] = {"enabled": False, "limit": 0, "allow_channel": False}


class PropertyRepository:
    """Property groups, properties, room types and channel connections.

    These are reference data for the rate core; they are read far more often
    than written.
    """

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db
        self._groups = get_collection(db, "property_groups")
        self._properties = get_collection(db, "properties")
        self._room_types = get_collection(db, "room_types")
        self._connections = get_collection(db, "channel_connections")

    # ---- groups / properties ----

    async def get_group(self, group_id: str) -> Optional[Dict[str, Any]]:
        async with db_errors_as_transient("group read"):
            return await self._groups.find_one({"_id": group_id})

    async def upsert_group(self, doc: Dict[str, Any]) -> None:
        async with db_errors_as_transient("group write"):
            await self._groups.replace_one({"_id": doc["_id"]}, doc, upsert=True)

    async def get_property(self, property_id: str) -> Optional[Dict[str, Any]]:
        async with db_errors_as_transient("property read"):
            return await self._properties.find_one({"_id": property_id})

    async def upsert_property(self, doc: Dict[str, Any]) -> None:
        async with db_errors_as_transient("property write"):
            await self._properties.replace_one({"_id": doc["_id"]}, doc, upsert=True)

    async def overbooking_settings(self, property_id: str) -> Dict[str, Any]:
        prop = await self.get_property(property_id)
        settings = ((prop or {}).get("settings") or {}).get("overbooking") or {}
        return {**DEFAULT_OVERBOOKING, **settings}

    async def property_names(self, property_ids: List[str]) -> Dict[str, str]:
        if not property_ids:
            return {}
        async with db_errors_as_transient("property read"):
            docs = await self._properties.find({"_id": {"$in": property_ids}}, {"name": 1}).to_list(length=len(property_ids))
        return {d["_id"]: d.get("name") or d["_id"] for d in docs}

    # ---- room types ----

    async def insert_room_type(self, doc: Dict[str, Any]) -> None:
        async with db_errors_as_transient("room type write"):
            await self._room_types.insert_one(doc)

    async def get_room_type(self, room_type_id: str) -> Optional[Dict[str, Any]]:
        async with db_errors_as_transient("room type read"):
            return await self._room_types.find_one({"_id": room_type_id})

    async def find_room_type_by_code(self, property_id: str, code: str) -> Optional[Dict[str, Any]]:
        async with db_errors_as_transient("room type read"):
            return await self._room_types.find_one({"property_id": property_id, "code": code})

    async def list_room_types(self, property_id: str, *, active_only: bool = True) -> List[Dict[str, Any]]:
        flt: Dict[str, Any] = {"property_id": property_id}
        if active_only:
            flt["is_active"] = True
        async with db_errors_as_transient("room type list"):
            return await self._room_types.find(flt).sort("code", 1).to_list(length=500)

    async def room_type_ids_for_properties(self, property_ids: List[str]) -> set[str]:
        if not property_ids:
            return set()
        async with db_errors_as_transient("room type list"):
            docs = await self._room_types.find({"property_id": {"$in": property_ids}}, {"_id": 1}).to_list(length=5000)
        return {d["_id"] for d in docs}

    async def update_room_type(self, room_type_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        async with db_errors_as_transient("room type write"):
            return await self._room_types.find_one_and_update(
                {"_id": room_type_id},
                {"$set": updates},
                return_document=ReturnDocument.AFTER,
            )

    # ---- channel connections ----

    async def get_connection(self, channel_id: str, property_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        flt: Dict[str, Any] = {"channel_id": channel_id, "active": True}
        if property_id:
            flt["property_id"] = property_id
        async with db_errors_as_transient("channel connection read"):
            return await self._connections.find_one(flt)

    async def find_connection_for_room(self, channel_id: str, external_room_type_id: str) -> Optional[Dict[str, Any]]:
        """Locate the active connection whose mapping table knows this channel room type."""

        async with db_errors_as_transient("channel connection read"):
            return await self._connections.find_one(
                {
                    "channel_id": channel_id,
                    "active": True,
                    "room_type_mappings": {
                        "$elemMatch": {"channel_room_type_id": external_room_type_id, "active": True}
                    },
                }
            )

    async def list_connections(self, property_id: str) -> List[Dict[str, Any]]:
        async with db_errors_as_transient("channel connection list"):
            return await self._connections.find({"property_id": property_id, "active": True}).to_list(length=100)

    async def upsert_connection(self, doc: Dict[str, Any]) -> None:
        async with db_errors_as_transient("channel connection write"):
            await self._connections.replace_one({"_id": doc["_id"]}, doc, upsert=True)
