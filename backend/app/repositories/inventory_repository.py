from __future__ import annotations

from typing import Any, AsyncIterator, Dict, Iterable, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument, UpdateOne

from app.repositories.base_repository import get_collection
from app.services.resilience import db_errors_as_transient


def record_id(property_id: str, room_type_id: str, day: str) -> str:
    """Deterministic key: one inventory record per (property, room type, date)."""

    return f"{property_id}:{room_type_id}:{day}"


def _without_id(doc: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in doc.items() if k != "_id"}


class InventoryRepository:
    """Date-indexed inventory records.

    Every mutation goes through `compare_and_set`, which only applies when the
    stored `version` still equals the caller's snapshot and bumps it by one.
    """

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db
        self._col = get_collection(db, "inventory")
        self._archive = get_collection(db, "inventory_archive")

    async def get(self, property_id: str, room_type_id: str, day: str) -> Optional[Dict[str, Any]]:
        async with db_errors_as_transient("inventory read"):
            return await self._col.find_one({"_id": record_id(property_id, room_type_id, day)})

    async def get_by_id(self, doc_id: str) -> Optional[Dict[str, Any]]:
        async with db_errors_as_transient("inventory read"):
            return await self._col.find_one({"_id": doc_id})

    async def get_days(self, property_id: str, room_type_id: str, days: Iterable[str]) -> Dict[str, Dict[str, Any]]:
        ids = [record_id(property_id, room_type_id, d) for d in days]
        if not ids:
            return {}
        async with db_errors_as_transient("inventory read"):
            docs = await self._col.find({"_id": {"$in": ids}}).to_list(length=len(ids))
        return {d["date"]: d for d in docs}

    async def list_range(
        self,
        property_id: str,
        room_type_id: Optional[str],
        start: str,
        end: str,
    ) -> List[Dict[str, Any]]:
        flt: Dict[str, Any] = {"property_id": property_id, "date": {"$gte": start, "$lte": end}}
        if room_type_id:
            flt["room_type_id"] = room_type_id
        async with db_errors_as_transient("inventory read"):
            return await self._col.find(flt).sort([("room_type_id", 1), ("date", 1)]).to_list(length=10000)

    async def compare_and_set(
        self,
        doc_id: str,
        expected_version: int,
        update: Dict[str, Any],
    ) -> Optional[Dict[str, Any]]:
        """Apply `update` if the record is still at `expected_version`.

        Returns the updated document, or None when another writer got there
        first (or the record no longer exists).
        """

        update = dict(update)
        inc = dict(update.pop("$inc", {}))
        inc["version"] = 1
        update["$inc"] = inc
        async with db_errors_as_transient("inventory write"):
            return await self._col.find_one_and_update(
                {"_id": doc_id, "version": expected_version},
                update,
                return_document=ReturnDocument.AFTER,
            )

    async def find_by_booking(self, booking_id: str) -> List[Dict[str, Any]]:
        async with db_errors_as_transient("inventory read"):
            return await self._col.find({"reservations.booking_id": booking_id}).sort("date", 1).to_list(length=1000)

    async def find_by_block(self, block_id: str) -> List[Dict[str, Any]]:
        async with db_errors_as_transient("inventory read"):
            return await self._col.find({"blocks.block_id": block_id}).sort("date", 1).to_list(length=1000)

    async def update_range(
        self,
        property_id: str,
        room_type_ids: Optional[List[str]],
        start: str,
        end: str,
        fields: Dict[str, Any],
    ) -> int:
        flt: Dict[str, Any] = {"property_id": property_id, "date": {"$gte": start, "$lte": end}}
        if room_type_ids is not None:
            flt["room_type_id"] = {"$in": list(room_type_ids)}
        async with db_errors_as_transient("inventory write"):
            res = await self._col.update_many(flt, {"$set": fields, "$inc": {"version": 1}})
        return int(res.modified_count)

    async def insert_missing(self, docs: List[Dict[str, Any]]) -> int:
        """Create records that do not exist yet; existing ones are left untouched."""

        if not docs:
            return 0
        ops = [UpdateOne({"_id": d["_id"]}, {"$setOnInsert": _without_id(d)}, upsert=True) for d in docs]
        async with db_errors_as_transient("inventory materialize"):
            result = await self._col.bulk_write(ops, ordered=False)
        return int(len(result.upserted_ids or {}))

    async def iter_dirty(self, property_id: str, since: Optional[str] = None) -> AsyncIterator[Dict[str, Any]]:
        flt: Dict[str, Any] = {"property_id": property_id, "needs_sync": True}
        if since:
            flt["last_modified_at"] = {"$gte": since}
        cursor = self._col.find(flt).sort([("room_type_id", 1), ("date", 1)])
        async with db_errors_as_transient("inventory dirty scan"):
            async for doc in cursor:
                yield doc

    async def record_channel_push(self, doc_id: str, channel_entry: Dict[str, Any]) -> None:
        """Upsert the per-channel snapshot entry without touching the version."""

        channel = channel_entry["channel"]
        async with db_errors_as_transient("inventory write"):
            res = await self._col.update_one(
                {"_id": doc_id, "channel_inventory.channel": channel},
                {"$set": {"channel_inventory.$.last_push": channel_entry["last_push"]}},
            )
            if res.matched_count == 0:
                await self._col.update_one({"_id": doc_id}, {"$push": {"channel_inventory": channel_entry}})

    async def clear_needs_sync(self, doc_id: str, version: Optional[int]) -> bool:
        flt: Dict[str, Any] = {"_id": doc_id}
        if version is not None:
            flt["version"] = version
        async with db_errors_as_transient("inventory write"):
            res = await self._col.update_one(flt, {"$set": {"needs_sync": False}})
        return res.matched_count > 0

    async def archive_before(self, property_id: str, cutoff: str) -> int:
        flt = {"property_id": property_id, "date": {"$lt": cutoff}}
        async with db_errors_as_transient("inventory archive"):
            docs = await self._col.find(flt).to_list(length=None)
            if not docs:
                return 0
            ops = [UpdateOne({"_id": d["_id"]}, {"$set": _without_id(d)}, upsert=True) for d in docs]
            await self._archive.bulk_write(ops, ordered=False)
            res = await self._col.delete_many({"_id": {"$in": [d["_id"] for d in docs]}})
        return int(res.deleted_count)
