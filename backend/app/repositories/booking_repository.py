from __future__ import annotations

from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from app.repositories.base_repository import get_collection
from app.services.resilience import db_errors_as_transient
from app.utils import iso_ts


class BookingRepository:
    """Bookings collection.

    `(source, external_booking_id)` is unique when the external id is present;
    a duplicate insert surfaces as pymongo's DuplicateKeyError.
    """

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db
        self._col = get_collection(db, "bookings")

    async def insert(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        now = iso_ts()
        doc.setdefault("created_at", now)
        doc["updated_at"] = now
        async with db_errors_as_transient("booking insert"):
            await self._col.insert_one(doc)
        return doc

    async def get(self, booking_id: str) -> Optional[Dict[str, Any]]:
        async with db_errors_as_transient("booking read"):
            return await self._col.find_one({"_id": booking_id})

    async def find_external(self, source: str, external_booking_id: str) -> Optional[Dict[str, Any]]:
        async with db_errors_as_transient("booking read"):
            return await self._col.find_one({"source": source, "external_booking_id": external_booking_id})

    async def update(self, booking_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Apply `$set` updates and return the document after the write."""

        payload = dict(updates)
        payload["updated_at"] = iso_ts()
        async with db_errors_as_transient("booking update"):
            return await self._col.find_one_and_update(
                {"_id": booking_id},
                {"$set": payload},
                return_document=ReturnDocument.AFTER,
            )

    async def list_for_property(
        self,
        property_id: str,
        *,
        status: Optional[str] = None,
        limit: int = 100,
    ) -> List[Dict[str, Any]]:
        flt: Dict[str, Any] = {"property_id": property_id}
        if status:
            flt["status"] = status
        async with db_errors_as_transient("booking list"):
            cursor = self._col.find(flt).sort("created_at", -1).limit(limit)
            return await cursor.to_list(length=limit)
