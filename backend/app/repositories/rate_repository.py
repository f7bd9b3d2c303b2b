from __future__ import annotations

from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from app.repositories.base_repository import get_collection
from app.schemas_rates import CentralizedRate, DistributionSettings, PropertyRate
from app.services.resilience import db_errors_as_transient
from app.utils import now_utc


class RateRepository:
    """Persistence for centralized rates.

    Whole-document writes are compare-and-set on `revision`; per-property
    sync rows are written individually so one target's failure does not
    touch its siblings.
    """

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db
        self._col = get_collection(db, "centralized_rates")

    async def insert(self, rate: CentralizedRate) -> CentralizedRate:
        rate.revision = 0
        async with db_errors_as_transient("rate insert"):
            await self._col.insert_one(rate.to_doc())
        return rate

    async def get(self, rate_id: str) -> Optional[CentralizedRate]:
        async with db_errors_as_transient("rate read"):
            doc = await self._col.find_one({"_id": rate_id})
        if not doc:
            return None
        return CentralizedRate.model_validate(doc)

    async def list(
        self,
        *,
        group_id: Optional[str] = None,
        rate_type: Optional[str] = None,
        status: Optional[str] = None,
        active_only: bool = True,
        property_id: Optional[str] = None,
        limit: int = 500,
    ) -> List[CentralizedRate]:
        flt: Dict[str, Any] = {}
        if group_id:
            flt["property_group.group_id"] = group_id
        if rate_type:
            flt["rate_type"] = rate_type
        if status:
            flt["approval_status"] = status
        if active_only:
            flt["is_active"] = True
        if property_id:
            flt["property_group.properties"] = property_id

        async with db_errors_as_transient("rate list"):
            docs = await self._col.find(flt).sort("created_at", 1).to_list(length=limit)
        return [CentralizedRate.model_validate(d) for d in docs]

    async def replace(self, rate: CentralizedRate) -> bool:
        """Write the full document if nobody else wrote since it was read.

        On success `rate.revision` is advanced in place.
        """

        expected = rate.revision
        doc = rate.to_doc()
        doc["revision"] = expected + 1
        async with db_errors_as_transient("rate write"):
            res = await self._col.replace_one({"_id": rate.rate_id, "revision": expected}, doc)
        if res.matched_count == 0:
            return False
        rate.revision = expected + 1
        return True

    async def upsert_property_row(self, rate_id: str, row: PropertyRate) -> None:
        payload = row.model_dump(mode="json")
        async with db_errors_as_transient(f"sync row write for {row.property_id}"):
            res = await self._col.update_one(
                {"_id": rate_id, "per_property_rates.property_id": row.property_id},
                {"$set": {"per_property_rates.$": payload}, "$inc": {"revision": 1}},
            )
            if res.matched_count == 0:
                await self._col.update_one(
                    {"_id": rate_id},
                    {"$push": {"per_property_rates": payload}, "$inc": {"revision": 1}},
                )

    async def set_distribution_state(
        self,
        rate_id: str,
        settings: DistributionSettings,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        updates: Dict[str, Any] = {
            "distribution_settings": settings.model_dump(mode="json"),
            "updated_at": now_utc().isoformat(),
        }
        if extra:
            updates.update(extra)
        async with db_errors_as_transient("distribution state write"):
            await self._col.update_one({"_id": rate_id}, {"$set": updates, "$inc": {"revision": 1}})

    async def delete(self, rate_id: str) -> bool:
        async with db_errors_as_transient("rate delete"):
            res = await self._col.delete_one({"_id": rate_id})
        return res.deleted_count > 0
