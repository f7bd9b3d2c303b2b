from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from app.domain.events import DomainEvent
from app.utils import iso_ts, new_id


logger = logging.getLogger("domain_events")


class EventOutbox:
    """Append-only `domain_events` collection read by the notifier.

    Publishing is fire-and-forget: a failed insert is logged and never breaks
    the business operation that produced the events.
    """

    def __init__(self, db) -> None:
        self.db = db

    async def publish(self, events: Iterable[DomainEvent]) -> int:
        docs: List[Dict[str, Any]] = []
        now = iso_ts()
        for ev in events:
            docs.append(
                {
                    "_id": new_id("evt"),
                    "type": ev.type,
                    "aggregate": {"type": ev.aggregate_type, "id": ev.aggregate_id},
                    "payload": ev.payload,
                    "created_at": now,
                    "status": "pending",
                }
            )
        if not docs:
            return 0

        try:
            await self.db.domain_events.insert_many(docs)
        except Exception:
            logger.exception("publish_events_failed types=%s", ",".join(d["type"] for d in docs))
            return 0
        return len(docs)

    async def list_events(
        self,
        *,
        aggregate_id: Optional[str] = None,
        type: Optional[str] = None,
        limit: int = 100,
    ) -> List[Dict[str, Any]]:
        flt: Dict[str, Any] = {}
        if aggregate_id:
            flt["aggregate.id"] = aggregate_id
        if type:
            flt["type"] = type
        return await self.db.domain_events.find(flt).sort("created_at", 1).to_list(length=limit)

    async def mark_dispatched(self, event_ids: List[str]) -> int:
        if not event_ids:
            return 0
        res = await self.db.domain_events.update_many(
            {"_id": {"$in": event_ids}},
            {"$set": {"status": "dispatched", "dispatched_at": iso_ts()}},
        )
        return int(res.modified_count)
