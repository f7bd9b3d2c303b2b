from __future__ import annotations

"""Inventory ledger: per-date room availability and rates.

Every record is keyed by (property, room type, date). Writers serialize on
an in-process lock per (property, room type) and additionally compare-and-set
on the record `version`, so writes from other processes are detected and
re-evaluated rather than lost.

Multi-date operations (reserve, block) are all-or-nothing: every date is
checked before anything is written, and if a write still fails midway the
already-applied dates are reverted before the result is returned.

Counters always satisfy:
    total_rooms = available_rooms + sold_rooms + blocked_rooms - overbooked_rooms
with available_rooms >= 0 and overbooked_rooms > 0 only when the property
allows overbooking.
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Union

from motor.motor_asyncio import AsyncIOMotorDatabase

from app.config import INVENTORY_HORIZON_DAYS, INVENTORY_MAX_CAS_RETRIES
from app.errors import (
    AppError,
    InsufficientInventory,
    NotFound,
    RestrictionViolation,
    StayViolation,
    TransientFailure,
    ValidationError,
)
from app.repositories.inventory_repository import InventoryRepository, record_id
from app.repositories.property_repository import PropertyRepository
from app.services.resilience import KeyedLocks
from app.utils import DateLike, date_range_yyyy_mm_dd, iso_ts, iter_days, new_id, to_date


logger = logging.getLogger(__name__)

# shared by every ledger instance in this process
_LEDGER_LOCKS = KeyedLocks()


# ---- Results ----


@dataclass(frozen=True)
class LedgerFailure:
    reason: str
    date: Optional[str]
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"reason": self.reason, "date": self.date, "message": self.message}


_FAILURE_ERRORS: Dict[str, Callable[[str, Dict[str, Any]], AppError]] = {
    "InsufficientInventory": InsufficientInventory,
    "NotMaterialized": InsufficientInventory,
    "StopSell": RestrictionViolation,
    "ClosedToArrival": RestrictionViolation,
    "ClosedToDeparture": RestrictionViolation,
    "BelowMinStay": StayViolation,
    "AboveMaxStay": StayViolation,
    "TransientFailure": TransientFailure,
}


@dataclass
class LedgerResult:
    ok: bool
    dates: List[str] = field(default_factory=list)
    failure: Optional[LedgerFailure] = None
    block_id: Optional[str] = None
    overbooked_dates: List[str] = field(default_factory=list)
    modified: int = 0

    def raise_for_failure(self) -> None:
        if self.ok or self.failure is None:
            return
        factory = _FAILURE_ERRORS.get(self.failure.reason, InsufficientInventory)
        raise factory(self.failure.message, {"date": self.failure.date, "reason": self.failure.reason})

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"ok": self.ok, "dates": list(self.dates), "modified": self.modified}
        if self.failure is not None:
            out["failure"] = self.failure.to_dict()
        if self.block_id:
            out["block_id"] = self.block_id
        if self.overbooked_dates:
            out["overbooked_dates"] = list(self.overbooked_dates)
        return out


@dataclass
class ReservationResult(LedgerResult):
    booking_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out = super().to_dict()
        out["booking_id"] = self.booking_id
        return out


@dataclass(frozen=True)
class SyncSnapshot:
    """What an outbound adapter needs to publish one dirty record."""

    property_id: str
    room_type_id: str
    date: str
    available_rooms: int
    selling_rate: Optional[float]
    currency: Optional[str]
    stop_sell: bool
    closed_to_arrival: bool
    closed_to_departure: bool
    minimum_stay: int
    maximum_stay: int
    version: int

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.__dict__)


# ---- Counter helpers ----


def derive_counts(total: int, sold: int, blocked: int) -> Dict[str, int]:
    free = total - sold - blocked
    return {
        "available_rooms": max(free, 0),
        "overbooked_rooms": max(-free, 0),
    }


def _fail(reason: str, day: Optional[str], message: str) -> LedgerFailure:
    return LedgerFailure(reason=reason, date=day, message=message)


_Mutation = Callable[[Dict[str, Any]], Union[Dict[str, Any], LedgerFailure, None]]


class InventoryLedger:
    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        *,
        locks: Optional[KeyedLocks] = None,
        max_cas_retries: int = INVENTORY_MAX_CAS_RETRIES,
    ) -> None:
        self.db = db
        self._repo = InventoryRepository(db)
        self._properties = PropertyRepository(db)
        self._locks = locks or _LEDGER_LOCKS
        self._max_cas_retries = max(1, max_cas_retries)

    # ---- internal write loop ----

    async def _apply(self, doc: Dict[str, Any], mutate: _Mutation) -> Union[Dict[str, Any], LedgerFailure, None]:
        """Compare-and-set `mutate(doc)` onto the record, re-reading on contention.

        `mutate` returns a Mongo update, a LedgerFailure (the re-read state no
        longer allows the change) or None (nothing to do).
        """

        current: Optional[Dict[str, Any]] = doc
        for _ in range(self._max_cas_retries):
            if current is None:
                return _fail("NotMaterialized", doc.get("date"), "inventory record disappeared")
            update = mutate(current)
            if update is None or isinstance(update, LedgerFailure):
                return update if update is not None else current
            updated = await self._repo.compare_and_set(current["_id"], int(current.get("version") or 0), update)
            if updated is not None:
                return updated
            logger.debug("inventory version conflict on %s; re-reading", current["_id"])
            current = await self._repo.get_by_id(current["_id"])
        raise TransientFailure(
            "inventory record under contention",
            details={"record": doc.get("_id"), "attempts": self._max_cas_retries},
        )

    async def _revert_all(self, doc_ids: List[str], revert: _Mutation, label: str) -> None:
        for doc_id in doc_ids:
            try:
                doc = await self._repo.get_by_id(doc_id)
                if doc is not None:
                    await self._apply(doc, revert)
            except TransientFailure:
                logger.exception("inventory compensation failed for %s (%s)", doc_id, label)

    async def _overbooking_allowance(self, property_id: str, source: str) -> int:
        cfg = await self._properties.overbooking_settings(property_id)
        if not cfg.get("enabled"):
            return 0
        if source != "direct" and not cfg.get("allow_channel"):
            return 0
        return max(int(cfg.get("limit") or 0), 0)

    # ---- reservations ----

    async def reserve(
        self,
        property_id: str,
        room_type_id: str,
        check_in: DateLike,
        check_out: DateLike,
        rooms: int,
        booking_id: str,
        source: str = "direct",
    ) -> ReservationResult:
        if rooms < 1:
            raise ValidationError("rooms must be >= 1", {"rooms": rooms})
        ci = to_date(check_in)
        co = to_date(check_out)
        if co <= ci:
            raise ValidationError("check_out must be after check_in", {"check_in": ci.isoformat(), "check_out": co.isoformat()})

        nights = date_range_yyyy_mm_dd(ci, co)
        checkout_day = co.isoformat()

        async with self._locks.hold((property_id, room_type_id)):
            records = await self._repo.get_days(property_id, room_type_id, nights + [checkout_day])
            allowance = await self._overbooking_allowance(property_id, source)

            failure = self._precheck_reservation(records, nights, checkout_day, rooms, booking_id, allowance)
            if failure is not None:
                logger.info(
                    "reserve rejected booking=%s %s/%s %s: %s",
                    booking_id, property_id, room_type_id, failure.date, failure.reason,
                )
                return ReservationResult(ok=False, failure=failure, booking_id=booking_id)

            reserved_at = iso_ts()

            def add_line(doc: Dict[str, Any]) -> Union[Dict[str, Any], LedgerFailure, None]:
                if any(r.get("booking_id") == booking_id for r in doc.get("reservations") or []):
                    return None
                blocked_reason = self._sellable(doc, rooms, allowance)
                if blocked_reason is not None:
                    return blocked_reason
                sold = int(doc.get("sold_rooms") or 0) + rooms
                counts = derive_counts(int(doc.get("total_rooms") or 0), sold, int(doc.get("blocked_rooms") or 0))
                line = {"booking_id": booking_id, "rooms_reserved": rooms, "source": source, "reserved_at": reserved_at}
                return {
                    "$set": {**counts, "sold_rooms": sold, "needs_sync": True, "last_modified_at": reserved_at},
                    "$push": {"reservations": line},
                }

            applied: List[str] = []
            overbooked: List[str] = []
            failure = None
            try:
                for day in nights:
                    if any(r.get("booking_id") == booking_id for r in records[day].get("reservations") or []):
                        continue
                    outcome = await self._apply(records[day], add_line)
                    if isinstance(outcome, LedgerFailure):
                        failure = outcome
                        break
                    applied.append(record_id(property_id, room_type_id, day))
                    if outcome is not None and int(outcome.get("overbooked_rooms") or 0) > 0:
                        overbooked.append(day)
            except TransientFailure as exc:
                failure = _fail("TransientFailure", None, exc.message)

            if failure is not None:
                await self._revert_all(applied, self._remove_booking_line(booking_id), f"reserve {booking_id}")
                logger.warning("reserve rolled back booking=%s after %s", booking_id, failure.reason)
                return ReservationResult(ok=False, failure=failure, booking_id=booking_id)

        logger.info(
            "reserved booking=%s %s/%s %s..%s rooms=%d source=%s",
            booking_id, property_id, room_type_id, nights[0], nights[-1], rooms, source,
        )
        return ReservationResult(ok=True, dates=nights, booking_id=booking_id, overbooked_dates=overbooked)

    def _precheck_reservation(
        self,
        records: Dict[str, Dict[str, Any]],
        nights: List[str],
        checkout_day: str,
        rooms: int,
        booking_id: str,
        allowance: int,
    ) -> Optional[LedgerFailure]:
        for day in nights:
            if day not in records:
                return _fail("NotMaterialized", day, f"no inventory for {day}")

        arrival = records[nights[0]]
        if arrival.get("closed_to_arrival"):
            return _fail("ClosedToArrival", nights[0], f"closed to arrival on {nights[0]}")
        departure = records.get(checkout_day)
        if departure is not None and departure.get("closed_to_departure"):
            return _fail("ClosedToDeparture", checkout_day, f"closed to departure on {checkout_day}")

        length = len(nights)
        min_stay = int(arrival.get("minimum_stay") or 1)
        max_stay = int(arrival.get("maximum_stay") or 0)
        if length < min_stay:
            return _fail("BelowMinStay", nights[0], f"minimum stay is {min_stay} nights")
        if max_stay and length > max_stay:
            return _fail("AboveMaxStay", nights[0], f"maximum stay is {max_stay} nights")

        for day in nights:
            doc = records[day]
            if any(r.get("booking_id") == booking_id for r in doc.get("reservations") or []):
                continue
            blocked_reason = self._sellable(doc, rooms, allowance)
            if blocked_reason is not None:
                return blocked_reason
        return None

    @staticmethod
    def _sellable(doc: Dict[str, Any], rooms: int, allowance: int) -> Optional[LedgerFailure]:
        day = doc.get("date")
        if doc.get("stop_sell"):
            return _fail("StopSell", day, f"stop sell on {day}")
        total = int(doc.get("total_rooms") or 0)
        committed = int(doc.get("sold_rooms") or 0) + int(doc.get("blocked_rooms") or 0)
        if committed + rooms > total + allowance:
            free = max(total - committed, 0)
            return _fail("InsufficientInventory", day, f"only {free} rooms available on {day}")
        return None

    @staticmethod
    def _remove_booking_line(booking_id: str) -> _Mutation:
        def revert(doc: Dict[str, Any]) -> Optional[Dict[str, Any]]:
            lines = [r for r in doc.get("reservations") or [] if r.get("booking_id") == booking_id]
            if not lines:
                return None
            freed = sum(int(r.get("rooms_reserved") or 0) for r in lines)
            sold = max(int(doc.get("sold_rooms") or 0) - freed, 0)
            counts = derive_counts(int(doc.get("total_rooms") or 0), sold, int(doc.get("blocked_rooms") or 0))
            return {
                "$set": {**counts, "sold_rooms": sold, "needs_sync": True, "last_modified_at": iso_ts()},
                "$pull": {"reservations": {"booking_id": booking_id}},
            }

        return revert

    async def release(self, booking_id: str) -> ReservationResult:
        """Return every room held by `booking_id`. Releasing twice is a no-op."""

        docs = await self._repo.find_by_booking(booking_id)
        released: List[str] = []
        revert = self._remove_booking_line(booking_id)
        for doc in docs:
            async with self._locks.hold((doc["property_id"], doc["room_type_id"])):
                fresh = await self._repo.get_by_id(doc["_id"])
                if fresh is None:
                    continue
                outcome = await self._apply(fresh, revert)
                if isinstance(outcome, dict):
                    released.append(doc["date"])
        if released:
            logger.info("released booking=%s dates=%s", booking_id, ",".join(released))
        return ReservationResult(ok=True, dates=released, booking_id=booking_id)

    # ---- blocks ----

    async def block(
        self,
        property_id: str,
        room_type_id: str,
        start: DateLike,
        end: DateLike,
        rooms: int,
        reason: str = "",
    ) -> LedgerResult:
        """Hold `rooms` out of sale on every day in [start, end]. Blocks never overbook."""

        if rooms < 1:
            raise ValidationError("rooms must be >= 1", {"rooms": rooms})
        days = self._range(start, end)
        block_id = new_id("blk")

        async with self._locks.hold((property_id, room_type_id)):
            records = await self._repo.get_days(property_id, room_type_id, days)
            for day in days:
                if day not in records:
                    return LedgerResult(ok=False, failure=_fail("NotMaterialized", day, f"no inventory for {day}"))
                blocked_reason = self._sellable(records[day], rooms, 0)
                if blocked_reason is not None and blocked_reason.reason == "InsufficientInventory":
                    return LedgerResult(ok=False, failure=blocked_reason)

            created_at = iso_ts()

            def add_block(doc: Dict[str, Any]) -> Union[Dict[str, Any], LedgerFailure]:
                total = int(doc.get("total_rooms") or 0)
                sold = int(doc.get("sold_rooms") or 0)
                blocked = int(doc.get("blocked_rooms") or 0) + rooms
                if sold + blocked > total:
                    return _fail("InsufficientInventory", doc.get("date"), f"cannot block {rooms} rooms on {doc.get('date')}")
                return {
                    "$set": {**derive_counts(total, sold, blocked), "blocked_rooms": blocked, "needs_sync": True, "last_modified_at": created_at},
                    "$push": {"blocks": {"block_id": block_id, "rooms": rooms, "reason": reason, "created_at": created_at}},
                }

            applied: List[str] = []
            failure: Optional[LedgerFailure] = None
            try:
                for day in days:
                    outcome = await self._apply(records[day], add_block)
                    if isinstance(outcome, LedgerFailure):
                        failure = outcome
                        break
                    applied.append(record_id(property_id, room_type_id, day))
            except TransientFailure as exc:
                failure = _fail("TransientFailure", None, exc.message)

            if failure is not None:
                await self._revert_all(applied, self._remove_block(block_id), f"block {block_id}")
                return LedgerResult(ok=False, failure=failure)

        logger.info("blocked %s/%s %s..%s rooms=%d block=%s", property_id, room_type_id, days[0], days[-1], rooms, block_id)
        return LedgerResult(ok=True, dates=days, block_id=block_id)

    @staticmethod
    def _remove_block(block_id: str) -> _Mutation:
        def revert(doc: Dict[str, Any]) -> Optional[Dict[str, Any]]:
            entries = [b for b in doc.get("blocks") or [] if b.get("block_id") == block_id]
            if not entries:
                return None
            freed = sum(int(b.get("rooms") or 0) for b in entries)
            blocked = max(int(doc.get("blocked_rooms") or 0) - freed, 0)
            counts = derive_counts(int(doc.get("total_rooms") or 0), int(doc.get("sold_rooms") or 0), blocked)
            return {
                "$set": {**counts, "blocked_rooms": blocked, "needs_sync": True, "last_modified_at": iso_ts()},
                "$pull": {"blocks": {"block_id": block_id}},
            }

        return revert

    async def unblock(self, block_id: str) -> LedgerResult:
        docs = await self._repo.find_by_block(block_id)
        if not docs:
            raise NotFound("block not found", {"block_id": block_id})
        released: List[str] = []
        revert = self._remove_block(block_id)
        for doc in docs:
            async with self._locks.hold((doc["property_id"], doc["room_type_id"])):
                fresh = await self._repo.get_by_id(doc["_id"])
                if fresh is not None and isinstance(await self._apply(fresh, revert), dict):
                    released.append(doc["date"])
        return LedgerResult(ok=True, dates=released, block_id=block_id)

    # ---- rates and restrictions ----

    async def set_rates(
        self,
        property_id: str,
        room_type_id: str,
        start: DateLike,
        end: DateLike,
        base_rate: float,
        selling_rate: float,
        currency: str,
    ) -> LedgerResult:
        if base_rate < 0 or selling_rate < 0:
            raise ValidationError("rates must be >= 0", {"base_rate": base_rate, "selling_rate": selling_rate})
        days = self._range(start, end)
        fields = {
            "base_rate": float(base_rate),
            "selling_rate": float(selling_rate),
            "currency": currency,
            "needs_sync": True,
            "last_modified_at": iso_ts(),
        }
        async with self._locks.hold((property_id, room_type_id)):
            modified = await self._repo.update_range(property_id, [room_type_id], days[0], days[-1], fields)
        logger.info("set rates %s/%s %s..%s selling=%s %s (%d records)", property_id, room_type_id, days[0], days[-1], selling_rate, currency, modified)
        return LedgerResult(ok=True, dates=days, modified=modified)

    async def set_restrictions(
        self,
        property_id: str,
        room_type_id: str,
        start: DateLike,
        end: DateLike,
        *,
        stop_sell: Optional[bool] = None,
        closed_to_arrival: Optional[bool] = None,
        closed_to_departure: Optional[bool] = None,
        minimum_stay: Optional[int] = None,
        maximum_stay: Optional[int] = None,
    ) -> LedgerResult:
        if minimum_stay is not None and minimum_stay < 1:
            raise ValidationError("minimum_stay must be >= 1")
        if minimum_stay is not None and maximum_stay is not None and minimum_stay > maximum_stay:
            raise ValidationError("minimum_stay must be <= maximum_stay")
        days = self._range(start, end)
        changes = {
            "stop_sell": stop_sell,
            "closed_to_arrival": closed_to_arrival,
            "closed_to_departure": closed_to_departure,
            "minimum_stay": minimum_stay,
            "maximum_stay": maximum_stay,
        }
        fields: Dict[str, Any] = {k: v for k, v in changes.items() if v is not None}
        if not fields:
            return LedgerResult(ok=True, dates=days)
        fields.update({"needs_sync": True, "last_modified_at": iso_ts()})
        async with self._locks.hold((property_id, room_type_id)):
            modified = await self._repo.update_range(property_id, [room_type_id], days[0], days[-1], fields)
        return LedgerResult(ok=True, dates=days, modified=modified)

    # ---- channel sync ----

    async def mark_dirty(
        self,
        property_id: str,
        room_type_ids: Optional[List[str]],
        start: DateLike,
        end: DateLike,
    ) -> int:
        days = self._range(start, end)
        return await self._repo.update_range(
            property_id,
            room_type_ids,
            days[0],
            days[-1],
            {"needs_sync": True, "last_modified_at": iso_ts()},
        )

    async def snapshot_for_sync(self, property_id: str, since: Optional[str] = None) -> AsyncIterator[SyncSnapshot]:
        """Lazily yield dirty records; callers acknowledge each with clear_dirty."""

        async for doc in self._repo.iter_dirty(property_id, since):
            yield SyncSnapshot(
                property_id=doc["property_id"],
                room_type_id=doc["room_type_id"],
                date=doc["date"],
                available_rooms=int(doc.get("available_rooms") or 0),
                selling_rate=doc.get("selling_rate"),
                currency=doc.get("currency"),
                stop_sell=bool(doc.get("stop_sell")),
                closed_to_arrival=bool(doc.get("closed_to_arrival")),
                closed_to_departure=bool(doc.get("closed_to_departure")),
                minimum_stay=int(doc.get("minimum_stay") or 1),
                maximum_stay=int(doc.get("maximum_stay") or 0),
                version=int(doc.get("version") or 0),
            )

    async def clear_dirty(
        self,
        property_id: str,
        room_type_id: str,
        day: DateLike,
        channel_id: str,
        *,
        version: Optional[int] = None,
    ) -> bool:
        """Record the channel acknowledgement and clear needs_sync.

        When `version` is given the flag is only cleared if the record has not
        been written since that snapshot; a racing write keeps it dirty.
        """

        day_str = to_date(day).isoformat()
        doc = await self._repo.get(property_id, room_type_id, day_str)
        if doc is None:
            raise NotFound("inventory record not found", {"property_id": property_id, "room_type_id": room_type_id, "date": day_str})
        await self._repo.record_channel_push(
            doc["_id"],
            {
                "channel": channel_id,
                "last_push": {
                    "available_rooms": doc.get("available_rooms"),
                    "selling_rate": doc.get("selling_rate"),
                    "stop_sell": bool(doc.get("stop_sell")),
                    "version": version if version is not None else doc.get("version"),
                    "synced_at": iso_ts(),
                },
            },
        )
        cleared = await self._repo.clear_needs_sync(doc["_id"], version)
        if not cleared:
            logger.info("clear_dirty skipped for %s: record changed after push", doc["_id"])
        return cleared

    # ---- reads / lifecycle ----

    async def get_availability(
        self,
        property_id: str,
        room_type_id: Optional[str],
        start: DateLike,
        end: DateLike,
        channel: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        days = self._range(start, end)
        docs = await self._repo.list_range(property_id, room_type_id, days[0], days[-1])
        out: List[Dict[str, Any]] = []
        for doc in docs:
            row = {
                "property_id": doc["property_id"],
                "room_type_id": doc["room_type_id"],
                "date": doc["date"],
                "total_rooms": int(doc.get("total_rooms") or 0),
                "sold_rooms": int(doc.get("sold_rooms") or 0),
                "blocked_rooms": int(doc.get("blocked_rooms") or 0),
                "overbooked_rooms": int(doc.get("overbooked_rooms") or 0),
                "available_rooms": int(doc.get("available_rooms") or 0),
                "base_rate": doc.get("base_rate"),
                "selling_rate": doc.get("selling_rate"),
                "currency": doc.get("currency"),
                "stop_sell": bool(doc.get("stop_sell")),
                "closed_to_arrival": bool(doc.get("closed_to_arrival")),
                "closed_to_departure": bool(doc.get("closed_to_departure")),
                "minimum_stay": doc.get("minimum_stay"),
                "maximum_stay": doc.get("maximum_stay"),
                "needs_sync": bool(doc.get("needs_sync")),
            }
            if channel:
                self._apply_channel_override(row, doc, channel)
            out.append(row)
        return out

    @staticmethod
    def _apply_channel_override(row: Dict[str, Any], doc: Dict[str, Any], channel: str) -> None:
        for entry in doc.get("channel_inventory") or []:
            if entry.get("channel") != channel:
                continue
            allocation = entry.get("available_rooms")
            if allocation is not None:
                row["available_rooms"] = min(row["available_rooms"], int(allocation))
            if entry.get("selling_rate") is not None:
                row["selling_rate"] = entry["selling_rate"]
            if entry.get("stop_sell"):
                row["stop_sell"] = True
            if entry.get("closed_to_arrival"):
                row["closed_to_arrival"] = True
            row["channel"] = channel
            return

    async def materialize(
        self,
        property_id: str,
        room_type_id: str,
        from_date: DateLike,
        horizon_days: Optional[int] = None,
    ) -> int:
        """Create missing records for [from_date, from_date + horizon) from room type defaults."""

        room_type = await self._properties.get_room_type(room_type_id)
        if not room_type or room_type.get("property_id") != property_id:
            raise NotFound("room type not found", {"property_id": property_id, "room_type_id": room_type_id})

        horizon = horizon_days if horizon_days is not None else INVENTORY_HORIZON_DAYS
        if horizon < 1:
            raise ValidationError("horizon_days must be >= 1", {"horizon_days": horizon})
        start = to_date(from_date)
        now = iso_ts()
        total = int(room_type.get("total_rooms") or 0)

        docs: List[Dict[str, Any]] = []
        for offset in range(horizon):
            day = (start + timedelta(days=offset)).isoformat()
            docs.append(
                {
                    "_id": record_id(property_id, room_type_id, day),
                    "property_id": property_id,
                    "room_type_id": room_type_id,
                    "date": day,
                    "total_rooms": total,
                    "sold_rooms": 0,
                    "blocked_rooms": 0,
                    **derive_counts(total, 0, 0),
                    "base_rate": room_type.get("base_rate"),
                    "selling_rate": room_type.get("base_rate"),
                    "currency": room_type.get("currency"),
                    "stop_sell": False,
                    "closed_to_arrival": False,
                    "closed_to_departure": False,
                    "minimum_stay": 1,
                    "maximum_stay": 30,
                    "needs_sync": True,
                    "channel_inventory": [],
                    "reservations": [],
                    "blocks": [],
                    "version": 1,
                    "created_at": now,
                    "last_modified_at": now,
                }
            )
        created = await self._repo.insert_missing(docs)
        logger.info("materialized %s/%s from %s: %d new records", property_id, room_type_id, start.isoformat(), created)
        return created

    async def archive_before(self, property_id: str, cutoff: DateLike) -> int:
        moved = await self._repo.archive_before(property_id, to_date(cutoff).isoformat())
        if moved:
            logger.info("archived %d inventory records of %s before %s", moved, property_id, to_date(cutoff).isoformat())
        return moved

    @staticmethod
    def _range(start: DateLike, end: DateLike) -> List[str]:
        days = [d.isoformat() for d in iter_days(start, end)]
        if not days:
            raise ValidationError("end must not precede start", {"start": str(start), "end": str(end)})
        return days
