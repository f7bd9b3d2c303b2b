from __future__ import annotations

"""Booking consumer.

Direct bookings and channel webhook reservations share one path: resolve the
room type, price through the quote service, reserve through the inventory
ledger, persist the booking. The ledger marks every touched date dirty, so
the outbound channel sync republishes corrected availability without any
extra signal from here.

Channel-originated bookings are idempotent by (source, external_booking_id):
a redelivered new_booking returns the existing booking, a repeated
cancellation is a no-op.
"""

import logging
from datetime import date
from typing import Any, Dict, Optional, Tuple

from pymongo.errors import DuplicateKeyError

from app.domain.events import booking_events
from app.domain.rate_calculator import Priced, Unavailable, UnavailableReason, QuoteResult, to_decimal
from app.errors import (
    AppError,
    NotFound,
    RestrictionViolation,
    StateViolation,
    StayViolation,
    ValidationError,
)
from app.repositories.booking_repository import BookingRepository
from app.repositories.property_repository import PropertyRepository
from app.schemas_bookings import BookingCreateIn
from app.services.audit import write_audit_log
from app.services.channels.normalizer import build_mapping_dicts, normalize_reservation
from app.services.channels.types import InboundReservation
from app.services.event_outbox import EventOutbox
from app.services.fx import CurrencyConverter
from app.services.inventory_ledger import InventoryLedger
from app.services.quote_service import QuoteService
from app.services.resilience import KeyedLocks
from app.utils import iso_ts, new_id, now_utc, serialize_doc, to_date


logger = logging.getLogger(__name__)

_BOOKING_LOCKS = KeyedLocks()

_STAY_REASONS = {UnavailableReason.BELOW_MIN_STAY, UnavailableReason.ABOVE_MAX_STAY}
_RESTRICTION_REASONS = {
    UnavailableReason.CLOSED_TO_ARRIVAL,
    UnavailableReason.CLOSED_TO_DEPARTURE,
    UnavailableReason.ROOM_TYPE_STOP_SALE,
}


def quote_error(result: Unavailable) -> AppError:
    details = {"reason": result.reason.value}
    if result.reason in _STAY_REASONS:
        return StayViolation(result.message or "stay length not allowed", details)
    if result.reason in _RESTRICTION_REASONS:
        return RestrictionViolation(result.message or "stay is restricted", details)
    return StateViolation(result.message or "rate is not bookable for this stay", details)


class BookingConsumer:
    def __init__(
        self,
        db,
        *,
        ledger: Optional[InventoryLedger] = None,
        quotes: Optional[QuoteService] = None,
        converter: Optional[CurrencyConverter] = None,
        outbox: Optional[EventOutbox] = None,
    ) -> None:
        self.db = db
        self._bookings = BookingRepository(db)
        self._properties = PropertyRepository(db)
        self._ledger = ledger or InventoryLedger(db)
        self._quotes = quotes or QuoteService(db)
        self._converter = converter
        self._outbox = outbox or EventOutbox(db)

    async def get_booking(self, booking_id: str) -> Dict[str, Any]:
        doc = await self._bookings.get(booking_id)
        if not doc:
            raise NotFound("booking not found", {"booking_id": booking_id})
        return serialize_doc(doc)

    async def _record(self, action: str, before: Optional[Dict[str, Any]], after: Dict[str, Any], actor, meta=None) -> None:
        await write_audit_log(
            self.db,
            actor=actor,
            action=action,
            target_type="booking",
            target_id=after["_id"],
            before=before,
            after=after,
            meta=meta,
        )
        await self._outbox.publish(booking_events(before, after))

    async def _room_type(self, property_id: str, room_type_id: str) -> Dict[str, Any]:
        room_type = await self._properties.get_room_type(room_type_id)
        if not room_type or room_type.get("property_id") != property_id:
            raise NotFound("room type not found for property", {"property_id": property_id, "room_type_id": room_type_id})
        return room_type

    # ---- direct ----

    async def create_direct_booking(self, payload: BookingCreateIn, actor: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        await self._room_type(payload.property_id, payload.room_type_id)
        guests = payload.guests.adults + payload.guests.children

        result = await self._quotes.quote(
            payload.rate_id,
            payload.property_id,
            payload.room_type_id,
            payload.check_in,
            payload.check_out,
            guests,
            payload.channel,
        )
        if isinstance(result, Unavailable):
            raise quote_error(result)

        booking_id = new_id("bk")
        reservation = await self._ledger.reserve(
            payload.property_id,
            payload.room_type_id,
            payload.check_in,
            payload.check_out,
            payload.rooms,
            booking_id,
            source="direct",
        )
        reservation.raise_for_failure()

        doc: Dict[str, Any] = {
            "_id": booking_id,
            "property_id": payload.property_id,
            "room_type_id": payload.room_type_id,
            "rate_id": payload.rate_id,
            "check_in": payload.check_in.isoformat(),
            "check_out": payload.check_out.isoformat(),
            "rooms": payload.rooms,
            "guests": payload.guests.model_dump(),
            "source": "direct",
            "status": "confirmed",
            "pricing": {"channel": None, "quote": result.to_dict(), "currency_mismatch": False},
            "total_amount": float(result.total_before_tax) * payload.rooms,
            "currency": result.currency,
            "inventory_dates": reservation.dates,
            "special_requests": payload.special_requests,
            "created_by": (actor or {}).get("user_id"),
        }
        try:
            await self._bookings.insert(doc)
        except AppError:
            await self._ledger.release(booking_id)
            raise

        logger.info(
            "booking created id=%s source=direct %s/%s %s..%s rooms=%d",
            booking_id, payload.property_id, payload.room_type_id, doc["check_in"], doc["check_out"], payload.rooms,
        )
        await self._record("booking.created", None, doc, actor)
        return serialize_doc(doc)

    async def cancel_booking(self, booking_id: str, actor: Optional[Dict[str, Any]] = None, reason: Optional[str] = None) -> Dict[str, Any]:
        async with _BOOKING_LOCKS.hold(booking_id):
            doc = await self._bookings.get(booking_id)
            if not doc:
                raise NotFound("booking not found", {"booking_id": booking_id})
            if doc.get("status") == "cancelled":
                return serialize_doc(doc)
            return serialize_doc(await self._cancel(doc, actor, reason))

    async def _cancel(self, doc: Dict[str, Any], actor, reason: Optional[str]) -> Dict[str, Any]:
        released = await self._ledger.release(doc["_id"])
        after = await self._bookings.update(
            doc["_id"],
            {"status": "cancelled", "cancelled_at": iso_ts(), "cancellation_reason": reason},
        )
        if after is None:
            raise NotFound("booking not found", {"booking_id": doc["_id"]})
        logger.info("booking cancelled id=%s source=%s released=%d dates", doc["_id"], doc.get("source"), len(released.dates))
        await self._record("booking.cancelled", doc, after, actor, {"released_dates": released.dates})
        return after

    # ---- channel webhook ----

    async def handle_incoming_reservation(self, channel_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        reservation = normalize_reservation(payload)
        key = ("external", channel_id, reservation.external_booking_id)

        async with _BOOKING_LOCKS.hold(key):
            existing = await self._bookings.find_external(channel_id, reservation.external_booking_id)

            if reservation.type == "new_booking":
                if existing:
                    logger.info("duplicate delivery %s/%s ignored", channel_id, reservation.external_booking_id)
                    return {"status": "duplicate", "booking": serialize_doc(existing)}
                created = await self._create_from_channel(channel_id, reservation)
                return {"status": "created", "booking": serialize_doc(created)}

            if not existing:
                raise NotFound(
                    "booking not found for channel reservation",
                    {"channel_id": channel_id, "external_booking_id": reservation.external_booking_id},
                )

            async with _BOOKING_LOCKS.hold(existing["_id"]):
                existing = await self._bookings.get(existing["_id"]) or existing
                if reservation.type == "cancellation":
                    if existing.get("status") == "cancelled":
                        return {"status": "unchanged", "booking": serialize_doc(existing)}
                    cancelled = await self._cancel(existing, None, "cancelled by channel")
                    return {"status": "cancelled", "booking": serialize_doc(cancelled)}

                status, doc = await self._modify(channel_id, existing, reservation)
                return {"status": status, "booking": serialize_doc(doc)}

    async def _resolve_room(self, channel_id: str, external_room_type_id: Optional[str]) -> Tuple[Dict[str, Any], str]:
        if not external_room_type_id:
            raise ValidationError("externalRoomTypeId is required")
        connection = await self._properties.find_connection_for_room(channel_id, str(external_room_type_id))
        if not connection:
            raise NotFound(
                "no channel mapping for room type",
                {"channel_id": channel_id, "external_room_type_id": external_room_type_id},
            )
        room_map, _ = build_mapping_dicts(connection)
        return connection, room_map[str(external_room_type_id)]

    async def _channel_pricing(
        self,
        channel_id: str,
        connection: Dict[str, Any],
        reservation: InboundReservation,
        room_type_id: str,
        check_in: date,
        check_out: date,
    ) -> Dict[str, Any]:
        """Informational quote recorded next to what the channel charged."""

        _, rate_map = build_mapping_dicts(connection)
        rate_id = rate_map.get(str(reservation.external_rate_plan_id or "")) or connection.get("default_rate_id")
        pricing: Dict[str, Any] = {
            "channel": {
                "rate": reservation.rate,
                "total_amount": reservation.total_amount,
                "currency": reservation.currency,
            },
            "quote": None,
            "currency_mismatch": False,
        }
        if not rate_id:
            return pricing

        try:
            result: QuoteResult = await self._quotes.quote(
                rate_id,
                connection["property_id"],
                room_type_id,
                check_in,
                check_out,
                max(reservation.adults + reservation.children, 1),
                channel_id,
            )
        except NotFound:
            logger.warning("channel %s maps to missing rate %s", channel_id, rate_id)
            return pricing

        pricing["rate_id"] = rate_id
        pricing["quote"] = result.to_dict()
        if not isinstance(result, Priced) or not reservation.currency:
            return pricing
        if reservation.currency.upper() == result.currency.upper():
            return pricing

        if self._converter is None:
            pricing["currency_mismatch"] = True
            return pricing

        amount = reservation.total_amount if reservation.total_amount is not None else reservation.rate
        if amount is None:
            return pricing
        try:
            converted = await self._converter.convert(to_decimal(amount), reservation.currency, result.currency, now_utc())
        except NotFound as exc:
            logger.warning("no FX rate for %s->%s: %s", reservation.currency, result.currency, exc.message)
            pricing["currency_mismatch"] = True
            return pricing
        pricing["channel"]["converted_amount"] = float(converted)
        pricing["channel"]["converted_currency"] = result.currency
        return pricing

    @staticmethod
    def _stay(reservation: InboundReservation, fallback: Optional[Dict[str, Any]] = None) -> Tuple[date, date]:
        fallback = fallback or {}
        raw_in = reservation.check_in or fallback.get("check_in")
        raw_out = reservation.check_out or fallback.get("check_out")
        if not raw_in or not raw_out:
            raise ValidationError("checkIn and checkOut are required")
        try:
            return to_date(raw_in), to_date(raw_out)
        except (TypeError, ValueError) as exc:
            raise ValidationError("invalid stay dates", {"check_in": raw_in, "check_out": raw_out}) from exc

    async def _create_from_channel(self, channel_id: str, reservation: InboundReservation) -> Dict[str, Any]:
        connection, room_type_id = await self._resolve_room(channel_id, reservation.external_room_type_id)
        property_id = connection["property_id"]
        check_in, check_out = self._stay(reservation)
        pricing = await self._channel_pricing(channel_id, connection, reservation, room_type_id, check_in, check_out)

        booking_id = new_id("bk")
        result = await self._ledger.reserve(
            property_id, room_type_id, check_in, check_out, reservation.rooms, booking_id, source=channel_id
        )
        result.raise_for_failure()

        doc: Dict[str, Any] = {
            "_id": booking_id,
            "property_id": property_id,
            "room_type_id": room_type_id,
            "rate_id": pricing.get("rate_id"),
            "check_in": check_in.isoformat(),
            "check_out": check_out.isoformat(),
            "rooms": reservation.rooms,
            "guests": {"adults": reservation.adults, "children": reservation.children, "country": reservation.country},
            "source": channel_id,
            "external_booking_id": reservation.external_booking_id,
            "external_room_type_id": reservation.external_room_type_id,
            "confirmation_code": reservation.confirmation_code,
            "status": "confirmed",
            "pricing": pricing,
            "total_amount": reservation.total_amount,
            "currency": reservation.currency,
            "inventory_dates": result.dates,
            "special_requests": reservation.special_requests,
        }
        try:
            await self._bookings.insert(doc)
        except DuplicateKeyError:
            # another process stored the same external booking first
            await self._ledger.release(booking_id)
            existing = await self._bookings.find_external(channel_id, reservation.external_booking_id)
            if existing is None:
                raise
            return existing
        except AppError:
            await self._ledger.release(booking_id)
            raise

        logger.info(
            "booking created id=%s source=%s external=%s %s/%s %s..%s",
            booking_id, channel_id, reservation.external_booking_id, property_id, room_type_id,
            doc["check_in"], doc["check_out"],
        )
        await self._record("booking.created", None, doc, None, {"channel_id": channel_id})
        return doc

    async def _modify(
        self,
        channel_id: str,
        existing: Dict[str, Any],
        reservation: InboundReservation,
    ) -> Tuple[str, Dict[str, Any]]:
        if existing.get("status") == "cancelled":
            raise StateViolation("cancelled bookings cannot be modified", {"booking_id": existing["_id"]})

        if reservation.external_room_type_id:
            connection, room_type_id = await self._resolve_room(channel_id, reservation.external_room_type_id)
        else:
            connection = await self._properties.get_connection(channel_id, existing["property_id"]) or {}
            room_type_id = existing["room_type_id"]
        property_id = connection.get("property_id") or existing["property_id"]
        check_in, check_out = self._stay(reservation, existing)
        rooms = reservation.rooms

        same_stay = (
            property_id == existing["property_id"]
            and room_type_id == existing["room_type_id"]
            and check_in.isoformat() == existing["check_in"]
            and check_out.isoformat() == existing["check_out"]
            and rooms == existing.get("rooms")
        )
        booking_id = existing["_id"]
        updates: Dict[str, Any] = {
            "total_amount": reservation.total_amount if reservation.total_amount is not None else existing.get("total_amount"),
            "currency": reservation.currency or existing.get("currency"),
            "special_requests": reservation.special_requests or existing.get("special_requests"),
        }

        if not same_stay:
            await self._ledger.release(booking_id)
            result = await self._ledger.reserve(
                property_id, room_type_id, check_in, check_out, rooms, booking_id, source=channel_id
            )
            if not result.ok:
                restored = await self._ledger.reserve(
                    existing["property_id"],
                    existing["room_type_id"],
                    existing["check_in"],
                    existing["check_out"],
                    int(existing.get("rooms") or 1),
                    booking_id,
                    source=channel_id,
                )
                if not restored.ok:
                    logger.error(
                        "booking %s lost its original inventory while modifying: %s",
                        booking_id, restored.failure.to_dict() if restored.failure else None,
                    )
                result.raise_for_failure()
            updates.update(
                {
                    "property_id": property_id,
                    "room_type_id": room_type_id,
                    "check_in": check_in.isoformat(),
                    "check_out": check_out.isoformat(),
                    "rooms": rooms,
                    "inventory_dates": result.dates,
                    "external_room_type_id": reservation.external_room_type_id or existing.get("external_room_type_id"),
                }
            )
            if connection:
                updates["pricing"] = await self._channel_pricing(
                    channel_id, connection, reservation, room_type_id, check_in, check_out
                )

        after = await self._bookings.update(booking_id, updates)
        if after is None:
            raise NotFound("booking not found", {"booking_id": booking_id})
        if same_stay:
            return "unchanged", after

        logger.info("booking modified id=%s %s..%s rooms=%d", booking_id, updates["check_in"], updates["check_out"], rooms)
        await self._record("booking.modified", existing, after, None, {"channel_id": channel_id})
        return "modified", after
