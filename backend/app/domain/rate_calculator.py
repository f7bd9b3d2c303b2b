from __future__ import annotations

"""Rate calculator.

`quote()` is a pure function: given a centralized rate, a property, a room
type, stay dates, guests, a channel and the caller's `now`, it returns
either `Priced` or `Unavailable`. It never touches persistence and never
consults inventory; availability and price are decoupled so callers can
quote without holding rooms.

Rejection checks run in a fixed order and the first failure wins:

1. rate state / property membership
2. validity window (exclusions and recurrence mask included)
3. booking window (advance days, same-day cutoff in the rate timezone)
4. stay restrictions (length of stay, stay-through windows, CTA/CTD)
5. room type offered and open for sale

Pricing then composes, in this exact order: base price, room-type
adjustment, per-property override or adjustment, channel markup. Within one
layer percentages compound first and fixed amounts are added afterwards.
The per-night rate is rounded once, half-to-even, to two decimals and
floored at zero.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from decimal import ROUND_HALF_EVEN, Decimal
from enum import Enum
from typing import Any, Iterable, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.domain.validity import contains
from app.schemas_rates import Adjustment, CentralizedRate, RecurringPattern


_CENT = Decimal("0.01")
_HUNDRED = Decimal("100")


class UnavailableReason(str, Enum):
    RATE_NOT_APPROVED = "RateNotApproved"
    PROPERTY_NOT_IN_GROUP = "PropertyNotInGroup"
    OUTSIDE_VALIDITY = "OutsideValidity"
    BELOW_MIN_ADVANCE = "BelowMinAdvance"
    ABOVE_MAX_ADVANCE = "AboveMaxAdvance"
    PAST_CUTOFF = "PastCutoff"
    BELOW_MIN_STAY = "BelowMinStay"
    ABOVE_MAX_STAY = "AboveMaxStay"
    CLOSED_TO_ARRIVAL = "ClosedToArrival"
    CLOSED_TO_DEPARTURE = "ClosedToDeparture"
    ROOM_TYPE_STOP_SALE = "RoomTypeStopSale"
    ROOM_TYPE_NOT_OFFERED = "RoomTypeNotOffered"


@dataclass(frozen=True)
class AppliedAdjustment:
    layer: str  # room_type | property | property_override | channel
    type: str  # percentage | fixed | override
    value: Decimal
    result: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "layer": self.layer,
            "type": self.type,
            "value": float(self.value),
            "result": float(self.result),
        }


@dataclass(frozen=True)
class Priced:
    per_night_rate: Decimal
    total_before_tax: Decimal
    nights: int
    currency: str
    breakfast_included: bool
    tax_included: bool
    applied_adjustments: tuple[AppliedAdjustment, ...] = field(default_factory=tuple)

    available = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": "priced",
            "per_night_rate": float(self.per_night_rate),
            "total_before_tax": float(self.total_before_tax),
            "nights": self.nights,
            "currency": self.currency,
            "breakfast_included": self.breakfast_included,
            "tax_included": self.tax_included,
            "applied_adjustments": [a.to_dict() for a in self.applied_adjustments],
        }


@dataclass(frozen=True)
class Unavailable:
    reason: UnavailableReason
    message: str = ""

    available = False

    def to_dict(self) -> dict[str, Any]:
        return {"status": "unavailable", "reason": self.reason.value, "message": self.message}


QuoteResult = Union[Priced, Unavailable]


def to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_money(value: Decimal) -> Decimal:
    return value.quantize(_CENT, rounding=ROUND_HALF_EVEN)


def apply_layer(
    value: Decimal,
    adjustments: Iterable[Adjustment],
    *,
    layer: str,
    trail: list[AppliedAdjustment],
) -> Decimal:
    """Apply one pricing layer: percentages compound, then fixed amounts add."""
    items = [a for a in adjustments if a.value]
    for adj in items:
        if adj.type == "percentage":
            value = value * (1 + to_decimal(adj.value) / _HUNDRED)
            trail.append(AppliedAdjustment(layer, "percentage", to_decimal(adj.value), value))
    for adj in items:
        if adj.type == "fixed":
            value = value + to_decimal(adj.value)
            trail.append(AppliedAdjustment(layer, "fixed", to_decimal(adj.value), value))
    return value


def _rate_timezone(name: str) -> ZoneInfo | timezone:
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        return timezone.utc


def _parse_cutoff(raw: str) -> Optional[time]:
    try:
        hh, mm = raw.split(":", 1)
        return time(int(hh), int(mm))
    except (ValueError, AttributeError):
        return None


def matches_recurrence(pattern: RecurringPattern, day: date) -> bool:
    if pattern.type == "weekly" and pattern.days_of_week:
        # 0 = Sunday in stored patterns; Python weekday() has Monday = 0
        return (day.weekday() + 1) % 7 in pattern.days_of_week
    if pattern.type == "monthly" and pattern.days_of_month:
        return day.day in pattern.days_of_month
    if pattern.type == "yearly" and pattern.months:
        return day.month in pattern.months
    return True


def _local_now(now: datetime, tz) -> datetime:
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(tz)


def check_restrictions(
    rate: CentralizedRate,
    property_id: str,
    room_type_id: str,
    check_in: date,
    check_out: date,
    *,
    now: datetime,
) -> Optional[Unavailable]:
    """Run every rejection check in order; None means the stay is sellable."""

    if rate.approval_status != "approved" or not rate.is_active:
        return Unavailable(UnavailableReason.RATE_NOT_APPROVED, f"rate is {rate.approval_status}")

    if property_id not in rate.property_group.properties:
        return Unavailable(UnavailableReason.PROPERTY_NOT_IN_GROUP, f"property {property_id} is not in the rate group")

    validity = rate.validity_period
    if not contains(validity, check_in) or not matches_recurrence(validity.recurring_pattern, check_in):
        return Unavailable(UnavailableReason.OUTSIDE_VALIDITY, "check-in outside validity period")

    row = rate.property_rate(property_id)
    overrides = row.overrides if row is not None else None

    window = rate.booking_window
    min_advance = window.advance_booking.minimum
    max_advance = window.advance_booking.maximum
    if overrides is not None and overrides.booking_window is not None:
        if overrides.booking_window.minimum is not None:
            min_advance = overrides.booking_window.minimum
        if overrides.booking_window.maximum is not None:
            max_advance = overrides.booking_window.maximum

    local_now = _local_now(now, _rate_timezone(validity.timezone))
    days_ahead = (check_in - local_now.date()).days
    if days_ahead < min_advance or days_ahead < 0:
        return Unavailable(UnavailableReason.BELOW_MIN_ADVANCE, f"minimum advance booking is {min_advance} days")
    if days_ahead > max_advance:
        return Unavailable(UnavailableReason.ABOVE_MAX_ADVANCE, f"maximum advance booking is {max_advance} days")
    if days_ahead == 0:
        if not window.same_day_booking:
            return Unavailable(UnavailableReason.BELOW_MIN_ADVANCE, "same-day booking not allowed")
        cutoff = _parse_cutoff(window.cutoff_time)
        if cutoff is not None and local_now.time() >= cutoff:
            return Unavailable(UnavailableReason.PAST_CUTOFF, f"same-day cutoff {window.cutoff_time} passed")

    stay = rate.stay_restrictions
    nights = (check_out - check_in).days
    min_stay = stay.minimum_stay
    max_stay = stay.maximum_stay
    if overrides is not None:
        if overrides.minimum_stay is not None:
            min_stay = overrides.minimum_stay
        if overrides.maximum_stay is not None:
            max_stay = overrides.maximum_stay
    if nights > 0:
        last_night = date.fromordinal(check_out.toordinal() - 1)
        for st in stay.stay_through:
            if st.start_date <= last_night and check_in <= st.end_date:
                min_stay = max(min_stay, st.minimum_stay)

    if nights < min_stay:
        return Unavailable(UnavailableReason.BELOW_MIN_STAY, f"minimum {min_stay} nights required")
    if nights > max_stay:
        return Unavailable(UnavailableReason.ABOVE_MAX_STAY, f"maximum {max_stay} nights allowed")
    if check_in in stay.closed_to_arrival:
        return Unavailable(UnavailableReason.CLOSED_TO_ARRIVAL, f"closed to arrival on {check_in.isoformat()}")
    if check_out in stay.closed_to_departure:
        return Unavailable(UnavailableReason.CLOSED_TO_DEPARTURE, f"closed to departure on {check_out.isoformat()}")

    # an empty room type list offers every room type of the property
    rt = rate.room_type_rate(room_type_id)
    if rt is None and rate.room_types:
        return Unavailable(UnavailableReason.ROOM_TYPE_NOT_OFFERED, f"room type {room_type_id} not offered")
    if rt is not None and (not rt.availability.is_available or rt.availability.stop_sale):
        return Unavailable(UnavailableReason.ROOM_TYPE_STOP_SALE, f"room type {room_type_id} closed for sale")

    return None


def price_per_night(
    rate: CentralizedRate,
    property_id: str,
    room_type_id: str,
    channel: Optional[str],
) -> tuple[Decimal, tuple[AppliedAdjustment, ...]]:
    trail: list[AppliedAdjustment] = []
    value = to_decimal(rate.base_pricing.base_price)

    rt = rate.room_type_rate(room_type_id)
    if rt is not None:
        value = apply_layer(value, [rt.adjustment], layer="room_type", trail=trail)

    row = rate.property_rate(property_id)
    if row is not None:
        if row.overrides.base_price is not None:
            value = to_decimal(row.overrides.base_price)
            trail.append(AppliedAdjustment("property_override", "override", value, value))
        else:
            value = apply_layer(value, [row.adjustment], layer="property", trail=trail)

    markups = [c.markup for c in rate.channel_settings(channel)]
    value = apply_layer(value, markups, layer="channel", trail=trail)

    value = round_money(value)
    if value < 0:
        value = Decimal("0.00")
    return value, tuple(trail)


def quote(
    rate: CentralizedRate,
    property_id: str,
    room_type_id: str,
    check_in: date,
    check_out: date,
    guests: int,
    channel: Optional[str],
    *,
    now: datetime,
) -> QuoteResult:
    rejection = check_restrictions(rate, property_id, room_type_id, check_in, check_out, now=now)
    if rejection is not None:
        return rejection

    per_night, trail = price_per_night(rate, property_id, room_type_id, channel)
    nights = (check_out - check_in).days
    total = round_money(per_night * nights)

    return Priced(
        per_night_rate=per_night,
        total_before_tax=total,
        nights=nights,
        currency=rate.base_pricing.currency,
        breakfast_included=rate.base_pricing.include_breakfast,
        tax_included=rate.base_pricing.include_taxes,
        applied_adjustments=trail,
    )
