from __future__ import annotations

from decimal import Decimal
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.domain.rate_calculator import apply_layer, to_decimal
from app.schemas_rates import CentralizedRate


def _valid_cutoff(raw: str) -> bool:
    try:
        hh, mm = raw.split(":", 1)
        return 0 <= int(hh) < 24 and 0 <= int(mm) < 60
    except (ValueError, AttributeError):
        return False


def validate_rate(rate: CentralizedRate, group_room_types: Optional[set[str]] = None) -> list[str]:
    """Return human readable save-time errors; empty list means valid.

    `group_room_types` is the set of room type ids that belong to any
    property of the rate's group. When None the membership check is skipped.
    """

    errors: list[str] = []

    vp = rate.validity_period
    if vp.end_date <= vp.start_date:
        errors.append("validity_period.end_date must be after start_date")
    try:
        ZoneInfo(vp.timezone or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        errors.append(f"validity_period.timezone '{vp.timezone}' is not a known timezone")

    bw = rate.booking_window
    if bw.advance_booking.minimum > bw.advance_booking.maximum:
        errors.append("booking_window.advance_booking.minimum must be <= maximum")
    if not _valid_cutoff(bw.cutoff_time):
        errors.append("booking_window.cutoff_time must be HH:MM")

    st = rate.stay_restrictions
    if st.minimum_stay > st.maximum_stay:
        errors.append("stay_restrictions.minimum_stay must be <= maximum_stay")
    for window in st.stay_through:
        if window.end_date < window.start_date:
            errors.append("stay_restrictions.stay_through end_date must not precede start_date")

    seen: set[str] = set()
    for rt in rate.room_types:
        if rt.room_type_id in seen:
            errors.append(f"room type {rt.room_type_id} listed more than once")
        seen.add(rt.room_type_id)
        if group_room_types is not None and rt.room_type_id not in group_room_types:
            errors.append(f"room type {rt.room_type_id} does not belong to any property in the group")

    base = to_decimal(rate.base_pricing.base_price)
    room_values: list[tuple[str, Decimal]] = [("(base)", base)]
    for rt in rate.room_types:
        value = apply_layer(base, [rt.adjustment], layer="room_type", trail=[])
        if value < 0:
            errors.append(f"room type {rt.room_type_id} adjustment makes the rate negative")
        room_values.append((rt.room_type_id, value))

    for row in rate.per_property_rates:
        if row.property_id not in rate.property_group.properties:
            errors.append(f"property {row.property_id} is not a member of the group")
        ov = row.overrides
        if ov.minimum_stay is not None and ov.maximum_stay is not None and ov.minimum_stay > ov.maximum_stay:
            errors.append(f"property {row.property_id} override minimum_stay must be <= maximum_stay")
        if ov.booking_window is not None:
            lo = ov.booking_window.minimum
            hi = ov.booking_window.maximum
            if lo is not None and hi is not None and lo > hi:
                errors.append(f"property {row.property_id} override booking window minimum must be <= maximum")
        if ov.base_price is None:
            for rt_id, value in room_values:
                if apply_layer(value, [row.adjustment], layer="property", trail=[]) < 0:
                    errors.append(f"property {row.property_id} adjustment makes room type {rt_id} negative")
                    break

    return errors
