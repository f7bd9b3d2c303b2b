from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from app.domain.rate_calculator import Priced, Unavailable, UnavailableReason, quote
from app.schemas_rates import CentralizedRate


NOW = datetime(2025, 9, 1, 9, 0, tzinfo=timezone.utc)


def _rate(**overrides: Any) -> CentralizedRate:
    data: dict[str, Any] = {
        "rate_id": "rate_r",
        "rate_name": "Seaside BAR",
        "property_group": {"group_id": "G1", "properties": ["P1", "P2"]},
        "rate_type": "BAR",
        "base_pricing": {"base_price": 100, "currency": "INR"},
        "room_types": [{"room_type_id": "RT1", "adjustment": {"type": "percentage", "value": 20}}],
        "validity_period": {"start_date": "2025-09-01", "end_date": "2025-12-31"},
        "per_property_rates": [{"property_id": "P1", "adjustment": {"type": "percentage", "value": 10}}],
        "channels": [{"channel": "booking_com", "markup": {"type": "percentage", "value": 15}}],
        "approval_status": "approved",
    }
    data.update(overrides)
    return CentralizedRate.model_validate(data)


def test_quote_composes_layers_in_order() -> None:
    """100 INR, +20% room type, +10% property, +15% channel, 3 nights.

    Rounding happens once, to two decimals, on the per-night value, so the
    result is 151.80 per night and 455.40 in total rather than whole units
    (152 / 456).
    """

    result = quote(_rate(), "P1", "RT1", date(2025, 10, 10), date(2025, 10, 13), 2, "booking_com", now=NOW)

    assert isinstance(result, Priced)
    assert result.per_night_rate == Decimal("151.80")
    assert result.total_before_tax == Decimal("455.40")
    assert result.nights == 3
    assert result.currency == "INR"
    assert [a.layer for a in result.applied_adjustments] == ["room_type", "property", "channel"]


def test_quote_is_deterministic() -> None:
    rate = _rate()
    first = quote(rate, "P1", "RT1", date(2025, 10, 10), date(2025, 10, 13), 2, "booking_com", now=NOW)
    second = quote(rate, "P1", "RT1", date(2025, 10, 10), date(2025, 10, 13), 2, "booking_com", now=NOW)
    assert first == second


def test_percentages_compound_before_fixed_within_a_layer() -> None:
    rate = _rate(
        room_types=[],
        per_property_rates=[],
        channels=[
            {"channel": "expedia", "markup": {"type": "fixed", "value": 5}},
            {"channel": "expedia", "markup": {"type": "percentage", "value": 10}},
        ],
        base_pricing={"base_price": 100, "currency": "USD"},
    )
    result = quote(rate, "P2", "RT9", date(2025, 10, 10), date(2025, 10, 11), 1, "expedia", now=NOW)
    assert isinstance(result, Priced)
    # (100 * 1.10) + 5, never (100 + 5) * 1.10
    assert result.per_night_rate == Decimal("115.00")


def test_property_base_price_override_replaces_value() -> None:
    rate = _rate(per_property_rates=[{"property_id": "P1", "overrides": {"base_price": 90}}])
    result = quote(rate, "P1", "RT1", date(2025, 10, 10), date(2025, 10, 11), 1, None, now=NOW)
    assert isinstance(result, Priced)
    assert result.per_night_rate == Decimal("90.00")


def test_room_type_adjustment_starts_from_rate_base_price() -> None:
    rate = _rate(
        room_types=[{"room_type_id": "RT1", "base_rate": 250, "adjustment": {"type": "percentage", "value": 20}}],
        per_property_rates=[],
    )
    result = quote(rate, "P1", "RT1", date(2025, 10, 10), date(2025, 10, 11), 1, None, now=NOW)
    assert isinstance(result, Priced)
    # the line's base_rate is not a starting price
    assert result.per_night_rate == Decimal("120.00")


def test_empty_room_type_list_offers_every_room_type() -> None:
    rate = _rate(room_types=[], per_property_rates=[])
    result = quote(rate, "P1", "ANY", date(2025, 10, 10), date(2025, 10, 11), 1, None, now=NOW)
    assert isinstance(result, Priced)
    assert result.per_night_rate == Decimal("100.00")


def test_price_never_goes_negative() -> None:
    rate = _rate(room_types=[], per_property_rates=[], channels=[
        {"channel": "promo", "markup": {"type": "fixed", "value": -500}},
    ])
    result = quote(rate, "P1", "RT1", date(2025, 10, 10), date(2025, 10, 11), 1, "promo", now=NOW)
    assert isinstance(result, Priced)
    assert result.per_night_rate == Decimal("0.00")


def test_rejections_follow_fixed_order() -> None:
    # outside validity and below min stay at once: validity is checked first
    rate = _rate(stay_restrictions={"minimum_stay": 5})
    result = quote(rate, "P1", "RT1", date(2026, 2, 1), date(2026, 2, 2), 1, None, now=NOW)
    assert isinstance(result, Unavailable)
    assert result.reason == UnavailableReason.OUTSIDE_VALIDITY


def test_not_approved_and_not_member() -> None:
    draft = _rate(approval_status="draft")
    result = quote(draft, "P1", "RT1", date(2025, 10, 10), date(2025, 10, 11), 1, None, now=NOW)
    assert isinstance(result, Unavailable) and result.reason == UnavailableReason.RATE_NOT_APPROVED

    result = quote(_rate(), "P9", "RT1", date(2025, 10, 10), date(2025, 10, 11), 1, None, now=NOW)
    assert isinstance(result, Unavailable) and result.reason == UnavailableReason.PROPERTY_NOT_IN_GROUP


def test_booking_window_and_same_day_cutoff() -> None:
    rate = _rate(booking_window={"advance_booking": {"minimum": 3, "maximum": 30}})
    early = quote(rate, "P1", "RT1", date(2025, 9, 2), date(2025, 9, 3), 1, None, now=NOW)
    assert isinstance(early, Unavailable) and early.reason == UnavailableReason.BELOW_MIN_ADVANCE

    late = quote(rate, "P1", "RT1", date(2025, 11, 1), date(2025, 11, 2), 1, None, now=NOW)
    assert isinstance(late, Unavailable) and late.reason == UnavailableReason.ABOVE_MAX_ADVANCE

    same_day = _rate(booking_window={"cutoff_time": "08:00"})
    result = quote(same_day, "P1", "RT1", date(2025, 9, 1), date(2025, 9, 2), 1, None, now=NOW)
    assert isinstance(result, Unavailable) and result.reason == UnavailableReason.PAST_CUTOFF


def test_cutoff_is_evaluated_in_rate_timezone() -> None:
    # 09:00 UTC is 18:00 in Tokyo, past a 17:00 local cutoff
    rate = _rate(
        validity_period={"start_date": "2025-09-01", "end_date": "2025-12-31", "timezone": "Asia/Tokyo"},
        booking_window={"cutoff_time": "17:00"},
    )
    result = quote(rate, "P1", "RT1", date(2025, 9, 1), date(2025, 9, 2), 1, None, now=NOW)
    assert isinstance(result, Unavailable) and result.reason == UnavailableReason.PAST_CUTOFF


def test_stay_restrictions() -> None:
    rate = _rate(
        stay_restrictions={
            "minimum_stay": 2,
            "maximum_stay": 5,
            "closed_to_arrival": ["2025-10-10"],
            "closed_to_departure": ["2025-10-20"],
            "stay_through": [{"start_date": "2025-12-24", "end_date": "2025-12-26", "minimum_stay": 3}],
        }
    )

    short = quote(rate, "P1", "RT1", date(2025, 10, 1), date(2025, 10, 2), 1, None, now=NOW)
    assert isinstance(short, Unavailable) and short.reason == UnavailableReason.BELOW_MIN_STAY

    long = quote(rate, "P1", "RT1", date(2025, 10, 1), date(2025, 10, 8), 1, None, now=NOW)
    assert isinstance(long, Unavailable) and long.reason == UnavailableReason.ABOVE_MAX_STAY

    cta = quote(rate, "P1", "RT1", date(2025, 10, 10), date(2025, 10, 12), 1, None, now=NOW)
    assert isinstance(cta, Unavailable) and cta.reason == UnavailableReason.CLOSED_TO_ARRIVAL

    ctd = quote(rate, "P1", "RT1", date(2025, 10, 18), date(2025, 10, 20), 1, None, now=NOW)
    assert isinstance(ctd, Unavailable) and ctd.reason == UnavailableReason.CLOSED_TO_DEPARTURE

    christmas = quote(rate, "P1", "RT1", date(2025, 12, 24), date(2025, 12, 26), 1, None, now=NOW)
    assert isinstance(christmas, Unavailable) and christmas.reason == UnavailableReason.BELOW_MIN_STAY


def test_property_override_of_stay_rules() -> None:
    rate = _rate(
        stay_restrictions={"minimum_stay": 3},
        per_property_rates=[{"property_id": "P1", "overrides": {"minimum_stay": 1}}],
    )
    result = quote(rate, "P1", "RT1", date(2025, 10, 1), date(2025, 10, 2), 1, None, now=NOW)
    assert isinstance(result, Priced)


def test_room_type_not_offered_or_closed() -> None:
    missing = quote(_rate(), "P1", "RT2", date(2025, 10, 1), date(2025, 10, 2), 1, None, now=NOW)
    assert isinstance(missing, Unavailable) and missing.reason == UnavailableReason.ROOM_TYPE_NOT_OFFERED

    closed = _rate(room_types=[{"room_type_id": "RT1", "availability": {"stop_sale": True}}])
    result = quote(closed, "P1", "RT1", date(2025, 10, 1), date(2025, 10, 2), 1, None, now=NOW)
    assert isinstance(result, Unavailable) and result.reason == UnavailableReason.ROOM_TYPE_STOP_SALE


def test_weekly_recurrence_mask() -> None:
    # 2025-10-10 is a Friday (5); only Fri/Sat are sellable
    rate = _rate(
        validity_period={
            "start_date": "2025-09-01",
            "end_date": "2025-12-31",
            "recurring_pattern": {"type": "weekly", "days_of_week": [5, 6]},
        }
    )
    friday = quote(rate, "P1", "RT1", date(2025, 10, 10), date(2025, 10, 11), 1, None, now=NOW)
    assert isinstance(friday, Priced)

    monday = quote(rate, "P1", "RT1", date(2025, 10, 13), date(2025, 10, 14), 1, None, now=NOW)
    assert isinstance(monday, Unavailable) and monday.reason == UnavailableReason.OUTSIDE_VALIDITY


def test_carved_exclusion_is_outside_validity() -> None:
    rate = _rate(
        validity_period={
            "start_date": "2025-10-01",
            "end_date": "2025-10-31",
            "exclusions": [{"start": "2025-10-15", "end": "2025-10-20"}],
        }
    )
    result = quote(rate, "P1", "RT1", date(2025, 10, 16), date(2025, 10, 17), 1, None, now=NOW)
    assert isinstance(result, Unavailable) and result.reason == UnavailableReason.OUTSIDE_VALIDITY
