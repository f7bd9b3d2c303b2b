from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from app.errors import NotFound
from app.services.fx import MongoCurrencyConverter


AT = datetime(2025, 10, 10, 12, 0, tzinfo=timezone.utc)


async def _seed(db) -> None:
    await db.fx_rates.insert_many(
        [
            {"base": "EUR", "quote": "USD", "rate": 1.05, "as_of": "2025-01-01T00:00:00.000000Z"},
            {"base": "EUR", "quote": "USD", "rate": 1.10, "as_of": "2025-09-01T00:00:00.000000Z"},
            {"base": "EUR", "quote": "USD", "rate": 1.50, "as_of": "2026-01-01T00:00:00.000000Z"},
        ]
    )


@pytest.mark.anyio
async def test_latest_rate_at_or_before_instant(test_db) -> None:
    await _seed(test_db)
    fx = MongoCurrencyConverter(test_db)

    rate = await fx.get_rate("eur", "usd", AT)
    assert rate.rate == Decimal("1.1")
    assert await fx.convert(Decimal("100"), "EUR", "USD", AT) == Decimal("110.00")


@pytest.mark.anyio
async def test_inverse_pair_and_identity(test_db) -> None:
    await _seed(test_db)
    fx = MongoCurrencyConverter(test_db)

    assert await fx.convert(Decimal("110"), "USD", "EUR", AT) == Decimal("100.00")
    assert await fx.convert(Decimal("42.5"), "USD", "usd", AT) == Decimal("42.50")


@pytest.mark.anyio
async def test_missing_pair_raises_not_found(test_db) -> None:
    await _seed(test_db)
    fx = MongoCurrencyConverter(test_db)
    with pytest.raises(NotFound):
        await fx.convert(Decimal("1"), "GBP", "USD", AT)

    early = datetime(2024, 1, 1, tzinfo=timezone.utc)
    with pytest.raises(NotFound):
        await fx.get_rate("EUR", "USD", early)
