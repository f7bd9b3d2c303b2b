from __future__ import annotations

"""Currency conversion.

Conversion is an external collaborator of the booking flow:
`convert(amount, from_ccy, to_ccy, as_of) -> amount`. Nothing in the rate
core converts implicitly; when no converter is configured callers record a
currency mismatch instead.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Protocol

from app.domain.rate_calculator import round_money, to_decimal
from app.errors import NotFound
from app.utils import iso_ts


class CurrencyConverter(Protocol):
  async def convert(self, amount: Decimal, from_ccy: str, to_ccy: str, as_of: datetime) -> Decimal:
    ...


@dataclass
class FxRate:
  base: str
  quote: str
  rate: Decimal
  as_of: str


class MongoCurrencyConverter:
  """Converter backed by the `fx_rates` collection.

  Documents: {base, quote, rate, as_of} meaning 1 base = rate quote, valid
  from `as_of` (ISO timestamp). The latest rate at or before the requested
  instant wins; the inverse pair is used when only it is stored.
  """

  def __init__(self, db):
    self.db = db

  async def _latest(self, base: str, quote: str, as_of: str) -> Optional[FxRate]:
    cursor = (
      self.db.fx_rates
      .find({"base": base, "quote": quote, "as_of": {"$lte": as_of}})
      .sort("as_of", -1)
      .limit(1)
    )
    docs = await cursor.to_list(length=1)
    if not docs:
      return None
    doc = docs[0]
    return FxRate(base=base, quote=quote, rate=to_decimal(doc["rate"]), as_of=doc["as_of"])

  async def get_rate(self, from_ccy: str, to_ccy: str, as_of: datetime) -> FxRate:
    base = (from_ccy or "").upper()
    quote = (to_ccy or "").upper()
    if base == quote:
      return FxRate(base=base, quote=quote, rate=Decimal("1"), as_of=iso_ts(as_of))

    stamp = iso_ts(as_of)
    direct = await self._latest(base, quote, stamp)
    if direct is not None:
      return direct

    inverse = await self._latest(quote, base, stamp)
    if inverse is not None and inverse.rate != 0:
      return FxRate(base=base, quote=quote, rate=Decimal("1") / inverse.rate, as_of=inverse.as_of)

    raise NotFound(
      f"No FX rate found for {base}/{quote} as of {stamp}",
      {"base": base, "quote": quote, "as_of": stamp},
    )

  async def convert(self, amount: Decimal, from_ccy: str, to_ccy: str, as_of: datetime) -> Decimal:
    fx = await self.get_rate(from_ccy, to_ccy, as_of)
    return round_money(to_decimal(amount) * fx.rate)
