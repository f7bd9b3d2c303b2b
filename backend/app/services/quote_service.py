from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from app.domain.rate_calculator import QuoteResult, quote
from app.errors import NotFound, ValidationError
from app.repositories.rate_repository import RateRepository
from app.utils import now_utc


class QuoteService:
    """Loads a rate and prices a stay with the pure calculator."""

    def __init__(self, db) -> None:
        self.db = db
        self._rates = RateRepository(db)

    async def quote(
        self,
        rate_id: str,
        property_id: str,
        room_type_id: str,
        check_in: date,
        check_out: date,
        guests: int,
        channel: Optional[str] = None,
        *,
        now: Optional[datetime] = None,
    ) -> QuoteResult:
        if check_out <= check_in:
            raise ValidationError("check_out must be after check_in", {"check_in": check_in.isoformat(), "check_out": check_out.isoformat()})
        if guests < 1:
            raise ValidationError("guests must be >= 1", {"guests": guests})

        rate = await self._rates.get(rate_id)
        if rate is None:
            raise NotFound("rate not found", {"rate_id": rate_id})

        return quote(
            rate,
            property_id,
            room_type_id,
            check_in,
            check_out,
            guests,
            channel,
            now=now or now_utc(),
        )
