from __future__ import annotations

from fastapi import APIRouter, Depends

from app.auth import get_current_user
from app.db import get_db
from app.schemas_rates import QuoteIn
from app.services.quote_service import QuoteService

router = APIRouter(prefix="/api/quotes", tags=["quotes"])


@router.post("")
async def create_quote(payload: QuoteIn, db=Depends(get_db), user=Depends(get_current_user)):
    result = await QuoteService(db).quote(
        payload.rate_id,
        payload.property_id,
        payload.room_type_id,
        payload.check_in,
        payload.check_out,
        payload.guests,
        payload.channel,
    )
    return result.to_dict()
