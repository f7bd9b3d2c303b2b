from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends

from app.auth import RATE_AUTHORS, get_current_user, require_roles
from app.db import get_db
from app.schemas_inventory import BlockIn, InventoryRatesIn, MaterializeIn, RestrictionsIn
from app.services.inventory_ledger import InventoryLedger

router = APIRouter(prefix="/api/inventory", tags=["inventory"])


@router.post("/materialize")
async def materialize(payload: MaterializeIn, db=Depends(get_db), user=Depends(require_roles(RATE_AUTHORS))):
    created = await InventoryLedger(db).materialize(
        payload.property_id, payload.room_type_id, payload.from_date, payload.horizon_days
    )
    return {"created": created}


@router.post("/rates")
async def set_rates(payload: InventoryRatesIn, db=Depends(get_db), user=Depends(require_roles(RATE_AUTHORS))):
    result = await InventoryLedger(db).set_rates(
        payload.property_id,
        payload.room_type_id,
        payload.start_date,
        payload.end_date,
        payload.base_rate,
        payload.selling_rate,
        payload.currency.upper(),
    )
    return result.to_dict()


@router.post("/restrictions")
async def set_restrictions(payload: RestrictionsIn, db=Depends(get_db), user=Depends(require_roles(RATE_AUTHORS))):
    result = await InventoryLedger(db).set_restrictions(
        payload.property_id,
        payload.room_type_id,
        payload.start_date,
        payload.end_date,
        stop_sell=payload.stop_sell,
        closed_to_arrival=payload.closed_to_arrival,
        closed_to_departure=payload.closed_to_departure,
        minimum_stay=payload.minimum_stay,
        maximum_stay=payload.maximum_stay,
    )
    return result.to_dict()


@router.post("/blocks", status_code=201)
async def create_block(payload: BlockIn, db=Depends(get_db), user=Depends(require_roles(RATE_AUTHORS))):
    result = await InventoryLedger(db).block(
        payload.property_id,
        payload.room_type_id,
        payload.start_date,
        payload.end_date,
        payload.rooms,
        payload.reason or "",
    )
    result.raise_for_failure()
    return result.to_dict()


@router.delete("/blocks/{block_id}")
async def release_block(block_id: str, db=Depends(get_db), user=Depends(require_roles(RATE_AUTHORS))):
    return (await InventoryLedger(db).unblock(block_id)).to_dict()


@router.get("")
async def get_inventory(
    property_id: str,
    start: date,
    end: date,
    room_type_id: Optional[str] = None,
    channel: Optional[str] = None,
    db=Depends(get_db),
    user=Depends(get_current_user),
):
    return await InventoryLedger(db).get_availability(property_id, room_type_id, start, end, channel)
