from __future__ import annotations

from fastapi import APIRouter, Depends

from app.auth import RATE_AUTHORS, get_current_user, require_roles
from app.db import get_db
from app.schemas_inventory import RoomTypeIn, RoomTypeUpdateIn
from app.services.room_types import RoomTypeService
from app.utils import serialize_doc

router = APIRouter(prefix="/api/room-types", tags=["room_types"])


@router.post("", status_code=201)
async def create_room_type(payload: RoomTypeIn, db=Depends(get_db), user=Depends(require_roles(RATE_AUTHORS))):
    return serialize_doc(await RoomTypeService(db).create(payload, user))


@router.get("")
async def list_room_types(property_id: str, active_only: bool = True, db=Depends(get_db), user=Depends(get_current_user)):
    docs = await RoomTypeService(db).list(property_id, active_only=active_only)
    return [serialize_doc(d) for d in docs]


@router.get("/{room_type_id}")
async def get_room_type(room_type_id: str, db=Depends(get_db), user=Depends(get_current_user)):
    return serialize_doc(await RoomTypeService(db).get(room_type_id))


@router.patch("/{room_type_id}")
async def update_room_type(
    room_type_id: str,
    payload: RoomTypeUpdateIn,
    db=Depends(get_db),
    user=Depends(require_roles(RATE_AUTHORS)),
):
    return serialize_doc(await RoomTypeService(db).update(room_type_id, payload, user))


@router.delete("/{room_type_id}")
async def deactivate_room_type(room_type_id: str, db=Depends(get_db), user=Depends(require_roles(RATE_AUTHORS))):
    return serialize_doc(await RoomTypeService(db).deactivate(room_type_id, user))
