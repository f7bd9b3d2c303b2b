from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query

from app.auth import RATE_APPROVERS, RATE_AUTHORS, get_current_user, require_roles
from app.config import ENABLE_AUTO_DISTRIBUTION
from app.db import get_db
from app.errors import AppError
from app.schemas_rates import (
    PropertyOverrideIn,
    RateCreateIn,
    RateUpdateIn,
    TransitionIn,
)
from app.services.distribution_engine import DistributionEngine
from app.services.rate_store import RateStore

router = APIRouter(prefix="/api/rates", tags=["rates"])

logger = logging.getLogger(__name__)


@router.post("", status_code=201)
async def create_rate(payload: RateCreateIn, db=Depends(get_db), user=Depends(require_roles(RATE_AUTHORS))):
    rate = await RateStore(db).create(payload, user)
    return rate.to_doc()


@router.get("")
async def list_rates(
    group_id: Optional[str] = None,
    rate_type: Optional[str] = None,
    status: Optional[str] = None,
    active_only: bool = True,
    db=Depends(get_db),
    user=Depends(get_current_user),
):
    rates = await RateStore(db).list_rates(group_id, rate_type=rate_type, status=status, active_only=active_only)
    return [r.to_doc() for r in rates]


@router.post("/validate")
async def validate_rate(payload: RateCreateIn, db=Depends(get_db), user=Depends(get_current_user)):
    return await RateStore(db).validate_payload(payload)


@router.get("/{rate_id}")
async def get_rate(rate_id: str, db=Depends(get_db), user=Depends(get_current_user)):
    return (await RateStore(db).get(rate_id)).to_doc()


@router.patch("/{rate_id}")
async def update_rate(rate_id: str, patch: RateUpdateIn, db=Depends(get_db), user=Depends(require_roles(RATE_AUTHORS))):
    return (await RateStore(db).update(rate_id, patch, user)).to_doc()


@router.delete("/{rate_id}")
async def delete_rate(rate_id: str, db=Depends(get_db), user=Depends(require_roles(RATE_AUTHORS))):
    await RateStore(db).delete(rate_id, user)
    return {"ok": True, "rate_id": rate_id}


@router.post("/{rate_id}/duplicate", status_code=201)
async def duplicate_rate(
    rate_id: str,
    rate_name: Optional[str] = Query(default=None, max_length=100),
    db=Depends(get_db),
    user=Depends(require_roles(RATE_AUTHORS)),
):
    return (await RateStore(db).duplicate(rate_id, user, rate_name=rate_name)).to_doc()


@router.post("/{rate_id}/transition")
async def transition_rate(rate_id: str, payload: TransitionIn, db=Depends(get_db), user=Depends(get_current_user)):
    # approving is reserved to approvers; the rest to authors
    allowed = RATE_APPROVERS if payload.action in ("approve", "reject") else RATE_AUTHORS
    await require_roles(allowed)(user)

    store = RateStore(db)
    rate = await store.transition(rate_id, payload.action, user, reason=payload.reason)
    response: dict[str, Any] = {"rate": rate.to_doc(), "distribution": None}

    if payload.action == "approve" and ENABLE_AUTO_DISTRIBUTION and await store.should_auto_distribute(rate):
        try:
            result = await DistributionEngine(db, store=store).distribute(rate_id, actor=user)
            response["distribution"] = result.to_dict()
        except AppError as exc:
            logger.warning("auto distribution of %s failed: %s", rate_id, exc.message)
            response["distribution"] = exc.to_dict()
    return response


@router.get("/{rate_id}/history")
async def rate_history(rate_id: str, db=Depends(get_db), user=Depends(get_current_user)):
    entries = await RateStore(db).history(rate_id)
    return [e.model_dump(mode="json") for e in entries]


@router.post("/{rate_id}/properties/{property_id}/override")
async def add_property_override(
    rate_id: str,
    property_id: str,
    payload: PropertyOverrideIn,
    db=Depends(get_db),
    user=Depends(require_roles(RATE_AUTHORS)),
):
    return (await RateStore(db).add_property_override(rate_id, property_id, payload, user)).to_doc()


@router.delete("/{rate_id}/properties/{property_id}/override")
async def remove_property_override(
    rate_id: str,
    property_id: str,
    db=Depends(get_db),
    user=Depends(require_roles(RATE_AUTHORS)),
):
    return (await RateStore(db).remove_property_override(rate_id, property_id, user)).to_doc()
