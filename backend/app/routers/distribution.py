from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends

from app.auth import RATE_APPROVERS, get_current_user, require_roles
from app.db import get_db
from app.schemas_rates import DistributeIn, GroupSyncIn, PreviewIn, ResolveConflictIn
from app.services.distribution_engine import DistributionEngine
from app.services.rate_store import RateStore

router = APIRouter(prefix="/api", tags=["distribution"])


@router.post("/rates/{rate_id}/distribute")
async def distribute_rate(
    rate_id: str,
    payload: DistributeIn,
    db=Depends(get_db),
    user=Depends(require_roles(RATE_APPROVERS)),
):
    result = await DistributionEngine(db).distribute(
        rate_id,
        mode=payload.mode,
        property_ids=payload.property_ids,
        exclude_property_ids=payload.exclude_property_ids,
        fail_on_conflict=payload.fail_on_conflict,
        auto_resolve=payload.auto_resolve,
        force=payload.force,
        actor=user,
    )
    return result.to_dict()


@router.post("/rates/{rate_id}/distribution/preview")
async def preview_distribution(rate_id: str, payload: PreviewIn, db=Depends(get_db), user=Depends(get_current_user)):
    return await DistributionEngine(db).preview_distribution(
        rate_id,
        payload.property_ids,
        payload.effective_date,
        mode=payload.mode,
    )


@router.get("/rates/{rate_id}/conflicts")
async def rate_conflicts(
    rate_id: str,
    property_id: Optional[str] = None,
    db=Depends(get_db),
    user=Depends(get_current_user),
):
    return await DistributionEngine(db).detect_conflicts(rate_id, property_id)


@router.post("/rates/{rate_id}/conflicts/resolve")
async def resolve_conflict(
    rate_id: str,
    payload: ResolveConflictIn,
    db=Depends(get_db),
    user=Depends(require_roles(RATE_APPROVERS)),
):
    return await DistributionEngine(db).resolve_conflict(
        rate_id,
        payload.other_rate_id,
        payload.action,
        user,
        carve_rate_id=payload.carve_rate_id,
        property_id=payload.property_id,
    )


@router.post("/groups/{group_id}/sync")
async def sync_group(
    group_id: str,
    payload: GroupSyncIn,
    db=Depends(get_db),
    user=Depends(require_roles(RATE_APPROVERS)),
):
    return await DistributionEngine(db).sync_group_rates(
        group_id,
        rate_ids=payload.rate_ids,
        force=payload.force,
        actor=user,
    )


@router.get("/groups/{group_id}/distribution-report")
async def distribution_report(group_id: str, db=Depends(get_db), user=Depends(get_current_user)):
    return await RateStore(db).distribution_report(group_id)
