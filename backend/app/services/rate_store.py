from __future__ import annotations

"""Centralized rate definitions.

Every mutation of a stored rate goes through `commit_version`, which bumps
`version` by exactly one, appends exactly one change-log entry and writes
the document compare-and-set on `revision`. Writers for the same rate are
serialized in-process by `rate_lock(rate_id)`; the distribution engine
holds the same lock.
"""

import logging
from datetime import date
from typing import Any, Dict, List, Optional

from app.domain.conflicts import detect_conflicts
from app.domain.events import rate_events
from app.domain.rate_state_machine import (
    RateStateTransitionError,
    is_deletable,
    is_material_change,
    target_for_action,
    validate_transition,
)
from app.domain.rate_validation import validate_rate
from app.domain.validity import contains
from app.errors import NotFound, StateViolation, TransientFailure, ValidationError
from app.repositories.property_repository import PropertyRepository
from app.repositories.rate_repository import RateRepository
from app.schemas_rates import (
    CentralizedRate,
    ChangeLogEntry,
    ConflictLink,
    ConflictResolution,
    DistributionSettings,
    FieldChange,
    PropertyGroupRef,
    PropertyOverrideIn,
    PropertyRate,
    RateCreateIn,
    RateUpdateIn,
    SyncState,
)
from app.services.audit import write_audit_log
from app.services.event_outbox import EventOutbox
from app.services.resilience import KeyedLocks
from app.utils import new_id, now_utc, to_date


logger = logging.getLogger(__name__)

_RATE_LOCKS = KeyedLocks()


def rate_lock(rate_id: str):
    """Per-rate critical section shared by the store and the distribution engine."""
    return _RATE_LOCKS.hold(("rate", rate_id))


def _actor_id(actor: Optional[Dict[str, Any]]) -> Optional[str]:
    return (actor or {}).get("user_id")


def _dump(value: Any) -> Any:
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json")
    if isinstance(value, list):
        return [_dump(v) for v in value]
    return value


def diff_fields(before: CentralizedRate, after: CentralizedRate, fields: List[str]) -> List[FieldChange]:
    changes: List[FieldChange] = []
    for name in fields:
        old = _dump(_read_field(before, name))
        new = _dump(_read_field(after, name))
        if old != new:
            changes.append(FieldChange(field=name, old_value=old, new_value=new))
    return changes


def _read_field(rate: CentralizedRate, name: str) -> Any:
    if name == "properties":
        return list(rate.property_group.properties)
    if name == "priority":
        return rate.conflict_resolution.priority
    return getattr(rate, name)


class RateStore:
    def __init__(self, db, *, outbox: Optional[EventOutbox] = None) -> None:
        self.db = db
        self._rates = RateRepository(db)
        self._properties = PropertyRepository(db)
        self._outbox = outbox or EventOutbox(db)

    # ---- reads ----

    async def get(self, rate_id: str) -> CentralizedRate:
        rate = await self._rates.get(rate_id)
        if rate is None:
            raise NotFound("rate not found", {"rate_id": rate_id})
        return rate

    async def list_rates(
        self,
        group_id: Optional[str] = None,
        *,
        rate_type: Optional[str] = None,
        status: Optional[str] = None,
        active_only: bool = True,
    ) -> List[CentralizedRate]:
        return await self._rates.list(group_id=group_id, rate_type=rate_type, status=status, active_only=active_only)

    async def find_active_rates_for_property(self, property_id: str, on_date: Optional[date] = None) -> List[CentralizedRate]:
        rates = await self._rates.list(property_id=property_id, status="approved")
        if on_date is None:
            return rates
        day = to_date(on_date)
        return [r for r in rates if contains(r.validity_period, day)]

    async def history(self, rate_id: str) -> List[ChangeLogEntry]:
        rate = await self.get(rate_id)
        return sorted(rate.change_log, key=lambda e: e.version, reverse=True)

    # ---- validation ----

    async def _group_room_types(self, rate: CentralizedRate) -> set[str]:
        return await self._properties.room_type_ids_for_properties(list(rate.property_group.properties))

    async def validation_errors(self, rate: CentralizedRate) -> List[str]:
        return validate_rate(rate, await self._group_room_types(rate))

    async def _validate_or_raise(self, rate: CentralizedRate) -> None:
        errors = await self.validation_errors(rate)
        if errors:
            raise ValidationError("rate failed validation", {"errors": errors})

    async def conflict_links(self, rate: CentralizedRate) -> List[ConflictLink]:
        """Classify `rate` against approved rates of its group and type.

        Resolutions already recorded for the same counterpart are kept.
        """

        others = await self._rates.list(
            group_id=rate.property_group.group_id,
            rate_type=rate.rate_type,
            status="approved",
        )
        previous = {(l.rate_id, l.property_id): l for l in rate.conflict_resolution.conflicts_with}
        names = {o.rate_id: o.rate_name for o in others}
        links: List[ConflictLink] = []
        for finding in detect_conflicts(rate, others):
            prior = previous.get((finding.other_rate_id, None))
            links.append(
                ConflictLink(
                    rate_id=finding.other_rate_id,
                    rate_name=names.get(finding.other_rate_id),
                    conflict_type=finding.kind,
                    resolution=prior.resolution if prior is not None and prior.conflict_type == finding.kind else "alert",
                    detected_at=prior.detected_at if prior is not None else now_utc(),
                )
            )
        # links recorded by conflict resolution for a specific property survive re-detection
        links.extend(l for l in rate.conflict_resolution.conflicts_with if l.property_id is not None)
        return links

    async def validate_payload(self, payload: RateCreateIn) -> Dict[str, Any]:
        """Dry run of `create`: errors and conflicts without persisting."""

        rate = await self._build(payload, actor=None)
        errors = await self.validation_errors(rate)
        links = await self.conflict_links(rate) if not errors else []
        return {
            "valid": not errors,
            "errors": errors,
            "conflicts": [l.model_dump(mode="json") for l in links],
        }

    # ---- create / delete / duplicate ----

    async def _build(self, payload: RateCreateIn, actor: Optional[Dict[str, Any]]) -> CentralizedRate:
        group = await self._properties.get_group(payload.group_id)
        if not group:
            raise NotFound("property group not found", {"group_id": payload.group_id})

        now = now_utc()
        data = payload.model_dump(exclude={"group_id", "priority", "auto_resolve"})
        return CentralizedRate(
            rate_id=new_id("rate"),
            property_group=PropertyGroupRef(
                group_id=group["_id"],
                group_name=group.get("name"),
                properties=list(group.get("properties") or []),
            ),
            conflict_resolution=ConflictResolution(priority=payload.priority, auto_resolve=payload.auto_resolve),
            approval_status="draft",
            version=1,
            change_log=[
                ChangeLogEntry(version=1, action="created", changed_by=_actor_id(actor), changed_at=now),
            ],
            created_by=_actor_id(actor),
            created_at=now,
            updated_at=now,
            **data,
        )

    async def create(self, payload: RateCreateIn, actor: Optional[Dict[str, Any]] = None) -> CentralizedRate:
        rate = await self._build(payload, actor)
        await self._validate_or_raise(rate)
        rate.conflict_resolution.conflicts_with = await self.conflict_links(rate)

        await self._rates.insert(rate)
        logger.info("rate created id=%s group=%s type=%s", rate.rate_id, rate.property_group.group_id, rate.rate_type)
        await write_audit_log(
            self.db,
            actor=actor,
            action="rate.created",
            target_type="rate",
            target_id=rate.rate_id,
            after=rate.to_doc(),
        )
        await self._outbox.publish(rate_events(None, rate.to_doc()))
        return rate

    async def delete(self, rate_id: str, actor: Optional[Dict[str, Any]] = None) -> None:
        async with rate_lock(rate_id):
            rate = await self.get(rate_id)
            if not is_deletable(rate.approval_status):
                raise StateViolation(
                    f"rate in status '{rate.approval_status}' cannot be deleted",
                    {"rate_id": rate_id, "status": rate.approval_status},
                )
            await self._rates.delete(rate_id)
        logger.info("rate deleted id=%s", rate_id)
        await write_audit_log(
            self.db,
            actor=actor,
            action="rate.deleted",
            target_type="rate",
            target_id=rate_id,
            before=rate.to_doc(),
        )

    async def duplicate(
        self,
        rate_id: str,
        actor: Optional[Dict[str, Any]] = None,
        *,
        rate_name: Optional[str] = None,
    ) -> CentralizedRate:
        source = await self.get(rate_id)
        now = now_utc()
        copy = source.model_copy(deep=True)
        copy.rate_id = new_id("rate")
        copy.rate_name = rate_name or f"{source.rate_name} (Copy)"[:100]
        copy.approval_status = "draft"
        copy.version = 1
        copy.revision = 0
        copy.change_log = [
            ChangeLogEntry(
                version=1,
                action="duplicated",
                changed_by=_actor_id(actor),
                changed_at=now,
                reason=f"copied from {source.rate_id}",
            )
        ]
        copy.approved_by = None
        copy.approval_date = None
        copy.created_by = _actor_id(actor)
        copy.created_at = now
        copy.updated_at = now
        copy.is_active = True
        copy.distribution_settings = DistributionSettings(
            distribution_type=source.distribution_settings.distribution_type,
            target_properties=list(source.distribution_settings.target_properties),
            exclude_properties=list(source.distribution_settings.exclude_properties),
        )
        copy.per_property_rates = [
            row.model_copy(update={"sync_status": SyncState(), "synced_version": None}) for row in copy.per_property_rates
        ]
        copy.conflict_resolution = ConflictResolution(
            priority=source.priority,
            auto_resolve=source.conflict_resolution.auto_resolve,
        )
        copy.conflict_resolution.conflicts_with = await self.conflict_links(copy)

        await self._rates.insert(copy)
        await write_audit_log(
            self.db,
            actor=actor,
            action="rate.duplicated",
            target_type="rate",
            target_id=copy.rate_id,
            after=copy.to_doc(),
            meta={"source_rate_id": rate_id},
        )
        await self._outbox.publish(rate_events(None, copy.to_doc()))
        return copy

    # ---- versioned mutations ----

    async def commit_version(
        self,
        rate: CentralizedRate,
        *,
        before: Dict[str, Any],
        action: str,
        changes: List[FieldChange],
        actor: Optional[Dict[str, Any]] = None,
        reason: Optional[str] = None,
        meta: Optional[Dict[str, Any]] = None,
    ) -> CentralizedRate:
        """Persist `rate` as the next version. Caller must hold `rate_lock`."""

        now = now_utc()
        rate.version = int(before.get("version") or rate.version) + 1
        rate.updated_at = now
        rate.change_log.append(
            ChangeLogEntry(
                version=rate.version,
                action=action,
                changes=changes,
                changed_by=_actor_id(actor),
                changed_at=now,
                reason=reason,
            )
        )
        if not await self._rates.replace(rate):
            raise TransientFailure("rate was modified concurrently", {"rate_id": rate.rate_id})

        after = rate.to_doc()
        logger.info("rate %s v%d %s (%d field changes)", rate.rate_id, rate.version, action, len(changes))
        await write_audit_log(
            self.db,
            actor=actor,
            action=f"rate.{action}",
            target_type="rate",
            target_id=rate.rate_id,
            before=before,
            after=after,
            meta=meta,
        )
        await self._outbox.publish(rate_events(before, after))
        return rate

    async def update(
        self,
        rate_id: str,
        patch: RateUpdateIn,
        actor: Optional[Dict[str, Any]] = None,
    ) -> CentralizedRate:
        values = patch.model_dump(exclude_unset=True, exclude={"reason"})
        async with rate_lock(rate_id):
            rate = await self.get(rate_id)
            if rate.approval_status == "expired" or not rate.is_active:
                raise StateViolation("expired or inactive rates cannot be edited", {"rate_id": rate_id})

            before = rate.to_doc()
            updated = rate.model_copy(deep=True)
            for name, value in values.items():
                if name == "properties":
                    await self._check_members(updated, value or [])
                    updated.property_group.properties = list(value or [])
                elif name == "priority":
                    updated.conflict_resolution.priority = value
                else:
                    setattr(updated, name, getattr(patch, name))

            changes = diff_fields(rate, updated, list(values.keys()))
            if not changes:
                return rate

            material = is_material_change({c.field for c in changes})
            if material:
                await self._validate_or_raise(updated)
                if updated.approval_status == "approved":
                    updated.approval_status = "pending"
                    updated.approved_by = None
                    updated.approval_date = None
                if updated.distribution_settings.sync_status == "synced":
                    updated.distribution_settings.sync_status = "pending"
            if material or "priority" in values:
                updated.conflict_resolution.conflicts_with = await self.conflict_links(updated)

            return await self.commit_version(
                updated,
                before=before,
                action="updated",
                changes=changes,
                actor=actor,
                reason=patch.reason,
                meta={"material": material},
            )

    async def _check_members(self, rate: CentralizedRate, property_ids: List[str]) -> None:
        group = await self._properties.get_group(rate.property_group.group_id)
        members = set((group or {}).get("properties") or [])
        outside = [p for p in property_ids if p not in members]
        if outside:
            raise ValidationError("properties must belong to the group", {"property_ids": outside})

    async def transition(
        self,
        rate_id: str,
        action: str,
        actor: Optional[Dict[str, Any]] = None,
        *,
        reason: Optional[str] = None,
    ) -> CentralizedRate:
        try:
            target = target_for_action(action)
        except ValueError as exc:
            raise ValidationError(str(exc), {"action": action})

        async with rate_lock(rate_id):
            rate = await self.get(rate_id)
            try:
                validate_transition(rate.approval_status, target)
            except RateStateTransitionError as exc:
                raise StateViolation(str(exc), {"rate_id": rate_id, "from": exc.current, "to": exc.target})

            if target in ("pending", "approved"):
                await self._validate_or_raise(rate)

            before = rate.to_doc()
            updated = rate.model_copy(deep=True)
            updated.approval_status = target
            if target == "approved":
                updated.approved_by = _actor_id(actor)
                updated.approval_date = now_utc()
                updated.conflict_resolution.conflicts_with = await self.conflict_links(updated)

            return await self.commit_version(
                updated,
                before=before,
                action=f"status:{target}",
                changes=[FieldChange(field="approval_status", old_value=rate.approval_status, new_value=target)],
                actor=actor,
                reason=reason,
            )

    async def should_auto_distribute(self, rate: CentralizedRate) -> bool:
        if rate.approval_status != "approved":
            return False
        group = await self._properties.get_group(rate.property_group.group_id)
        return bool(((group or {}).get("settings") or {}).get("auto_sync"))

    # ---- per-property overrides ----

    async def add_property_override(
        self,
        rate_id: str,
        property_id: str,
        body: PropertyOverrideIn,
        actor: Optional[Dict[str, Any]] = None,
    ) -> CentralizedRate:
        async with rate_lock(rate_id):
            rate = await self.get(rate_id)
            if property_id not in rate.property_group.properties:
                raise ValidationError("property is not a member of the rate group", {"property_id": property_id})
            if rate.approval_status == "expired":
                raise StateViolation("expired rates cannot be edited", {"rate_id": rate_id})

            before = rate.to_doc()
            updated = rate.model_copy(deep=True)
            row = updated.property_rate(property_id)
            if row is None:
                names = await self._properties.property_names([property_id])
                row = PropertyRate(property_id=property_id, property_name=names.get(property_id))
                updated.per_property_rates.append(row)
            old_row = row.model_dump(mode="json")
            if body.adjustment is not None:
                row.adjustment = body.adjustment
            row.overrides = body.overrides
            row.sync_status = SyncState(status="pending")

            await self._validate_or_raise(updated)
            if updated.approval_status == "approved":
                updated.approval_status = "pending"
                updated.approved_by = None
                updated.approval_date = None

            return await self.commit_version(
                updated,
                before=before,
                action="property_override_set",
                changes=[
                    FieldChange(
                        field=f"per_property_rates.{property_id}",
                        old_value=old_row,
                        new_value=row.model_dump(mode="json"),
                    )
                ],
                actor=actor,
            )

    async def remove_property_override(
        self,
        rate_id: str,
        property_id: str,
        actor: Optional[Dict[str, Any]] = None,
    ) -> CentralizedRate:
        async with rate_lock(rate_id):
            rate = await self.get(rate_id)
            row = rate.property_rate(property_id)
            if row is None:
                raise NotFound("no per-property rate for this property", {"rate_id": rate_id, "property_id": property_id})

            before = rate.to_doc()
            updated = rate.model_copy(deep=True)
            old_row = row.model_dump(mode="json")
            cleared = row.model_copy(
                update={
                    "overrides": type(row.overrides)(),
                    "adjustment": type(row.adjustment)(),
                    "local_override": False,
                    "local_rate_id": None,
                    "sync_status": SyncState(status="pending"),
                }
            )
            if old_row == cleared.model_dump(mode="json"):
                return rate
            updated.per_property_rates = [
                cleared if r.property_id == property_id else r for r in updated.per_property_rates
            ]

            if updated.approval_status == "approved":
                updated.approval_status = "pending"
                updated.approved_by = None
                updated.approval_date = None

            return await self.commit_version(
                updated,
                before=before,
                action="property_override_removed",
                changes=[
                    FieldChange(
                        field=f"per_property_rates.{property_id}",
                        old_value=old_row,
                        new_value=cleared.model_dump(mode="json"),
                    )
                ],
                actor=actor,
            )

    # ---- reporting ----

    async def distribution_report(self, group_id: str) -> List[Dict[str, Any]]:
        rates = await self._rates.list(group_id=group_id)
        report: List[Dict[str, Any]] = []
        for rate in rates:
            counts = {"synced": 0, "failed": 0, "pending": 0}
            for row in rate.per_property_rates:
                status = row.sync_status.status
                if status == "synced" and row.synced_version != rate.version:
                    status = "pending"
                counts[status] = counts.get(status, 0) + 1
            known = {row.property_id for row in rate.per_property_rates}
            counts["pending"] += len([p for p in rate.property_group.properties if p not in known])
            total = len(rate.property_group.properties)
            report.append(
                {
                    "rate_id": rate.rate_id,
                    "rate_name": rate.rate_name,
                    "rate_type": rate.rate_type,
                    "approval_status": rate.approval_status,
                    "version": rate.version,
                    "sync_status": rate.distribution_settings.sync_status,
                    "last_sync_date": rate.distribution_settings.last_sync_date,
                    "total_properties": total,
                    **counts,
                    "sync_percentage": round(100.0 * counts["synced"] / total, 1) if total else 0.0,
                    "errors": [e.model_dump(mode="json") for e in rate.distribution_settings.sync_errors[-10:]],
                }
            )
        return report
