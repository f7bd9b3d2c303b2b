from __future__ import annotations

"""Distribution engine: pushes an approved centralized rate to properties.

A run has four phases, all under the per-rate lock:

1. plan     - resolve the target set for the mode, skip rows already synced
              at the current version, classify conflicts per target;
2. carve    - when auto-resolution makes this rate the loser, carve the
              overlap out of its validity (one new version). Validity is
              rate-wide, so a carve won at one property trims the rate
              everywhere; a carve that would leave no dates fails the
              losing targets with ConflictUnresolved instead;
3. targets  - per target, publish through the optional PropertyPublisher
              and write the per-property row, retrying transient failures
              with exponential backoff; failures stay local to the target;
4. summary  - overall sync status, one audit entry, domain events, and the
              inventory of successful targets marked dirty.

Carve-outs against *other* rates are applied after the lock is released so
two rates never wait on each other.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Set, Tuple

from app.config import (
    CHANNEL_CALL_TIMEOUT_SECONDS,
    DISTRIBUTION_BACKOFF_BASE_MS,
    DISTRIBUTION_BACKOFF_MAX_MS,
    DISTRIBUTION_MAX_RETRIES,
    INVENTORY_HORIZON_DAYS,
)
from app.domain.conflicts import ConflictFinding, classify_pair, detect_conflicts, pick_winner
from app.domain.events import rate_events
from app.domain.validity import Span, carve, effective_spans, overlapping_spans
from app.errors import (
    AppError,
    ConflictUnresolved,
    NotFound,
    StateViolation,
    TransientFailure,
    ValidationError,
)
from app.repositories.property_repository import PropertyRepository
from app.repositories.rate_repository import RateRepository
from app.schemas_rates import (
    CentralizedRate,
    ConflictLink,
    FieldChange,
    PropertyRate,
    SyncError,
    SyncState,
)
from app.services.audit import write_audit_log
from app.services.event_outbox import EventOutbox
from app.services.inventory_ledger import InventoryLedger
from app.services.rate_store import RateStore, rate_lock
from app.services.resilience import run_with_deadline, with_retries
from app.utils import now_utc


logger = logging.getLogger(__name__)

_MAX_SYNC_ERRORS = 50
_RESOLVED = {"ignore", "override", "merge"}


class PropertyPublisher(Protocol):
    """External adapter that installs a rate at a property (PMS / channel manager)."""

    async def publish(self, rate: CentralizedRate, property_id: str) -> None:
        ...


# ---- Results ----


@dataclass
class TargetFailure:
    property_id: str
    error: str
    code: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"property_id": self.property_id, "error": self.error, "code": self.code, "message": self.message}


@dataclass
class TargetPlan:
    property_id: str
    action: str  # create | update | up_to_date | local_override | superseded | blocked
    conflicts: List[ConflictFinding] = field(default_factory=list)
    carve_self: List[Span] = field(default_factory=list)
    carve_others: List[Tuple[str, Span]] = field(default_factory=list)
    links: List[ConflictLink] = field(default_factory=list)
    clear_local_override: bool = False
    reason: Optional[str] = None

    @property
    def runnable(self) -> bool:
        return self.action in ("create", "update")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "property_id": self.property_id,
            "action": self.action,
            "reason": self.reason,
            "conflicts": [c.to_dict() for c in self.conflicts],
            "carve_self": [{"start": s.isoformat(), "end": e.isoformat()} for s, e in self.carve_self],
            "carve_others": [
                {"rate_id": rid, "start": s.isoformat(), "end": e.isoformat()} for rid, (s, e) in self.carve_others
            ],
        }


@dataclass
class DistributionResult:
    rate_id: str
    mode: str
    targets: List[str] = field(default_factory=list)
    success: List[str] = field(default_factory=list)
    failed: List[TargetFailure] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)
    skipped: List[Dict[str, Any]] = field(default_factory=list)
    conflicts: List[Dict[str, Any]] = field(default_factory=list)
    sync_status: str = "pending"
    changed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rate_id": self.rate_id,
            "mode": self.mode,
            "targets": list(self.targets),
            "success": list(self.success),
            "failed": [f.to_dict() for f in self.failed],
            "unchanged": list(self.unchanged),
            "skipped": list(self.skipped),
            "conflicts": list(self.conflicts),
            "sync_status": self.sync_status,
            "changed": self.changed,
        }


def overall_status(succeeded: int, failed: int) -> str:
    if failed == 0:
        return "synced"
    if succeeded == 0:
        return "failed"
    return "partial"


class DistributionEngine:
    def __init__(
        self,
        db,
        *,
        store: Optional[RateStore] = None,
        rates: Optional[RateRepository] = None,
        ledger: Optional[InventoryLedger] = None,
        publisher: Optional[PropertyPublisher] = None,
        outbox: Optional[EventOutbox] = None,
        max_retries: int = DISTRIBUTION_MAX_RETRIES,
        backoff_base_ms: int = DISTRIBUTION_BACKOFF_BASE_MS,
        backoff_max_ms: int = DISTRIBUTION_BACKOFF_MAX_MS,
        timeout_seconds: float = CHANNEL_CALL_TIMEOUT_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.db = db
        self._outbox = outbox or EventOutbox(db)
        self._store = store or RateStore(db, outbox=self._outbox)
        self._rates = rates or RateRepository(db)
        self._properties = PropertyRepository(db)
        self._ledger = ledger or InventoryLedger(db)
        self._publisher = publisher
        self._max_retries = max(1, max_retries)
        self._backoff_base_ms = backoff_base_ms
        self._backoff_max_ms = backoff_max_ms
        self._timeout = timeout_seconds
        self._sleep = sleep

    # ---- planning ----

    @staticmethod
    def _targets(
        rate: CentralizedRate,
        mode: str,
        property_ids: Optional[List[str]],
        exclude: List[str],
    ) -> List[str]:
        members = list(rate.property_group.properties)
        if mode == "selective":
            wanted = property_ids if property_ids is not None else rate.distribution_settings.target_properties
            if not wanted:
                raise ValidationError("selective distribution needs target property ids")
            wanted_set = set(wanted)
            targets = [p for p in members if p in wanted_set]
        else:
            targets = members

        excluded = set(exclude) | set(rate.distribution_settings.exclude_properties)
        return [p for p in targets if p not in excluded]

    async def _competitors(self, rate: CentralizedRate) -> List[CentralizedRate]:
        others = await self._rates.list(
            group_id=rate.property_group.group_id,
            rate_type=rate.rate_type,
            status="approved",
        )
        return [o for o in others if o.rate_id != rate.rate_id]

    async def _room_types_by_property(self, property_ids: List[str]) -> Dict[str, Set[str]]:
        out: Dict[str, Set[str]] = {}
        for pid in property_ids:
            out[pid] = {rt["_id"] for rt in await self._properties.list_room_types(pid)}
        return out

    @staticmethod
    def _is_resolved(rate: CentralizedRate, finding: ConflictFinding) -> bool:
        for link in rate.conflict_resolution.conflicts_with:
            if link.rate_id != finding.other_rate_id or link.resolution not in _RESOLVED:
                continue
            if link.property_id is None or link.property_id == finding.property_id:
                return True
        return False

    def _plan_target(
        self,
        rate: CentralizedRate,
        pid: str,
        *,
        mode: str,
        others: List[CentralizedRate],
        room_types: Optional[Set[str]],
        auto_resolve: bool,
        fail_on_conflict: bool,
        force: bool,
        effective_date: Optional[date] = None,
    ) -> TargetPlan:
        row = rate.property_rate(pid)
        if mode == "inheritance" and row is not None and row.local_override:
            return TargetPlan(pid, "local_override", reason="property keeps its local rate")
        if (
            not force
            and row is not None
            and row.sync_status.status == "synced"
            and row.synced_version == rate.version
        ):
            return TargetPlan(pid, "up_to_date")

        plan = TargetPlan(pid, "create" if row is None else "update")
        if mode == "override" and row is not None and row.local_override:
            plan.clear_local_override = True

        findings = detect_conflicts(rate, others, property_id=pid, property_room_types=room_types)
        by_id = {o.rate_id: o for o in others}
        for finding in findings:
            if self._is_resolved(rate, finding):
                continue
            overlap = list(finding.overlap)
            if effective_date is not None:
                overlap = [(s, e) for s, e in overlap if e >= effective_date]
                if not overlap:
                    continue
            plan.conflicts.append(finding)
            other = by_id[finding.other_rate_id]

            if mode == "override":
                plan.links.append(self._link(other, finding, "override", pid))
                continue

            if finding.kind == "duplicate":
                if finding.winner_rate_id != rate.rate_id:
                    plan.action = "superseded"
                    plan.reason = f"duplicate of higher priority rate {finding.other_rate_id}"
                    return plan
                plan.links.append(self._link(other, finding, "override", pid))
                continue

            if not finding.auto_resolvable or not auto_resolve:
                plan.links.append(self._link(other, finding, "alert", pid))
                if fail_on_conflict:
                    plan.action = "blocked"
                    plan.reason = f"unresolved {finding.kind} conflict with {finding.other_rate_id}"
                    return plan
                continue

            # overlap, auto-resolve: the loser gives up the overlapping days
            if finding.loser_rate_id != rate.rate_id:
                plan.carve_others.extend((other.rate_id, span) for span in overlap)
            else:
                plan.carve_self.extend(overlap)
            plan.links.append(self._link(other, finding, "merge", pid))
        return plan

    @staticmethod
    def _link(other: CentralizedRate, finding: ConflictFinding, resolution: str, pid: str) -> ConflictLink:
        return ConflictLink(
            rate_id=other.rate_id,
            rate_name=other.rate_name,
            conflict_type=finding.kind,
            resolution=resolution,
            property_id=pid,
            detected_at=now_utc(),
        )

    async def _plan(
        self,
        rate: CentralizedRate,
        *,
        mode: str,
        property_ids: Optional[List[str]],
        exclude: List[str],
        auto_resolve: bool,
        fail_on_conflict: bool,
        force: bool,
        effective_date: Optional[date] = None,
    ) -> Tuple[List[str], List[TargetPlan]]:
        targets = self._targets(rate, mode, property_ids, exclude)
        others = await self._competitors(rate)
        room_types = await self._room_types_by_property(targets)
        plans = [
            self._plan_target(
                rate,
                pid,
                mode=mode,
                others=others,
                room_types=room_types.get(pid) or None,
                auto_resolve=auto_resolve,
                fail_on_conflict=fail_on_conflict,
                force=force,
                effective_date=effective_date,
            )
            for pid in targets
        ]
        self._block_full_carve(rate, plans)
        return targets, plans

    @staticmethod
    def _block_full_carve(rate: CentralizedRate, plans: List[TargetPlan]) -> None:
        """Losing every valid date to auto-resolution fails those targets instead of the run."""

        spans = [s for p in plans for s in p.carve_self]
        if not spans:
            return
        validity = rate.validity_period
        for span in spans:
            validity = carve(validity, span)
        if effective_spans(validity):
            return
        for plan in plans:
            if not plan.carve_self:
                continue
            winners = sorted({c.other_rate_id for c in plan.conflicts})
            plan.action = "blocked"
            plan.reason = f"overlap with {', '.join(winners)} leaves no valid dates"
            plan.carve_self = []
            plan.carve_others = []

    # ---- per target ----

    async def _sync_target(self, rate: CentralizedRate, plan: TargetPlan, names: Dict[str, str]) -> Optional[TargetFailure]:
        pid = plan.property_id
        existing = rate.property_rate(pid)
        row = existing.model_copy(deep=True) if existing is not None else PropertyRate(
            property_id=pid,
            property_name=names.get(pid),
        )
        if plan.clear_local_override:
            row.local_override = False
            row.local_rate_id = None

        async def attempt() -> None:
            if self._publisher is not None:
                await run_with_deadline(
                    self._publisher.publish(rate, pid),
                    self._timeout,
                    label=f"publish {rate.rate_id} to {pid}",
                )
            synced = row.model_copy(
                update={
                    "sync_status": SyncState(status="synced", last_sync=now_utc()),
                    "synced_version": rate.version,
                }
            )
            await self._rates.upsert_property_row(rate.rate_id, synced)

        try:
            await with_retries(
                attempt,
                attempts=self._max_retries,
                base_delay_ms=self._backoff_base_ms,
                max_delay_ms=self._backoff_max_ms,
                sleep=self._sleep,
                label=f"distribute {rate.rate_id} -> {pid}",
            )
            return None
        except AppError as exc:
            failure = TargetFailure(pid, type(exc).__name__, exc.code, exc.message)
        except Exception as exc:  # adapter faults are contained per target
            logger.exception("distribution to %s raised", pid)
            failure = TargetFailure(pid, type(exc).__name__, "unexpected_error", str(exc))

        failed = row.model_copy(
            update={
                "sync_status": SyncState(
                    status="failed",
                    last_sync=now_utc(),
                    error={"error": failure.error, "code": failure.code, "message": failure.message},
                )
            }
        )
        try:
            await self._rates.upsert_property_row(rate.rate_id, failed)
        except TransientFailure as exc:
            logger.warning("could not record failure for %s/%s: %s", rate.rate_id, pid, exc.message)
        return failure

    async def _mark_inventory_dirty(self, rate: CentralizedRate, property_ids: List[str], today: date) -> None:
        horizon_end = today + timedelta(days=INVENTORY_HORIZON_DAYS)
        room_type_ids = [rt.room_type_id for rt in rate.room_types] or None
        for span_start, span_end in effective_spans(rate.validity_period):
            start = max(span_start, today)
            end = min(span_end, horizon_end)
            if start > end:
                continue
            for pid in property_ids:
                try:
                    await self._ledger.mark_dirty(pid, room_type_ids, start, end)
                except TransientFailure as exc:
                    logger.warning("mark_dirty failed for %s/%s: %s", rate.rate_id, pid, exc.message)

    # ---- distribute ----

    async def distribute(
        self,
        rate_id: str,
        *,
        mode: Optional[str] = None,
        property_ids: Optional[List[str]] = None,
        exclude_property_ids: Optional[List[str]] = None,
        fail_on_conflict: bool = False,
        auto_resolve: Optional[bool] = None,
        force: bool = False,
        actor: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> DistributionResult:
        now = now or now_utc()
        deferred: List[Tuple[str, Span]] = []

        async with rate_lock(rate_id):
            rate = await self._store.get(rate_id)
            if rate.approval_status != "approved" or not rate.is_active:
                raise StateViolation(
                    "only approved rates can be distributed",
                    {"rate_id": rate_id, "status": rate.approval_status},
                )

            mode = mode or rate.distribution_settings.distribution_type
            auto = rate.conflict_resolution.auto_resolve if auto_resolve is None else auto_resolve
            targets, plans = await self._plan(
                rate,
                mode=mode,
                property_ids=property_ids,
                exclude=list(exclude_property_ids or []),
                auto_resolve=auto,
                fail_on_conflict=fail_on_conflict,
                force=force,
            )
            result = DistributionResult(rate_id=rate_id, mode=mode, targets=targets)
            for plan in plans:
                result.conflicts.extend(c.to_dict() for c in plan.conflicts)
                if plan.action == "up_to_date":
                    result.unchanged.append(plan.property_id)
                elif plan.action in ("local_override", "superseded"):
                    result.skipped.append({"property_id": plan.property_id, "reason": plan.action, "detail": plan.reason})

            runnable = [p for p in plans if p.runnable or p.action == "blocked"]
            if not runnable:
                result.sync_status = rate.distribution_settings.sync_status
                logger.info("distribute %s: nothing to do (%d up to date)", rate_id, len(result.unchanged))
                return result

            before = rate.to_doc()
            result.changed = True

            # phase 2: this rate loses some auto-resolved overlaps
            carve_self = [s for p in plans for s in p.carve_self]
            if carve_self:
                rate = await self._carve_locked(rate, carve_self, actor, reason="auto-resolved overlap during distribution")

            await self._rates.set_distribution_state(
                rate.rate_id,
                rate.distribution_settings.model_copy(update={"sync_status": "syncing"}),
            )

            names = await self._properties.property_names([p.property_id for p in runnable])
            errors: List[SyncError] = list(rate.distribution_settings.sync_errors)
            for plan in runnable:
                if plan.action == "blocked":
                    exc = ConflictUnresolved(plan.reason or "unresolved conflict", {"property_id": plan.property_id})
                    failure = TargetFailure(plan.property_id, type(exc).__name__, exc.code, exc.message)
                    blocked_row = (rate.property_rate(plan.property_id) or PropertyRate(
                        property_id=plan.property_id, property_name=names.get(plan.property_id)
                    )).model_copy(deep=True)
                    blocked_row.sync_status = SyncState(
                        status="failed", last_sync=now, error={"error": failure.error, "code": failure.code, "message": failure.message}
                    )
                    try:
                        await self._rates.upsert_property_row(rate.rate_id, blocked_row)
                    except TransientFailure as write_exc:
                        logger.warning("could not record conflict for %s/%s: %s", rate_id, plan.property_id, write_exc.message)
                else:
                    failure = await self._sync_target(rate, plan, names)

                if failure is None:
                    result.success.append(plan.property_id)
                    deferred.extend(c for c in plan.carve_others if c not in deferred)
                else:
                    result.failed.append(failure)
                    errors.append(
                        SyncError(property_id=failure.property_id, code=failure.code, error=failure.message, timestamp=now)
                    )
                    logger.warning("distribute %s -> %s failed: %s", rate_id, failure.property_id, failure.message)

            # phase 4: summary
            result.sync_status = overall_status(len(result.success) + len(result.unchanged), len(result.failed))
            links = self._merge_links(rate, [l for p in plans for l in p.links])
            settings = rate.distribution_settings.model_copy(
                update={
                    "distribution_type": mode,
                    "sync_status": result.sync_status,
                    "last_sync_date": now,
                    "sync_errors": errors[-_MAX_SYNC_ERRORS:],
                    "target_properties": list(property_ids) if mode == "selective" and property_ids else rate.distribution_settings.target_properties,
                }
            )
            await self._rates.set_distribution_state(
                rate.rate_id,
                settings,
                extra={"conflict_resolution.conflicts_with": [l.model_dump(mode="json") for l in links]},
            )

            after_rate = await self._store.get(rate_id)
            after = after_rate.to_doc()
            await write_audit_log(
                self.db,
                actor=actor,
                action="rate.distributed",
                target_type="rate",
                target_id=rate_id,
                before=before,
                after=after,
                meta={
                    "mode": mode,
                    "success": result.success,
                    "failed": [f.to_dict() for f in result.failed],
                    "sync_status": result.sync_status,
                },
            )
            await self._outbox.publish(rate_events(before, after))
            await self._mark_inventory_dirty(after_rate, result.success, now.date())

        logger.info(
            "distribute %s mode=%s success=%d failed=%d unchanged=%d status=%s",
            rate_id, mode, len(result.success), len(result.failed), len(result.unchanged), result.sync_status,
        )

        carves: Dict[str, List[Span]] = {}
        for other_id, span in deferred:
            carves.setdefault(other_id, []).append(span)
        for other_id, spans in carves.items():
            try:
                await self._carve(other_id, spans, actor, reason=f"auto-resolved overlap with {rate_id}")
            except AppError as exc:
                logger.warning("deferred carve of %s failed: %s", other_id, exc.message)
        return result

    @staticmethod
    def _merge_links(rate: CentralizedRate, new_links: List[ConflictLink]) -> List[ConflictLink]:
        merged: Dict[Tuple[str, Optional[str]], ConflictLink] = {
            (l.rate_id, l.property_id): l for l in rate.conflict_resolution.conflicts_with
        }
        for link in new_links:
            merged[(link.rate_id, link.property_id)] = link
        return list(merged.values())

    async def preview_distribution(
        self,
        rate_id: str,
        property_ids: Optional[List[str]] = None,
        effective_date: Optional[date] = None,
        *,
        mode: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Run the planning pipeline without writing anything."""

        rate = await self._store.get(rate_id)
        mode = mode or ("selective" if property_ids else rate.distribution_settings.distribution_type)
        targets, plans = await self._plan(
            rate,
            mode=mode,
            property_ids=property_ids,
            exclude=[],
            auto_resolve=rate.conflict_resolution.auto_resolve,
            fail_on_conflict=False,
            force=False,
            effective_date=effective_date,
        )
        conflicts = [c.to_dict() for p in plans for c in p.conflicts]
        return {
            "rate_id": rate_id,
            "mode": mode,
            "distributable": rate.approval_status == "approved" and rate.is_active,
            "effective_date": effective_date.isoformat() if effective_date else None,
            "targets": targets,
            "outcomes": [p.to_dict() for p in plans],
            "conflict_summary": {
                "total": len(conflicts),
                "by_kind": {k: sum(1 for c in conflicts if c["kind"] == k) for k in ("overlap", "duplicate", "priority")},
            },
        }

    # ---- group sync ----

    async def sync_group_rates(
        self,
        group_id: str,
        *,
        rate_ids: Optional[List[str]] = None,
        force: bool = False,
        actor: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Distribute the group's approved rates, or exactly `rate_ids` when given.

        Without `rate_ids` only rates with pending or stale rows run unless
        `force` is set. Explicit ids always run; ids from another group are
        rejected before anything is distributed.
        """

        group = await self._properties.get_group(group_id)
        if not group:
            raise NotFound("property group not found", {"group_id": group_id})

        if rate_ids:
            rates = [await self._store.get(rid) for rid in dict.fromkeys(rate_ids)]
            foreign = [r.rate_id for r in rates if r.property_group.group_id != group_id]
            if foreign:
                raise ValidationError("rates do not belong to the group", {"group_id": group_id, "rate_ids": foreign})
        else:
            rates = await self._rates.list(group_id=group_id, status="approved")

        successful: List[Dict[str, Any]] = []
        failed: List[Dict[str, Any]] = []
        skipped: List[str] = []
        synced = 0
        failed_targets = 0
        for rate in rates:
            if not rate_ids and not force and not self._needs_sync(rate):
                skipped.append(rate.rate_id)
                continue
            try:
                outcome = await self.distribute(rate.rate_id, force=force, actor=actor)
            except AppError as exc:
                logger.warning("group sync %s: rate %s failed: %s", group_id, rate.rate_id, exc.message)
                failed.append({"rate_id": rate.rate_id, "rate_name": rate.rate_name, "error": exc.to_dict()["error"]})
                continue
            synced += len(outcome.success)
            failed_targets += len(outcome.failed)
            successful.append({"rate_id": rate.rate_id, "rate_name": rate.rate_name, "result": outcome.to_dict()})

        return {
            "group_id": group_id,
            "total": len(rates),
            "processed": len(successful) + len(failed),
            "skipped": skipped,
            "successful": successful,
            "failed": failed,
            "summary": {
                "total_properties": len(group.get("properties") or []),
                "total_synced": synced,
                "total_failed": failed_targets,
            },
        }

    @staticmethod
    def _needs_sync(rate: CentralizedRate) -> bool:
        rows = {r.property_id: r for r in rate.per_property_rates}
        for pid in rate.property_group.properties:
            row = rows.get(pid)
            if row is None or row.sync_status.status == "pending":
                return True
            if row.sync_status.status == "synced" and row.synced_version != rate.version:
                return True
        return False

    # ---- conflicts ----

    async def detect_conflicts(self, rate_id: str, property_id: Optional[str] = None) -> List[Dict[str, Any]]:
        rate = await self._store.get(rate_id)
        others = await self._competitors(rate)
        room_types = None
        if property_id is not None:
            room_types = (await self._room_types_by_property([property_id])).get(property_id) or None
        findings = detect_conflicts(rate, others, property_id=property_id, property_room_types=room_types)
        out = []
        for f in findings:
            item = f.to_dict()
            item["resolved"] = self._is_resolved(rate, f)
            out.append(item)
        return out

    async def _carve_locked(
        self,
        rate: CentralizedRate,
        spans: List[Span],
        actor: Optional[Dict[str, Any]],
        *,
        reason: str,
    ) -> CentralizedRate:
        before = rate.to_doc()
        updated = rate.model_copy(deep=True)
        validity = updated.validity_period
        for span in spans:
            validity = carve(validity, span)
        remaining = effective_spans(validity)
        if not remaining:
            raise ValidationError("carve-out would leave the rate with no valid dates", {"rate_id": rate.rate_id})
        if remaining == effective_spans(rate.validity_period):
            return rate
        updated.validity_period = validity
        return await self._store.commit_version(
            updated,
            before=before,
            action="conflict_exception",
            changes=[
                FieldChange(
                    field="validity_period.exclusions",
                    old_value=[e.model_dump(mode="json") for e in rate.validity_period.exclusions],
                    new_value=[e.model_dump(mode="json") for e in validity.exclusions],
                )
            ],
            actor=actor,
            reason=reason,
        )

    async def _carve(self, rate_id: str, spans: List[Span], actor: Optional[Dict[str, Any]], *, reason: str) -> CentralizedRate:
        async with rate_lock(rate_id):
            rate = await self._store.get(rate_id)
            return await self._carve_locked(rate, spans, actor, reason=reason)

    async def resolve_conflict(
        self,
        rate_id: str,
        other_rate_id: str,
        action: str,
        actor: Optional[Dict[str, Any]] = None,
        *,
        carve_rate_id: Optional[str] = None,
        property_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        if rate_id == other_rate_id:
            raise ValidationError("a rate cannot conflict with itself")

        first, second = sorted([rate_id, other_rate_id])
        async with rate_lock(first):
            async with rate_lock(second):
                rate = await self._store.get(rate_id)
                other = await self._store.get(other_rate_id)
                if rate.property_group.group_id != other.property_group.group_id or rate.rate_type != other.rate_type:
                    raise ValidationError("rates are not in the same group and rate type")
                overlap = overlapping_spans(rate.validity_period, other.validity_period)
                if not overlap:
                    raise StateViolation("rates do not overlap", {"rate_id": rate_id, "other_rate_id": other_rate_id})

                if action == "accept_centralized":
                    rate, other = await self._accept_centralized(rate, other, actor)
                elif action == "accept_property":
                    if not property_id:
                        raise ValidationError("accept_property needs property_id")
                    rate = await self._accept_property(rate, other, property_id, actor)
                elif action == "create_exception":
                    rate, other = await self._create_exception(rate, other, overlap, carve_rate_id, actor)
                else:
                    raise ValidationError(f"unknown resolution action: {action}", {"action": action})

        logger.info("conflict %s <-> %s resolved via %s", rate_id, other_rate_id, action)
        return {"action": action, "rate": rate.to_doc(), "other": other.to_doc()}

    @staticmethod
    def _with_link(rate: CentralizedRate, other: CentralizedRate, kind: str, resolution: str, property_id: Optional[str] = None) -> CentralizedRate:
        updated = rate.model_copy(deep=True)
        links = [
            l for l in updated.conflict_resolution.conflicts_with
            if not (l.rate_id == other.rate_id and l.property_id == property_id)
        ]
        links.append(
            ConflictLink(
                rate_id=other.rate_id,
                rate_name=other.rate_name,
                conflict_type=kind,
                resolution=resolution,
                property_id=property_id,
                detected_at=now_utc(),
            )
        )
        updated.conflict_resolution.conflicts_with = links
        return updated

    @staticmethod
    def _kind(rate: CentralizedRate, other: CentralizedRate) -> str:
        finding = classify_pair(rate, other)
        return finding.kind if finding is not None else "overlap"

    async def _accept_centralized(
        self,
        rate: CentralizedRate,
        other: CentralizedRate,
        actor: Optional[Dict[str, Any]],
    ) -> Tuple[CentralizedRate, CentralizedRate]:
        kind = self._kind(rate, other)
        winner = self._with_link(rate, other, kind, "override")
        winner.conflict_resolution.priority = 10
        loser = self._with_link(other, rate, kind, "override")
        loser.conflict_resolution.priority = 1

        winner = await self._store.commit_version(
            winner,
            before=rate.to_doc(),
            action="conflict_accept_centralized",
            changes=[FieldChange(field="priority", old_value=rate.priority, new_value=10)],
            actor=actor,
            reason=f"wins over {other.rate_id}",
        )
        loser = await self._store.commit_version(
            loser,
            before=other.to_doc(),
            action="conflict_accept_centralized",
            changes=[FieldChange(field="priority", old_value=other.priority, new_value=1)],
            actor=actor,
            reason=f"yields to {rate.rate_id}",
        )
        return winner, loser

    async def _accept_property(
        self,
        rate: CentralizedRate,
        other: CentralizedRate,
        property_id: str,
        actor: Optional[Dict[str, Any]],
    ) -> CentralizedRate:
        if property_id not in rate.property_group.properties:
            raise ValidationError("property is not a member of the rate group", {"property_id": property_id})
        updated = self._with_link(rate, other, self._kind(rate, other), "ignore", property_id)
        row = updated.property_rate(property_id)
        if row is None:
            row = PropertyRate(property_id=property_id)
            updated.per_property_rates.append(row)
        old_row = row.model_dump(mode="json")
        row.local_override = True
        row.local_rate_id = other.rate_id
        return await self._store.commit_version(
            updated,
            before=rate.to_doc(),
            action="conflict_accept_property",
            changes=[
                FieldChange(field=f"per_property_rates.{property_id}", old_value=old_row, new_value=row.model_dump(mode="json"))
            ],
            actor=actor,
            reason=f"property {property_id} keeps {other.rate_id}",
        )

    async def _create_exception(
        self,
        rate: CentralizedRate,
        other: CentralizedRate,
        overlap: List[Span],
        carve_rate_id: Optional[str],
        actor: Optional[Dict[str, Any]],
    ) -> Tuple[CentralizedRate, CentralizedRate]:
        if carve_rate_id is None:
            winner = pick_winner(rate, other)
            carve_rate_id = other.rate_id if winner.rate_id == rate.rate_id else rate.rate_id
        if carve_rate_id not in (rate.rate_id, other.rate_id):
            raise ValidationError("carve_rate_id must be one of the two rates", {"carve_rate_id": carve_rate_id})

        kind = self._kind(rate, other)
        results: Dict[str, CentralizedRate] = {}
        for current, counterpart in ((rate, other), (other, rate)):
            updated = self._with_link(current, counterpart, kind, "merge")
            changes: List[FieldChange] = []
            if current.rate_id == carve_rate_id:
                validity = updated.validity_period
                for span in overlap:
                    validity = carve(validity, span)
                if not effective_spans(validity):
                    raise ValidationError("carve-out would leave the rate with no valid dates", {"rate_id": current.rate_id})
                updated.validity_period = validity
                changes.append(
                    FieldChange(
                        field="validity_period.exclusions",
                        old_value=[e.model_dump(mode="json") for e in current.validity_period.exclusions],
                        new_value=[e.model_dump(mode="json") for e in validity.exclusions],
                    )
                )
            else:
                changes.append(FieldChange(field="conflict_resolution.conflicts_with", new_value=counterpart.rate_id))
            results[current.rate_id] = await self._store.commit_version(
                updated,
                before=current.to_doc(),
                action="conflict_exception",
                changes=changes,
                actor=actor,
                reason=f"exception carved from {carve_rate_id}",
            )
        return results[rate.rate_id], results[other.rate_id]
