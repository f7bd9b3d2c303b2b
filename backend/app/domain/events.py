from __future__ import annotations

"""Domain events derived from document state changes.

Each function is pure: (before, after) -> list of events. Persisting and
dispatching them is the outbox's job (app.services.event_outbox).
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class DomainEvent:
    type: str
    aggregate_type: str
    aggregate_id: str
    payload: Dict[str, Any] = field(default_factory=dict)


_STATUS_EVENTS = {
    "pending": "rate.submitted",
    "approved": "rate.approved",
    "rejected": "rate.rejected",
    "expired": "rate.expired",
}

_SYNC_EVENTS = {
    "partial": "rate.sync_partial",
    "failed": "rate.sync_failed",
}


def _sync_status(doc: Optional[Dict[str, Any]]) -> Optional[str]:
    if not doc:
        return None
    return (doc.get("distribution_settings") or {}).get("sync_status")


def rate_events(before: Optional[Dict[str, Any]], after: Dict[str, Any]) -> List[DomainEvent]:
    rate_id = str(after.get("rate_id") or after.get("_id"))
    events: List[DomainEvent] = []

    if before is None:
        events.append(DomainEvent("rate.created", "rate", rate_id, {"version": after.get("version", 1)}))
        return events

    old_status = before.get("approval_status")
    new_status = after.get("approval_status")
    if old_status != new_status and new_status in _STATUS_EVENTS:
        events.append(
            DomainEvent(_STATUS_EVENTS[new_status], "rate", rate_id, {"from": old_status, "to": new_status})
        )

    old_version = int(before.get("version") or 1)
    new_version = int(after.get("version") or 1)
    if new_version > old_version:
        events.append(DomainEvent("rate.version_bumped", "rate", rate_id, {"from": old_version, "to": new_version}))

    old_sync = _sync_status(before)
    new_sync = _sync_status(after)
    if old_sync != new_sync and new_sync in _SYNC_EVENTS:
        errors = (after.get("distribution_settings") or {}).get("sync_errors") or []
        events.append(DomainEvent(_SYNC_EVENTS[new_sync], "rate", rate_id, {"errors": errors[-10:]}))

    return events


def booking_events(before: Optional[Dict[str, Any]], after: Dict[str, Any]) -> List[DomainEvent]:
    booking_id = str(after.get("_id") or after.get("booking_id"))
    summary = {
        "property_id": after.get("property_id"),
        "room_type_id": after.get("room_type_id"),
        "check_in": after.get("check_in"),
        "check_out": after.get("check_out"),
        "source": after.get("source"),
    }

    if before is None:
        return [DomainEvent("booking.created", "booking", booking_id, summary)]

    if before.get("status") != "cancelled" and after.get("status") == "cancelled":
        return [DomainEvent("booking.cancelled", "booking", booking_id, summary)]

    stay_fields = ("room_type_id", "check_in", "check_out", "rooms")
    if after.get("status") == "confirmed" and any(before.get(f) != after.get(f) for f in stay_fields):
        changed = {f: {"before": before.get(f), "after": after.get(f)} for f in stay_fields if before.get(f) != after.get(f)}
        return [DomainEvent("booking.modified", "booking", booking_id, {**summary, "changes": changed})]

    return []
