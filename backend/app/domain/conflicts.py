from __future__ import annotations

"""Conflict detection between centralized rates.

Two rates conflict when they belong to the same property group, share the
same rate type and their effective validity windows overlap. When checked
for a specific property, their property-effective room-type sets must also
intersect.

Classification:
- duplicate: base price, stay rules and channel configuration are
  materially identical; auto-resolved by keeping the higher priority rate
  (tie broken by the newer created_at).
- priority: both rates carry the same priority, so neither outranks the
  other; always surfaced, never auto-resolved.
- overlap: everything else; surfaced by default, auto-resolvable by
  carving the overlap out of the lower priority rate.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from app.domain.validity import Span, overlapping_spans
from app.schemas_rates import CentralizedRate


@dataclass(frozen=True)
class ConflictFinding:
    rate_id: str
    other_rate_id: str
    kind: str  # overlap | duplicate | priority
    overlap: tuple[Span, ...] = field(default_factory=tuple)
    winner_rate_id: Optional[str] = None
    property_id: Optional[str] = None

    @property
    def auto_resolvable(self) -> bool:
        return self.kind != "priority"

    @property
    def loser_rate_id(self) -> Optional[str]:
        if self.winner_rate_id is None:
            return None
        return self.other_rate_id if self.winner_rate_id == self.rate_id else self.rate_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "rate_id": self.rate_id,
            "other_rate_id": self.other_rate_id,
            "kind": self.kind,
            "overlap": [{"start": s.isoformat(), "end": e.isoformat()} for s, e in self.overlap],
            "winner_rate_id": self.winner_rate_id,
            "property_id": self.property_id,
        }


def _created(rate: CentralizedRate) -> datetime:
    if rate.created_at is None:
        return datetime.min.replace(tzinfo=timezone.utc)
    if rate.created_at.tzinfo is None:
        return rate.created_at.replace(tzinfo=timezone.utc)
    return rate.created_at


def pick_winner(a: CentralizedRate, b: CentralizedRate) -> CentralizedRate:
    """Higher priority number wins; tie broken by newer created_at."""
    if a.priority != b.priority:
        return a if a.priority > b.priority else b
    return a if _created(a) >= _created(b) else b


def _stay_signature(rate: CentralizedRate) -> tuple:
    s = rate.stay_restrictions
    return (
        s.minimum_stay,
        s.maximum_stay,
        tuple(sorted(s.closed_to_arrival)),
        tuple(sorted(s.closed_to_departure)),
        tuple(sorted((t.start_date, t.end_date, t.minimum_stay) for t in s.stay_through)),
    )


def _channel_signature(rate: CentralizedRate) -> tuple:
    return tuple(
        sorted(
            (c.channel, c.markup.type, float(c.markup.value), c.commission.type, float(c.commission.value), c.is_active)
            for c in rate.channels
        )
    )


def materially_identical(a: CentralizedRate, b: CentralizedRate) -> bool:
    return (
        float(a.base_pricing.base_price) == float(b.base_pricing.base_price)
        and a.base_pricing.currency == b.base_pricing.currency
        and _stay_signature(a) == _stay_signature(b)
        and _channel_signature(a) == _channel_signature(b)
    )


def _effective_room_types(rate: CentralizedRate, property_room_types: Optional[set[str]]) -> Optional[set[str]]:
    """Room types the rate sells at a property; None means unrestricted."""
    ids = {rt.room_type_id for rt in rate.room_types}
    if not ids:
        return property_room_types
    if property_room_types is None:
        return ids
    return ids & property_room_types


def room_types_intersect(
    a: CentralizedRate,
    b: CentralizedRate,
    property_room_types: Optional[set[str]] = None,
) -> bool:
    ra = _effective_room_types(a, property_room_types)
    rb = _effective_room_types(b, property_room_types)
    if ra is None or rb is None:
        # unrestricted side: intersects unless the other side is empty
        other = rb if ra is None else ra
        return other is None or bool(other)
    return bool(ra & rb)


def classify_pair(
    a: CentralizedRate,
    b: CentralizedRate,
    *,
    property_id: Optional[str] = None,
    property_room_types: Optional[set[str]] = None,
) -> Optional[ConflictFinding]:
    if a.rate_id == b.rate_id:
        return None
    if a.property_group.group_id != b.property_group.group_id or a.rate_type != b.rate_type:
        return None

    overlap = overlapping_spans(a.validity_period, b.validity_period)
    if not overlap:
        return None

    if property_id is not None and not room_types_intersect(a, b, property_room_types):
        return None

    if materially_identical(a, b):
        kind = "duplicate"
        winner: Optional[str] = pick_winner(a, b).rate_id
    elif a.priority == b.priority:
        kind = "priority"
        winner = None
    else:
        kind = "overlap"
        winner = pick_winner(a, b).rate_id

    return ConflictFinding(
        rate_id=a.rate_id,
        other_rate_id=b.rate_id,
        kind=kind,
        overlap=tuple(overlap),
        winner_rate_id=winner,
        property_id=property_id,
    )


def detect_conflicts(
    rate: CentralizedRate,
    others: Iterable[CentralizedRate],
    *,
    property_id: Optional[str] = None,
    property_room_types: Optional[set[str]] = None,
) -> list[ConflictFinding]:
    """Classify `rate` against every approved, active rate in `others`."""

    findings: list[ConflictFinding] = []
    for other in others:
        if other.approval_status != "approved" or not other.is_active:
            continue
        if property_id is not None and property_id not in other.property_group.properties:
            continue
        finding = classify_pair(
            rate,
            other,
            property_id=property_id,
            property_room_types=property_room_types,
        )
        if finding is not None:
            findings.append(finding)
    return findings


def detect_group_conflicts(rates: list[CentralizedRate]) -> list[ConflictFinding]:
    """Every conflicting pair among approved rates, each pair reported once."""
    approved = [r for r in rates if r.approval_status == "approved" and r.is_active]
    findings: list[ConflictFinding] = []
    for i, a in enumerate(approved):
        for b in approved[i + 1:]:
            finding = classify_pair(a, b)
            if finding is not None:
                findings.append(finding)
    return findings
