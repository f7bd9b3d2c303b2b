from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


RateType = Literal["BAR", "corporate", "promotional", "package", "group", "member", "government", "negotiated"]
ApprovalStatus = Literal["draft", "pending", "approved", "rejected", "expired"]
AdjustmentType = Literal["percentage", "fixed"]
DistributionMode = Literal["broadcast", "selective", "inheritance", "override"]
GroupSyncStatus = Literal["pending", "syncing", "synced", "failed", "partial"]
PropertySyncStatus = Literal["pending", "synced", "failed"]
ConflictKind = Literal["overlap", "duplicate", "priority"]
ConflictAction = Literal["ignore", "override", "merge", "alert"]
ResolutionAction = Literal["accept_centralized", "accept_property", "create_exception"]
TransitionAction = Literal["submit", "approve", "reject", "expire"]


# ---- Pricing building blocks ----


class Adjustment(BaseModel):
    type: AdjustmentType = "percentage"
    value: float = 0.0


class BasePricing(BaseModel):
    base_price: float = Field(ge=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    price_per_night: bool = True
    include_taxes: bool = False
    include_breakfast: bool = False


class RoomTypeAvailability(BaseModel):
    is_available: bool = True
    allotment: Optional[int] = Field(default=None, ge=0)
    stop_sale: bool = False


class RoomTypeRate(BaseModel):
    room_type_id: str
    room_type_name: Optional[str] = None
    base_rate: Optional[float] = None
    adjustment: Adjustment = Field(default_factory=Adjustment)
    availability: RoomTypeAvailability = Field(default_factory=RoomTypeAvailability)


# ---- Validity / windows / restrictions ----


class DateSpan(BaseModel):
    start: date
    end: date


class RecurringPattern(BaseModel):
    type: Literal["none", "weekly", "monthly", "yearly"] = "none"
    interval: int = Field(default=1, ge=1)
    days_of_week: list[int] = Field(default_factory=list)  # 0 = Sunday
    days_of_month: list[int] = Field(default_factory=list)
    months: list[int] = Field(default_factory=list)


class ValidityPeriod(BaseModel):
    start_date: date
    end_date: date
    timezone: str = "UTC"
    recurring_pattern: RecurringPattern = Field(default_factory=RecurringPattern)
    # carve-outs created by conflict resolution (create_exception)
    exclusions: list[DateSpan] = Field(default_factory=list)


class AdvanceBooking(BaseModel):
    minimum: int = Field(default=0, ge=0)
    maximum: int = Field(default=365, ge=0)


class BookingWindow(BaseModel):
    advance_booking: AdvanceBooking = Field(default_factory=AdvanceBooking)
    cutoff_time: str = "18:00"
    same_day_booking: bool = True


class StayThrough(BaseModel):
    start_date: date
    end_date: date
    minimum_stay: int = Field(ge=1)


class StayRestrictions(BaseModel):
    minimum_stay: int = Field(default=1, ge=1)
    maximum_stay: int = Field(default=30, ge=1)
    closed_to_arrival: list[date] = Field(default_factory=list)
    closed_to_departure: list[date] = Field(default_factory=list)
    stay_through: list[StayThrough] = Field(default_factory=list)


class NoShowPolicy(BaseModel):
    charge_type: Literal["first_night", "full_stay", "percentage"] = "first_night"
    charge_amount: Optional[float] = None


class CancellationPolicy(BaseModel):
    type: Literal["flexible", "moderate", "strict", "non_refundable"] = "moderate"
    cutoff_hours: int = Field(default=24, ge=0)
    penalty_type: Literal["percentage", "nights", "fixed"] = "nights"
    penalty_amount: float = Field(default=1, ge=0)
    no_show: NoShowPolicy = Field(default_factory=NoShowPolicy)


# ---- Per-property / channel / conflicts ----


class WindowOverride(BaseModel):
    minimum: Optional[int] = Field(default=None, ge=0)
    maximum: Optional[int] = Field(default=None, ge=0)


class PropertyOverrides(BaseModel):
    base_price: Optional[float] = Field(default=None, ge=0)
    minimum_stay: Optional[int] = Field(default=None, ge=1)
    maximum_stay: Optional[int] = Field(default=None, ge=1)
    booking_window: Optional[WindowOverride] = None


class SyncState(BaseModel):
    status: PropertySyncStatus = "pending"
    last_sync: Optional[datetime] = None
    error: Optional[dict[str, Any]] = None


class PropertyRate(BaseModel):
    property_id: str
    property_name: Optional[str] = None
    local_rate_id: Optional[str] = None
    adjustment: Adjustment = Field(default_factory=Adjustment)
    overrides: PropertyOverrides = Field(default_factory=PropertyOverrides)
    # property keeps its own rate; skipped by inheritance distribution
    local_override: bool = False
    sync_status: SyncState = Field(default_factory=SyncState)
    synced_version: Optional[int] = None


class ChannelSetting(BaseModel):
    channel: str
    markup: Adjustment = Field(default_factory=Adjustment)
    commission: Adjustment = Field(default_factory=Adjustment)
    is_active: bool = True


class ConflictLink(BaseModel):
    rate_id: str
    rate_name: Optional[str] = None
    conflict_type: ConflictKind
    resolution: ConflictAction = "alert"
    property_id: Optional[str] = None
    detected_at: Optional[datetime] = None


class ConflictResolution(BaseModel):
    priority: int = Field(default=5, ge=1, le=10)
    conflicts_with: list[ConflictLink] = Field(default_factory=list)
    auto_resolve: bool = False


class SyncError(BaseModel):
    property_id: Optional[str] = None
    code: Optional[str] = None
    error: str
    timestamp: Optional[datetime] = None


class DistributionSettings(BaseModel):
    distribution_type: DistributionMode = "broadcast"
    target_properties: list[str] = Field(default_factory=list)
    exclude_properties: list[str] = Field(default_factory=list)
    sync_status: GroupSyncStatus = "pending"
    last_sync_date: Optional[datetime] = None
    sync_errors: list[SyncError] = Field(default_factory=list)


class FieldChange(BaseModel):
    field: str
    old_value: Any = None
    new_value: Any = None


class ChangeLogEntry(BaseModel):
    version: int
    action: str
    changes: list[FieldChange] = Field(default_factory=list)
    changed_by: Optional[str] = None
    changed_at: Optional[datetime] = None
    reason: Optional[str] = None


class PropertyGroupRef(BaseModel):
    group_id: str
    group_name: Optional[str] = None
    properties: list[str] = Field(default_factory=list)


# ---- Canonical document ----


class CentralizedRate(BaseModel):
    rate_id: str
    rate_name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    tags: list[str] = Field(default_factory=list)
    property_group: PropertyGroupRef
    rate_type: RateType
    category: str = "standard"
    base_pricing: BasePricing
    room_types: list[RoomTypeRate] = Field(default_factory=list)
    validity_period: ValidityPeriod
    booking_window: BookingWindow = Field(default_factory=BookingWindow)
    stay_restrictions: StayRestrictions = Field(default_factory=StayRestrictions)
    cancellation_policy: CancellationPolicy = Field(default_factory=CancellationPolicy)
    per_property_rates: list[PropertyRate] = Field(default_factory=list)
    channels: list[ChannelSetting] = Field(default_factory=list)
    distribution_settings: DistributionSettings = Field(default_factory=DistributionSettings)
    conflict_resolution: ConflictResolution = Field(default_factory=ConflictResolution)
    approval_status: ApprovalStatus = "draft"
    version: int = 1
    # storage write counter for compare-and-set; moves on every write, unlike version
    revision: int = 0
    change_log: list[ChangeLogEntry] = Field(default_factory=list)
    is_active: bool = True
    created_by: Optional[str] = None
    approved_by: Optional[str] = None
    approval_date: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def priority(self) -> int:
        return self.conflict_resolution.priority

    def property_rate(self, property_id: str) -> Optional[PropertyRate]:
        for row in self.per_property_rates:
            if row.property_id == property_id:
                return row
        return None

    def room_type_rate(self, room_type_id: str) -> Optional[RoomTypeRate]:
        for rt in self.room_types:
            if rt.room_type_id == room_type_id or rt.room_type_name == room_type_id:
                return rt
        return None

    def channel_settings(self, channel: Optional[str]) -> list[ChannelSetting]:
        if not channel:
            return []
        return [c for c in self.channels if c.channel == channel and c.is_active]

    def to_doc(self) -> dict[str, Any]:
        doc = self.model_dump(mode="json")
        doc["_id"] = self.rate_id
        return doc


# ---- API payloads ----


class RateCreateIn(BaseModel):
    rate_name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    tags: list[str] = Field(default_factory=list)
    group_id: str
    rate_type: RateType
    category: str = "standard"
    base_pricing: BasePricing
    room_types: list[RoomTypeRate] = Field(default_factory=list)
    validity_period: ValidityPeriod
    booking_window: BookingWindow = Field(default_factory=BookingWindow)
    stay_restrictions: StayRestrictions = Field(default_factory=StayRestrictions)
    cancellation_policy: CancellationPolicy = Field(default_factory=CancellationPolicy)
    per_property_rates: list[PropertyRate] = Field(default_factory=list)
    channels: list[ChannelSetting] = Field(default_factory=list)
    distribution_settings: DistributionSettings = Field(default_factory=DistributionSettings)
    priority: int = Field(default=5, ge=1, le=10)
    auto_resolve: bool = False


class RateUpdateIn(BaseModel):
    rate_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    tags: Optional[list[str]] = None
    category: Optional[str] = None
    base_pricing: Optional[BasePricing] = None
    room_types: Optional[list[RoomTypeRate]] = None
    validity_period: Optional[ValidityPeriod] = None
    booking_window: Optional[BookingWindow] = None
    stay_restrictions: Optional[StayRestrictions] = None
    cancellation_policy: Optional[CancellationPolicy] = None
    channels: Optional[list[ChannelSetting]] = None
    properties: Optional[list[str]] = None
    priority: Optional[int] = Field(default=None, ge=1, le=10)
    reason: Optional[str] = None


class TransitionIn(BaseModel):
    action: TransitionAction
    reason: Optional[str] = None


class PropertyOverrideIn(BaseModel):
    adjustment: Optional[Adjustment] = None
    overrides: PropertyOverrides = Field(default_factory=PropertyOverrides)


class DistributeIn(BaseModel):
    mode: Optional[DistributionMode] = None
    property_ids: Optional[list[str]] = None
    exclude_property_ids: list[str] = Field(default_factory=list)
    fail_on_conflict: bool = False
    auto_resolve: Optional[bool] = None
    force: bool = False


class PreviewIn(BaseModel):
    property_ids: Optional[list[str]] = None
    effective_date: Optional[date] = None
    mode: Optional[DistributionMode] = None


class ResolveConflictIn(BaseModel):
    other_rate_id: str
    action: ResolutionAction
    carve_rate_id: Optional[str] = None
    property_id: Optional[str] = None


class GroupSyncIn(BaseModel):
    rate_ids: Optional[list[str]] = None
    force: bool = False


class QuoteIn(BaseModel):
    rate_id: str
    property_id: str
    room_type_id: str
    check_in: date
    check_out: date
    guests: int = Field(ge=1)
    channel: Optional[str] = None
