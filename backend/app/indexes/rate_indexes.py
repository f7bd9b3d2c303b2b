from __future__ import annotations

import logging

from pymongo import ASCENDING, DESCENDING
from pymongo.errors import OperationFailure

logger = logging.getLogger(__name__)


async def ensure_rate_indexes(db):
    """Indexes for rates, inventory, bookings and their reference data.

    Existing indexes with different options are kept and logged.
    """

    async def _safe_create(collection, *args, **kwargs):
        try:
            await collection.create_index(*args, **kwargs)
        except OperationFailure as e:
            msg = str(e).lower()
            if (
                "indexoptionsconflict" in msg
                or "indexkeyspecsconflict" in msg
                or "already exists" in msg
            ):
                logger.warning(
                    "[rate_indexes] Keeping existing index for %s (name=%s): %s",
                    collection.name,
                    kwargs.get("name"),
                    msg,
                )
                return
            raise

    # Inventory: exactly one record per (property, room type, date)
    await _safe_create(
        db.inventory,
        [("property_id", ASCENDING), ("room_type_id", ASCENDING), ("date", ASCENDING)],
        name="inventory_property_room_date_uniq",
        unique=True,
    )
    await _safe_create(
        db.inventory,
        [("property_id", ASCENDING), ("needs_sync", ASCENDING), ("last_modified_at", ASCENDING)],
        name="inventory_dirty_by_property",
    )
    await _safe_create(db.inventory, [("reservations.booking_id", ASCENDING)], name="inventory_by_booking")
    await _safe_create(db.inventory, [("blocks.block_id", ASCENDING)], name="inventory_by_block")

    # Centralized rates
    await _safe_create(
        db.centralized_rates,
        [("property_group.group_id", ASCENDING), ("rate_type", ASCENDING), ("approval_status", ASCENDING)],
        name="rates_group_type_status",
    )
    await _safe_create(
        db.centralized_rates,
        [("property_group.properties", ASCENDING), ("is_active", ASCENDING)],
        name="rates_by_property",
    )

    # Bookings: channel deliveries are idempotent by (source, external id)
    await _safe_create(
        db.bookings,
        [("source", ASCENDING), ("external_booking_id", ASCENDING)],
        name="bookings_source_external_uniq",
        unique=True,
        partialFilterExpression={"external_booking_id": {"$type": "string"}},
    )
    await _safe_create(
        db.bookings,
        [("property_id", ASCENDING), ("status", ASCENDING), ("created_at", DESCENDING)],
        name="bookings_property_status_created",
    )

    # Reference data
    await _safe_create(
        db.room_types,
        [("property_id", ASCENDING), ("code", ASCENDING)],
        name="room_types_property_code_uniq",
        unique=True,
    )
    await _safe_create(
        db.channel_connections,
        [("channel_id", ASCENDING), ("property_id", ASCENDING)],
        name="channel_connections_channel_property",
    )
    await _safe_create(
        db.channel_connections,
        [("channel_id", ASCENDING), ("room_type_mappings.channel_room_type_id", ASCENDING)],
        name="channel_connections_room_mapping",
    )
    await _safe_create(
        db.fx_rates,
        [("base", ASCENDING), ("quote", ASCENDING), ("as_of", DESCENDING)],
        name="fx_rates_pair_asof",
    )

    # Outbox and audit
    await _safe_create(db.domain_events, [("status", ASCENDING), ("created_at", ASCENDING)], name="domain_events_pending")
    await _safe_create(db.domain_events, [("aggregate.id", ASCENDING), ("created_at", DESCENDING)], name="domain_events_by_aggregate")
    await _safe_create(db.audit_logs, [("target.id", ASCENDING), ("created_at", DESCENDING)], name="audit_logs_by_target")
