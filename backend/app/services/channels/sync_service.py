from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from app.config import CHANNEL_CALL_TIMEOUT_SECONDS
from app.errors import TransientFailure
from app.repositories.property_repository import PropertyRepository
from app.services.channels.normalizer import reverse_room_map
from app.services.channels.providers.base import BaseChannelProvider
from app.services.channels.registry import get_provider_adapter
from app.services.channels.types import AriUpdate, ChannelPushResult
from app.services.inventory_ledger import InventoryLedger, SyncSnapshot
from app.services.resilience import run_with_deadline


logger = logging.getLogger("channel_sync")

_Key = Tuple[str, str]  # (room_type_id, date)


class ChannelSyncService:
  """Publishes dirty inventory to every active channel connection of a property.

  A record is acknowledged (clear_dirty) only when every connection that maps
  its room type accepted it; anything else stays dirty for the next run.
  """

  def __init__(
    self,
    db,
    *,
    ledger: Optional[InventoryLedger] = None,
    resolve_provider: Callable[[str], BaseChannelProvider] = get_provider_adapter,
    timeout_seconds: float = CHANNEL_CALL_TIMEOUT_SECONDS,
  ) -> None:
    self.db = db
    self._ledger = ledger or InventoryLedger(db)
    self._properties = PropertyRepository(db)
    self._resolve_provider = resolve_provider
    self._timeout = timeout_seconds

  async def _push(self, connection: Dict[str, Any], updates: List[AriUpdate]) -> ChannelPushResult:
    provider = self._resolve_provider(connection.get("provider") or connection.get("channel_id") or "")
    label = f"push_ari {connection.get('channel_id')}/{connection.get('property_id')}"
    try:
      return await run_with_deadline(provider.push_ari(connection=connection, updates=updates), self._timeout, label=label)
    except TransientFailure as exc:
      logger.warning("%s failed: %s", label, exc.message)
      return ChannelPushResult(ok=False, code="PROVIDER_UNAVAILABLE", message=exc.message)
    except Exception as exc:  # adapter faults are contained per connection
      logger.exception("%s raised", label)
      return ChannelPushResult(ok=False, code="UNKNOWN_ERROR", message=str(exc))

  async def sync_property(self, property_id: str, *, since: Optional[str] = None) -> Dict[str, Any]:
    connections = await self._properties.list_connections(property_id)
    snapshots: List[SyncSnapshot] = [s async for s in self._ledger.snapshot_for_sync(property_id, since)]
    summary: Dict[str, Any] = {"property_id": property_id, "records": len(snapshots), "channels": [], "acknowledged": 0}
    if not connections or not snapshots:
      return summary

    by_key: Dict[_Key, SyncSnapshot] = {(s.room_type_id, s.date): s for s in snapshots}
    expected: Dict[_Key, Set[str]] = {k: set() for k in by_key}
    accepted: Dict[_Key, Set[str]] = {k: set() for k in by_key}

    for conn in connections:
      channel_id = conn["channel_id"]
      rooms = reverse_room_map(conn)
      updates = [
        AriUpdate(
          channel_room_type_id=rooms[s.room_type_id],
          date=s.date,
          available=s.available_rooms,
          price=s.selling_rate,
          currency=s.currency,
          stop_sell=s.stop_sell,
          closed_to_arrival=s.closed_to_arrival,
          closed_to_departure=s.closed_to_departure,
          min_stay=s.minimum_stay,
          max_stay=s.maximum_stay,
          room_type_id=s.room_type_id,
          version=s.version,
        )
        for s in snapshots
        if s.room_type_id in rooms
      ]
      if not updates:
        continue
      for u in updates:
        expected[(u.room_type_id, u.date)].add(channel_id)

      result = await self._push(conn, updates)
      rejected_dates = {(r.get("room_type_id"), r.get("date")) for r in result.rejected}
      ok_count = 0
      if result.ok or result.rejected:
        for u in updates:
          if (u.channel_room_type_id, u.date) in rejected_dates:
            continue
          accepted[(u.room_type_id, u.date)].add(channel_id)
          ok_count += 1
      summary["channels"].append(
        {"channel_id": channel_id, "ok": result.ok, "code": result.code, "pushed": len(updates), "accepted": ok_count}
      )

    for key, snap in by_key.items():
      channels = expected[key]
      if not channels or channels != accepted[key]:
        continue
      for channel_id in sorted(channels):
        await self._ledger.clear_dirty(snap.property_id, snap.room_type_id, snap.date, channel_id, version=snap.version)
      summary["acknowledged"] += 1

    logger.info(
      "channel sync property=%s records=%d acknowledged=%d",
      property_id, summary["records"], summary["acknowledged"],
    )
    return summary
