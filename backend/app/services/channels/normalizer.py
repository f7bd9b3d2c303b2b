from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

from app.errors import ValidationError
from app.services.channels.types import InboundReservation


def _pick(d: dict, *keys, default=None):
  """Return the first present, non-None key from mapping `d`.

  Channels disagree on field names (externalBookingId vs
  external_booking_id); the normalizer accepts both.
  """

  if not isinstance(d, dict):
    return default
  for k in keys:
    if k in d and d[k] is not None:
      return d[k]
  return default


def _to_int(x) -> Optional[int]:
  try:
    if x is None or x == "":
      return None
    return int(x)
  except (TypeError, ValueError):
    return None


def _to_float(x) -> Optional[float]:
  try:
    if x is None or x == "":
      return None
    return float(x)
  except (TypeError, ValueError):
    return None


def build_mapping_dicts(connection: Dict[str, Any]) -> Tuple[Dict[str, str], Dict[str, str]]:
  """Build channel id -> internal id dicts for room types and rate plans.

  Only active mappings are included.
  """

  room_map: Dict[str, str] = {}
  for m in connection.get("room_type_mappings") or []:
    if not m.get("active", True):
      continue
    ch = str(m.get("channel_room_type_id") or "").strip()
    internal = str(m.get("room_type_id") or "").strip()
    if ch and internal:
      room_map[ch] = internal

  rate_map: Dict[str, str] = {}
  for m in connection.get("rate_plan_mappings") or []:
    if not m.get("active", True):
      continue
    ch = str(m.get("channel_rate_plan_id") or "").strip()
    internal = str(m.get("rate_id") or "").strip()
    if ch and internal:
      rate_map[ch] = internal

  return room_map, rate_map


def reverse_room_map(connection: Dict[str, Any]) -> Dict[str, str]:
  """internal room type id -> channel room type id."""

  room_map, _ = build_mapping_dicts(connection)
  return {internal: ch for ch, internal in room_map.items()}


_TYPES = {
  "new_booking": "new_booking",
  "new": "new_booking",
  "booking": "new_booking",
  "modification": "modification",
  "modify": "modification",
  "modified": "modification",
  "cancellation": "cancellation",
  "cancel": "cancellation",
  "cancelled": "cancellation",
}


def normalize_reservation(raw: Dict[str, Any]) -> InboundReservation:
  """Turn a channel webhook body into an InboundReservation.

  Raises ValidationError when the reservation type or the external booking
  id is missing; everything else is optional at this stage.
  """

  kind = _TYPES.get(str(_pick(raw, "type", "event", default="")).strip().lower())
  if kind is None:
    raise ValidationError("unknown reservation type", {"type": raw.get("type")})

  external_id = _pick(raw, "externalBookingId", "external_booking_id", "reservation_id", "id")
  if not external_id:
    raise ValidationError("externalBookingId is required")

  guests = _pick(raw, "guestDetails", "guest_details", "guests", default={}) or {}
  if not isinstance(guests, dict):
    guests = {"adults": guests}

  return InboundReservation(
    type=kind,
    external_booking_id=str(external_id),
    external_room_type_id=_pick(raw, "externalRoomTypeId", "external_room_type_id", "room_type_id"),
    check_in=_pick(raw, "checkIn", "check_in", "arrival"),
    check_out=_pick(raw, "checkOut", "check_out", "departure"),
    rooms=_to_int(_pick(raw, "rooms", "numberOfRooms")) or 1,
    total_amount=_to_float(_pick(raw, "totalAmount", "total_amount")),
    currency=(_pick(raw, "currency") or None),
    rate=_to_float(_pick(raw, "rate", "price")),
    adults=_to_int(_pick(guests, "adults")) or 1,
    children=_to_int(_pick(guests, "children")) or 0,
    country=_pick(guests, "country"),
    confirmation_code=_pick(raw, "confirmationCode", "confirmation_code"),
    special_requests=_pick(raw, "specialRequests", "special_requests"),
    external_rate_plan_id=_pick(raw, "externalRatePlanId", "external_rate_plan_id", "rate_plan_id"),
  )
