from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class AriUpdate:
  """One outbound availability/rate/restriction line, in channel identifiers."""

  channel_room_type_id: str
  date: str
  available: int
  price: Optional[float]
  currency: Optional[str]
  stop_sell: bool
  closed_to_arrival: bool
  closed_to_departure: bool
  min_stay: int
  max_stay: int
  # internal coordinates, used to acknowledge the push
  room_type_id: str = ""
  version: int = 0

  def to_payload(self) -> Dict[str, Any]:
    return {
      "room_type_id": self.channel_room_type_id,
      "date": self.date,
      "available": self.available,
      "price": self.price,
      "currency": self.currency,
      "stop_sell": self.stop_sell,
      "cta": self.closed_to_arrival,
      "ctd": self.closed_to_departure,
      "min_stay": self.min_stay,
      "max_stay": self.max_stay,
    }


@dataclass
class ChannelPushResult:
  """Result of pushing ARI to a channel.

  Providers return this instead of raising; `code` is a stable identifier
  (OK, NOT_IMPLEMENTED, PROVIDER_UNAVAILABLE, REJECTED).
  """

  ok: bool
  code: Optional[str] = None
  message: str = ""
  accepted: int = 0
  rejected: List[Dict[str, Any]] = field(default_factory=list)
  meta: Dict[str, Any] = field(default_factory=dict)


@dataclass
class InboundReservation:
  """Channel webhook reservation after key normalization."""

  type: str
  external_booking_id: str
  external_room_type_id: Optional[str]
  check_in: Optional[str]
  check_out: Optional[str]
  rooms: int = 1
  total_amount: Optional[float] = None
  currency: Optional[str] = None
  rate: Optional[float] = None
  adults: int = 1
  children: int = 0
  country: Optional[str] = None
  confirmation_code: Optional[str] = None
  special_requests: Optional[str] = None
  external_rate_plan_id: Optional[str] = None
