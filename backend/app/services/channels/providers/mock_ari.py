from __future__ import annotations

from collections import deque
from typing import Any, Deque, Dict, List, Optional, Set

from app.services.channels.providers.base import BaseChannelProvider
from app.services.channels.types import AriUpdate, ChannelPushResult


class MockAriChannelProvider(BaseChannelProvider):
  """Deterministic in-memory provider.

  Accepts every line except dates listed in `reject_dates`, and keeps what
  it received in `pushed` so tests and local runs can inspect the traffic.
  Only the latest `max_pushed` lines are kept.
  """

  provider_name = "mock_ari"

  def __init__(self, reject_dates: Optional[Set[str]] = None, max_pushed: int = 1000) -> None:
    self.reject_dates: Set[str] = set(reject_dates or ())
    self.pushed: Deque[Dict[str, Any]] = deque(maxlen=max_pushed)

  async def push_ari(self, *, connection: Dict[str, Any], updates: List[AriUpdate]) -> ChannelPushResult:  # type: ignore[override]
    accepted = [u for u in updates if u.date not in self.reject_dates]
    rejected = [
      {"room_type_id": u.channel_room_type_id, "date": u.date, "code": "REJECTED"}
      for u in updates
      if u.date in self.reject_dates
    ]
    for u in accepted:
      self.pushed.append({"channel_id": connection.get("channel_id"), **u.to_payload()})

    return ChannelPushResult(
      ok=not rejected,
      code="OK" if not rejected else "REJECTED",
      message="" if not rejected else f"{len(rejected)} lines rejected",
      accepted=len(accepted),
      rejected=rejected,
      meta={"provider": self.provider_name},
    )
