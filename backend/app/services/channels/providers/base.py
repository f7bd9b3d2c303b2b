from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List

from app.services.channels.types import AriUpdate, ChannelPushResult


class BaseChannelProvider(ABC):
  """Outbound contract every channel adapter (Booking.com, Expedia, ...) honors.

  Implementations encapsulate provider-specific authentication and wire
  format. They should not raise for provider-side rejections; they return a
  ChannelPushResult with ok=False and a stable code instead. Network faults
  may raise; the caller runs every push under a deadline and treats
  exceptions and timeouts as a failed push.
  """

  provider_name: str = "base"

  @abstractmethod
  async def push_ari(self, *, connection: Dict[str, Any], updates: List[AriUpdate]) -> ChannelPushResult:
    """Publish availability, rates and restrictions for the given lines."""

    raise NotImplementedError
