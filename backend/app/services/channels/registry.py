from __future__ import annotations

from typing import Any, Dict, List

from app.services.channels.providers.base import BaseChannelProvider
from app.services.channels.providers.mock_ari import MockAriChannelProvider
from app.services.channels.types import AriUpdate, ChannelPushResult


class NotImplementedChannelProvider(BaseChannelProvider):
  """Fallback provider used when a connection's channel has no adapter yet."""

  provider_name = "generic_not_implemented"

  async def push_ari(self, *, connection: Dict[str, Any], updates: List[AriUpdate]) -> ChannelPushResult:  # type: ignore[override]
    channel = connection.get("channel_id") or "unknown"
    return ChannelPushResult(
      ok=False,
      code="NOT_IMPLEMENTED",
      message=f"No ARI adapter for channel '{channel}'",
      meta={"channel": channel},
    )


# Simple in-memory registry. Real adapters register themselves at startup.
_PROVIDER_REGISTRY: Dict[str, BaseChannelProvider] = {
  "mock_ari": MockAriChannelProvider(),
}


def register_provider(name: str, adapter: BaseChannelProvider) -> None:
  _PROVIDER_REGISTRY[(name or "").lower()] = adapter


def get_provider_adapter(provider: str) -> BaseChannelProvider:
  """Resolve a provider name to an adapter instance.

  Unknown providers fall back to NotImplementedChannelProvider so sync runs
  record a clear NOT_IMPLEMENTED code instead of crashing.
  """

  normalized = (provider or "").lower()
  return _PROVIDER_REGISTRY.get(normalized, NotImplementedChannelProvider())
