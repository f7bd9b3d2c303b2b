from __future__ import annotations

"""Application-level configuration.

All values are read from the environment once at import time. Behaviour
that varies per property or per group (overbooking, auto sync) lives on the
property/group documents, not here.
"""

import os


def _env_flag(name: str, default: bool = True) -> bool:
    """Read a boolean-like flag from environment.

    Accepted falsy values: "0", "false", "off", "no" (case-insensitive).
    Anything else (or unset) falls back to `default`.
    """

    raw = os.environ.get(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in {"0", "false", "off", "no"}:
        return False
    if value in {"1", "true", "on", "yes"}:
        return True
    return default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


# Application constants
APP_NAME = "Rate Distribution API"
APP_VERSION = "1.0.0"
CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "*").split(",")

# Inventory ledger
INVENTORY_HORIZON_DAYS: int = _env_int("INVENTORY_HORIZON_DAYS", 365)
INVENTORY_MAX_CAS_RETRIES: int = _env_int("INVENTORY_MAX_CAS_RETRIES", 5)

# Distribution engine
DISTRIBUTION_MAX_RETRIES: int = _env_int("DISTRIBUTION_MAX_RETRIES", 3)
DISTRIBUTION_BACKOFF_BASE_MS: int = _env_int("DISTRIBUTION_BACKOFF_BASE_MS", 200)
DISTRIBUTION_BACKOFF_MAX_MS: int = _env_int("DISTRIBUTION_BACKOFF_MAX_MS", 5000)
ENABLE_AUTO_DISTRIBUTION: bool = _env_flag("ENABLE_AUTO_DISTRIBUTION", default=True)

# External channel adapters
CHANNEL_CALL_TIMEOUT_SECONDS: float = float(os.environ.get("CHANNEL_CALL_TIMEOUT_SECONDS", "10"))
