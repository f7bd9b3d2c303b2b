from __future__ import annotations

"""Process-wide Motor client for the API.

Tests never go through here; they override `get_db` with their own database.
"""

import logging
import os
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from app.errors import TransientFailure


logger = logging.getLogger(__name__)

_mongo_client: Optional[AsyncIOMotorClient] = None
_db: Optional[AsyncIOMotorDatabase] = None


def _mongo_url() -> str:
    url = os.environ.get("MONGO_URL", "").strip()
    if not url:
        raise RuntimeError("MONGO_URL is not set")
    return url


def _db_name() -> str:
    return os.environ.get("DB_NAME", "rate_hub")


async def connect_mongo() -> None:
    global _mongo_client, _db

    if _mongo_client is not None and _db is not None:
        return

    _mongo_client = AsyncIOMotorClient(_mongo_url())
    _db = _mongo_client[_db_name()]
    logger.info("connected to mongo database %s", _db_name())


async def close_mongo() -> None:
    global _mongo_client, _db

    if _mongo_client is not None:
        _mongo_client.close()
        logger.info("mongo client closed")

    _mongo_client = None
    _db = None


async def get_db() -> AsyncIOMotorDatabase:
    if _db is None:
        await connect_mongo()
    if _db is None:
        raise TransientFailure("database connection is not available")
    return _db
