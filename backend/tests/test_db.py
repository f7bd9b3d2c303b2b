from __future__ import annotations

import pytest

from app import db as db_module


@pytest.mark.anyio
async def test_get_db_requires_mongo_url(monkeypatch) -> None:
    await db_module.close_mongo()
    monkeypatch.delenv("MONGO_URL", raising=False)

    with pytest.raises(RuntimeError, match="MONGO_URL"):
        await db_module.get_db()


@pytest.mark.anyio
async def test_get_db_reuses_one_client(monkeypatch) -> None:
    await db_module.close_mongo()
    monkeypatch.setenv("MONGO_URL", "mongodb://localhost:27017")
    monkeypatch.setenv("DB_NAME", "rate_hub_db_test")

    try:
        first = await db_module.get_db()
        second = await db_module.get_db()
        assert first is second
        assert first.name == "rate_hub_db_test"
    finally:
        await db_module.close_mongo()
    assert db_module._db is None
