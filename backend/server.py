from __future__ import annotations

import os
import logging
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from fastapi import FastAPI
from pymongo.errors import PyMongoError
from starlette.middleware.cors import CORSMiddleware

ROOT_DIR = Path(__file__).parent

# Load .env only if it exists (development fallback)
env_path = ROOT_DIR / ".env"
if env_path.exists():
    load_dotenv(env_path)

from app.config import APP_NAME, APP_VERSION, CORS_ORIGINS  # noqa: E402
from app.db import close_mongo, connect_mongo, get_db  # noqa: E402
from app.exception_handlers import register_exception_handlers  # noqa: E402
from app.indexes.rate_indexes import ensure_rate_indexes  # noqa: E402
from app.middleware.correlation_id import CorrelationIdMiddleware  # noqa: E402
from app.routers.bookings import router as bookings_router  # noqa: E402
from app.routers.channels import router as channels_router  # noqa: E402
from app.routers.distribution import router as distribution_router  # noqa: E402
from app.routers.inventory import router as inventory_router  # noqa: E402
from app.routers.quotes import router as quotes_router  # noqa: E402
from app.routers.rates import router as rates_router  # noqa: E402
from app.routers.room_types import router as room_types_router  # noqa: E402

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("rate-hub")

app = FastAPI(title=APP_NAME, version=APP_VERSION)

app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(CorrelationIdMiddleware)
register_exception_handlers(app)

# Routers (/api prefix is on each router)
app.include_router(rates_router)
app.include_router(distribution_router)
app.include_router(quotes_router)
app.include_router(inventory_router)
app.include_router(room_types_router)
app.include_router(bookings_router)
app.include_router(channels_router)


@app.get("/api/health")
async def health() -> dict[str, Any]:
    """Health check with database ping"""
    db = await get_db()
    try:
        await db.command("ping")
        ok = True
    except PyMongoError:
        logger.warning("health check: database ping failed")
        ok = False
    return {"ok": ok, "service": "rate-hub"}


@app.on_event("startup")
async def _startup() -> None:
    await connect_mongo()
    await ensure_rate_indexes(await get_db())
    logger.info("Startup complete")


@app.on_event("shutdown")
async def _shutdown() -> None:
    await close_mongo()
    logger.info("Shutdown complete")
