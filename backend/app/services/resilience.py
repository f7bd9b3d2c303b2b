from __future__ import annotations

"""Locking, retry and deadline helpers shared by the ledger and the
distribution engine."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Hashable, Tuple, Type, TypeVar

from pymongo.errors import DuplicateKeyError, PyMongoError

from app.errors import TransientFailure


logger = logging.getLogger(__name__)

T = TypeVar("T")


class KeyedLocks:
    """In-process asyncio locks keyed by any hashable value.

    Entries are dropped once no task holds or waits on them, so the map does
    not grow with the number of keys ever touched.
    """

    def __init__(self) -> None:
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._refs: Dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._refs[key] = self._refs.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._refs[key] -= 1
            if self._refs[key] <= 0:
                self._refs.pop(key, None)
                self._locks.pop(key, None)


def compute_backoff_ms(attempt: int, base_ms: int, max_ms: int) -> int:
    """Exponential backoff: base, 2*base, 4*base ... capped at max_ms."""
    delay = base_ms * (2 ** max(attempt - 1, 0))
    return min(delay, max_ms)


async def with_retries(
    op: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    base_delay_ms: int,
    max_delay_ms: int,
    retry_on: Tuple[Type[BaseException], ...] = (TransientFailure,),
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    label: str = "operation",
) -> T:
    """Run `op` up to `attempts` times, sleeping with backoff between tries.

    The last exception is re-raised when attempts are exhausted.
    """

    attempt = 0
    while True:
        attempt += 1
        try:
            return await op()
        except retry_on as exc:
            if attempt >= attempts:
                logger.warning("%s failed after %d attempts: %s", label, attempt, exc)
                raise
            delay_ms = compute_backoff_ms(attempt, base_delay_ms, max_delay_ms)
            logger.warning("%s attempt %d failed (%s); retrying in %dms", label, attempt, exc, delay_ms)
            await sleep(delay_ms / 1000.0)


async def run_with_deadline(coro: Awaitable[T], timeout_seconds: float, *, label: str = "external call") -> T:
    """Await `coro` with a hard deadline; timeouts surface as TransientFailure."""

    try:
        return await asyncio.wait_for(coro, timeout=timeout_seconds)
    except asyncio.TimeoutError:
        raise TransientFailure(
            f"{label} timed out",
            details={"timeout_seconds": timeout_seconds},
        )


@asynccontextmanager
async def db_errors_as_transient(label: str = "persistence") -> AsyncIterator[None]:
    """Translate driver faults into TransientFailure at the repository seam.

    Duplicate keys are business outcomes and propagate unchanged.
    """

    try:
        yield
    except DuplicateKeyError:
        raise
    except PyMongoError as exc:
        raise TransientFailure(f"{label} failed: {exc}", details={"driver_error": type(exc).__name__})
