"""
Per-Aggregate Locks

One asyncio.Lock per (aggregate_type, key). A purchase needs three of them
(buyer, product, merchant); two purchases that overlap must never take them
in opposite orders, so every multi-lock acquisition is sorted into one
global order first:

    ("buyer", "7") < ("merchant", "2") < ("product", "SKU-001")

Sorting by (aggregate_type, str(key)) does not depend on the order the
caller listed the keys, so no two acquisitions can form a cycle.

Every acquisition is bounded. A lock not obtained within the timeout
releases whatever was already held and raises BusyError.

A lock stays in the registry only while some task holds or waits for it,
so the registry does not grow with the number of keys ever locked.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

import structlog

from commerce_core.config import get_settings
from commerce_core.domain.errors import BusyError
from commerce_core.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

LockKey = tuple[str, Any]


class LockManager:
    """Registry of per-aggregate locks with canonical-order acquisition."""

    def __init__(self, default_timeout: Optional[float] = None):
        self.default_timeout = (
            default_timeout if default_timeout is not None else get_settings().lock_timeout_seconds
        )
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}
        # Tasks holding or waiting on each lock
        self._users: dict[tuple[str, str], int] = {}

    def tracked(self) -> int:
        """Number of locks currently held or awaited."""
        return len(self._locks)

    @staticmethod
    def canonical_order(keys: tuple[LockKey, ...]) -> list[tuple[str, str]]:
        """Deduplicate and sort keys into the global acquisition order."""
        return sorted({(aggregate_type, str(key)) for aggregate_type, key in keys})

    def _checkout(self, key: tuple[str, str]) -> asyncio.Lock:
        # Created lazily so the lock belongs to the running loop
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._users[key] = self._users.get(key, 0) + 1
        return lock

    def _checkin(self, key: tuple[str, str]) -> None:
        remaining = self._users[key] - 1
        if remaining:
            self._users[key] = remaining
        else:
            del self._users[key]
            del self._locks[key]

    def is_locked(self, aggregate_type: str, key: Any) -> bool:
        lock = self._locks.get((aggregate_type, str(key)))
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def acquire(self, *keys: LockKey, timeout: Optional[float] = None) -> AsyncIterator[None]:
        """
        Hold every lock in `keys` for the duration of the block.

        Usage:
            async with locks.acquire(("buyer", 1), ("product", "SKU-1")):
                ...

        Raises:
            BusyError: a lock was not acquired within `timeout` seconds
        """
        wait = timeout if timeout is not None else self.default_timeout
        held: list[tuple[tuple[str, str], asyncio.Lock]] = []
        try:
            for aggregate_type, key in self.canonical_order(keys):
                lock = self._checkout((aggregate_type, key))
                try:
                    await asyncio.wait_for(lock.acquire(), timeout=wait)
                except asyncio.TimeoutError:
                    self._checkin((aggregate_type, key))
                    logger.warning(
                        "lock_timeout",
                        aggregate_type=aggregate_type,
                        key=key,
                        timeout_seconds=wait,
                        held=len(held),
                    )
                    metrics.record_lock_timeout(aggregate_type)
                    raise BusyError(aggregate_type, key, wait) from None
                except asyncio.CancelledError:
                    self._checkin((aggregate_type, key))
                    raise
                held.append(((aggregate_type, key), lock))
            yield
        finally:
            for lock_key, lock in reversed(held):
                lock.release()
                self._checkin(lock_key)
