"""Per-record locking for payroll mutations.

Concurrent triggers for the same payroll key (worker + period, or a payroll
id) must serialize. Two layers are used:

1. An in-process ``asyncio.Lock`` per key, so requests served by the same
   worker process queue up instead of interleaving.
2. A PostgreSQL transaction-scoped advisory lock per key, so requests in
   other processes wait too. It is released when the transaction commits
   or rolls back.

Keys are always taken in sorted order to avoid lock-order deadlocks.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from datetime import date
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from crewpay.database import try_advisory_xact_lock
from crewpay.errors import LockTimeoutError

logger = logging.getLogger(__name__)

RETRY_INTERVAL_SECONDS = 0.05


def payroll_period_key(worker_id: UUID, start: date, end: date) -> str:
    return f"payroll:{worker_id}:{start.isoformat()}:{end.isoformat()}"


def payroll_record_key(payroll_id: UUID) -> str:
    return f"payroll-record:{payroll_id}"


class KeyedLockRegistry:
    """In-process asyncio locks, one per key, dropped when unused."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    def _acquire_ref(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._waiters[key] = self._waiters.get(key, 0) + 1
        return lock

    def _release_ref(self, key: str) -> None:
        remaining = self._waiters.get(key, 1) - 1
        if remaining <= 0:
            self._waiters.pop(key, None)
            self._locks.pop(key, None)
        else:
            self._waiters[key] = remaining

    @asynccontextmanager
    async def hold(self, key: str, timeout: float) -> AsyncIterator[None]:
        lock = self._acquire_ref(key)
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=timeout)
            except asyncio.TimeoutError as exc:
                raise LockTimeoutError(
                    f"Timed out waiting for lock on {key}", {"key": key}
                ) from exc
            try:
                yield
            finally:
                lock.release()
        finally:
            self._release_ref(key)

    def is_locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()


_registry = KeyedLockRegistry()


class RecordLockService:
    """Serializes mutations of payroll records within one transaction."""

    def __init__(
        self,
        session: AsyncSession,
        timeout: float = 5.0,
        registry: KeyedLockRegistry | None = None,
    ):
        self.session = session
        self.timeout = timeout
        self.registry = registry or _registry

    @asynccontextmanager
    async def hold(self, keys: Iterable[str]) -> AsyncIterator[None]:
        """Hold every key for the duration of the block.

        The caller commits or rolls back inside the block so the advisory
        locks are released with the transaction.
        """
        ordered = sorted(set(keys))
        async with self._hold_in_process(ordered):
            for key in ordered:
                await self._acquire_advisory(key)
            yield

    @asynccontextmanager
    async def _hold_in_process(self, keys: list[str]) -> AsyncIterator[None]:
        if not keys:
            yield
            return
        async with self.registry.hold(keys[0], self.timeout):
            async with self._hold_in_process(keys[1:]):
                yield

    async def _acquire_advisory(self, key: str) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout
        while not await try_advisory_xact_lock(self.session, key):
            if loop.time() >= deadline:
                logger.warning("Advisory lock timeout for %s", key)
                raise LockTimeoutError(
                    f"Timed out waiting for lock on {key}", {"key": key}
                )
            await asyncio.sleep(RETRY_INTERVAL_SECONDS)
