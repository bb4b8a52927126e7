"""
Per-key scheduling locks.

Every state-changing scheduling operation runs under a lock on its key:
``("request", request_id)`` for operator status changes of a request,
``("bin", bin_id, day)`` for request creation/reset and
``("worker", worker_id, day)`` for approval, route removal, reconciliation
and route changes. Keys are always taken in the order request, bin, worker;
several keys of one kind are taken sorted.

Backends:
    memory  one asyncio.Lock per key (single API process)
    redis   redis.asyncio distributed locks (several API processes)

Acquisition is time-bounded; a busy key raises ConflictError so the caller
can retry.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import Dict, List, Optional, Tuple

from redis.exceptions import LockError, RedisError

from urbancleanse.app.core.config import settings
from urbancleanse.app.core.exceptions import ConflictError, InternalError
from urbancleanse.app.core.redis_client import redis_client

logger = logging.getLogger(__name__)

LockKey = Tuple[str, ...]


def _normalize(parts) -> LockKey:
    return tuple(p.isoformat() if isinstance(p, date) else str(p) for p in parts)


def request_key(request_id: str) -> LockKey:
    return _normalize(("request", request_id))


def bin_key(bin_id: str, day: date) -> LockKey:
    return _normalize(("bin", bin_id, day))


def worker_key(worker_id: int, day: date) -> LockKey:
    return _normalize(("worker", worker_id, day))


class SchedulingLocks:
    """Async context-manager locks keyed by scheduling key."""

    def __init__(
        self,
        backend: str = "memory",
        redis=None,
        acquire_timeout: float = 10.0,
        ttl: float = 30.0,
    ):
        if backend not in ("memory", "redis"):
            raise ValueError(f"Unknown lock backend: {backend}")
        self.backend = backend
        self.redis = redis
        self.acquire_timeout = acquire_timeout
        self.ttl = ttl
        # key -> [lock, holders + waiters]
        self._local: Dict[LockKey, List] = {}

    @asynccontextmanager
    async def hold(self, *parts):
        key = _normalize(parts)
        if self.backend == "redis":
            async with self._hold_redis(key):
                yield key
        else:
            async with self._hold_local(key):
                yield key

    @asynccontextmanager
    async def hold_many(self, keys: List[LockKey]):
        """Hold several keys, acquired in the given order and released in reverse."""
        if not keys:
            yield
            return
        async with self.hold(*keys[0]):
            async with self.hold_many(keys[1:]):
                yield

    def _busy(self, key: LockKey) -> ConflictError:
        logger.warning("Scheduling key busy: %s", ":".join(key))
        return ConflictError(
            "Scheduling key busy, retry",
            details={"lock_key": ":".join(key), "timeout_seconds": self.acquire_timeout},
        )

    @asynccontextmanager
    async def _hold_local(self, key: LockKey):
        entry = self._local.setdefault(key, [asyncio.Lock(), 0])
        entry[1] += 1
        lock = entry[0]
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=self.acquire_timeout)
            except asyncio.TimeoutError:
                raise self._busy(key)
            try:
                yield
            finally:
                lock.release()
        finally:
            entry[1] -= 1
            if entry[1] == 0 and self._local.get(key) is entry:
                del self._local[key]

    @asynccontextmanager
    async def _hold_redis(self, key: LockKey):
        name = "lock:scheduling:" + ":".join(key)
        lock = self.redis.lock(name, timeout=self.ttl, blocking_timeout=self.acquire_timeout)
        try:
            acquired = await lock.acquire()
        except RedisError as exc:
            logger.error("Redis lock %s unavailable: %s", name, exc)
            raise InternalError("Scheduling lock backend unavailable", details={"lock_key": name})
        if not acquired:
            raise self._busy(key)
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError as exc:
                # Expired under us; the DB unique indexes still guard the commit
                logger.warning("Lock %s released after expiry: %s", name, exc)


_scheduling_locks: Optional[SchedulingLocks] = None


def get_scheduling_locks() -> SchedulingLocks:
    """FastAPI dependency returning the process-wide lock registry."""
    global _scheduling_locks
    if _scheduling_locks is None:
        _scheduling_locks = SchedulingLocks(
            backend=settings.lock_backend,
            redis=redis_client if settings.lock_backend == "redis" else None,
            acquire_timeout=settings.lock_acquire_timeout_seconds,
            ttl=settings.lock_ttl_seconds,
        )
    return _scheduling_locks
