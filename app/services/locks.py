"""
Per-transaction serialization for settlement recomputation.

At most one settlement read-modify-write may run per transaction at a
time; different transactions never wait on each other. Two backends:

  LocalTransactionLocks  — ``asyncio.Lock`` per transaction id, held in a
                           weak-value registry so idle locks are reclaimed
  RedisTransactionLocks  — redis-py ``Lock`` on ``settlement:lock:{id}``
                           for deployments with several worker processes

Both are used as ``async with locks.hold(transaction_id): ...`` and are
layered on top of the ``SELECT ... FOR UPDATE`` row lock the services take.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, AsyncIterator

from redis.exceptions import LockError

from app.config import settings
from app.core.exceptions import PersistenceError

if TYPE_CHECKING:
    import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

LOCK_KEY_PREFIX = "settlement:lock"


def _lock_key(transaction_id) -> str:
    return f"{LOCK_KEY_PREFIX}:{transaction_id}"


# LocalTransactionLocks ─────────────────────────────────────────────────────


class LocalTransactionLocks:
    """In-process mutex per transaction id."""

    def __init__(self):
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def lock_for(self, transaction_id) -> asyncio.Lock:
        """Return the lock for *transaction_id*, creating it on first use."""
        key = str(transaction_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def hold(self, transaction_id) -> AsyncIterator[None]:
        # The local reference keeps the lock alive while held or awaited
        lock = self.lock_for(transaction_id)
        async with lock:
            yield

    def __len__(self) -> int:
        return len(self._locks)


# RedisTransactionLocks ─────────────────────────────────────────────────────


class RedisTransactionLocks:
    """
    Distributed mutex per transaction id.

    Accepts a ``redis`` client on construction so callers (and tests)
    can inject their own connection. Falls back to the module-level
    singleton from ``app.redis_client`` when no client is supplied.
    """

    def __init__(
        self,
        redis_client: "aioredis.Redis | None" = None,
        timeout: int | None = None,
    ):
        self._redis = redis_client
        self.timeout = timeout or settings.SETTLEMENT_LOCK_TIMEOUT_SECONDS

    @property
    def redis(self) -> "aioredis.Redis":
        if self._redis is not None:
            return self._redis
        from app.redis_client import redis as _default
        return _default

    @asynccontextmanager
    async def hold(self, transaction_id) -> AsyncIterator[None]:
        lock = self.redis.lock(
            _lock_key(transaction_id),
            timeout=self.timeout,
            blocking_timeout=self.timeout,
        )
        acquired = await lock.acquire()
        if not acquired:
            raise PersistenceError(
                f"Timed out waiting for settlement lock on transaction {transaction_id}"
            )
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError:
                # Lock auto-expired before release
                logger.warning("Settlement lock for %s expired before release", transaction_id)


# Factory ───────────────────────────────────────────────────────────────────

_local_locks = LocalTransactionLocks()


def get_transaction_locks() -> LocalTransactionLocks | RedisTransactionLocks:
    """Lock backend selected by ``SETTLEMENT_LOCK_BACKEND``."""
    if settings.SETTLEMENT_LOCK_BACKEND == "redis":
        return RedisTransactionLocks()
    return _local_locks
