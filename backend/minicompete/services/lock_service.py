"""
Per-competition distributed lock backed by Redis.
Implements the DistributedLock interface.

Acquire is a single SET key token NX PX ttl: there is no separate exists-check
that another request could slip past. Release runs a Lua compare-and-delete, so
a holder whose TTL lapsed never deletes the lock of whoever took it next.

Circuit Breaker Pattern:
  On Redis failure, acquisition "fails open" (the request is admitted).
  This prevents a Redis outage from blocking all registrations.
  The serializable transaction remains authoritative - the lock only spares
  the database from doomed transactions under contention.

  Tradeoff: during a Redis outage, concurrent registrations for the same
  competition fall back to serialization failures and transaction retries.
"""

import redis.asyncio as redis

from minicompete.core.logging import get_logger
from minicompete.core.metrics import (
    lock_release_mismatches,
    record_lock_acquisition,
    redis_circuit_breaker_open,
    redis_connection_errors,
)
from minicompete.infrastructure.redis_client import load_lua
from minicompete.services.interfaces.lock import DistributedLock

logger = get_logger(__name__)

RELEASE_SCRIPT = load_lua("release_lock")


class RedisLock(DistributedLock):
    """
    Redis-based mutual exclusion.

    Strategy: fail fast with Busy while another request for the same
    competition is inside its transaction, instead of queueing on the
    database's serialization machinery.
    """

    def __init__(self, client: redis.Redis):
        self.redis = client
        self.release_script = client.register_script(RELEASE_SCRIPT)
        self._bypassed: set[tuple[str, str]] = set()

    async def try_acquire(self, key: str, holder_token: str, ttl_seconds: float) -> bool:
        ttl_ms = max(int(ttl_seconds * 1000), 1)
        try:
            acquired = await self.redis.set(key, holder_token, px=ttl_ms, nx=True)
        except redis.RedisError as e:
            # Circuit breaker: On Redis failure, fail open
            redis_connection_errors.inc()
            redis_circuit_breaker_open.set(1)
            record_lock_acquisition("bypassed")
            logger.warning("lock_bypassed_redis_unavailable", key=key, error=str(e))
            self._bypassed.add((key, holder_token))
            return True

        redis_circuit_breaker_open.set(0)
        if acquired:
            record_lock_acquisition("acquired")
            logger.debug("lock_acquired", key=key, ttl_ms=ttl_ms)
            return True

        record_lock_acquisition("busy")
        logger.info("lock_busy", key=key)
        return False

    async def release(self, key: str, holder_token: str) -> bool:
        if (key, holder_token) in self._bypassed:
            self._bypassed.discard((key, holder_token))
            return False

        try:
            deleted = await self.release_script(keys=[key], args=[holder_token])
        except redis.RedisError as e:
            # Best effort: the TTL frees the lock anyway
            redis_connection_errors.inc()
            logger.error("lock_release_failed", key=key, error=str(e))
            return False

        if not deleted:
            lock_release_mismatches.inc()
            logger.warning("lock_release_mismatch", key=key, reason="expired_or_taken_over")
            return False
        return True
