"""
No-op lock strategy - no mutual exclusion.
Relies entirely on the serializable registration transaction.
"""

from minicompete.services.interfaces.lock import DistributedLock


class NoopLock(DistributedLock):
    """
    Always acquired, nothing to release.

    Use when:
    - Running without Redis (local development, single process)
    - Measuring how the database alone copes with contention
    """

    async def try_acquire(self, key: str, holder_token: str, ttl_seconds: float) -> bool:
        return True

    async def release(self, key: str, holder_token: str) -> bool:
        return True
