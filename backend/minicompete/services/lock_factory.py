"""
Lock strategy factory.
Configures which mutual exclusion strategy guards registrations.
"""

import redis.asyncio as redis

from minicompete.core.config import Settings
from minicompete.services.interfaces.lock import DistributedLock
from minicompete.services.interfaces.noop_lock import NoopLock
from minicompete.services.lock_service import RedisLock


def build_lock(settings: Settings, client: redis.Redis) -> DistributedLock:
    """
    Get the configured lock strategy.

    - redis: RedisLock (default; several API processes share one Redis)
    - none:  NoopLock (the serializable transaction alone)
    """
    if settings.LOCK_BACKEND == "none":
        return NoopLock()
    return RedisLock(client)
