"""
Distributed lock interface.
Allows swapping the per-competition mutual exclusion backend without changing
the registration workflow.
"""

import secrets
import time
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator

from minicompete.core.errors import LockBusy


def competition_lock_key(competition_id: int) -> str:
    return f"lock:competition:{competition_id}"


def make_holder_token(requester_id: int) -> str:
    """Token unique to one acquisition attempt: requester, wall clock, random suffix."""
    return f"{requester_id}-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


class DistributedLock(ABC):
    """
    Interface for advisory per-key locks.

    Implementations:
    - RedisLock: SET NX PX + compare-and-delete, shared across processes
    - NoopLock: always acquired; rely on the serializable transaction alone

    The lock only reduces contention in front of the registration
    transaction. It is never the correctness mechanism: if the holder outlives
    the TTL, another request may get in.
    """

    @abstractmethod
    async def try_acquire(self, key: str, holder_token: str, ttl_seconds: float) -> bool:
        """
        Take the lock if nobody holds it. Never waits.

        Returns:
            True if acquired, False if another holder has it
        """

    @abstractmethod
    async def release(self, key: str, holder_token: str) -> bool:
        """
        Delete the lock only if it still belongs to `holder_token`.

        Returns:
            True if our lock was deleted, False if it had expired or was
            taken over by another holder
        """

    @asynccontextmanager
    async def hold(self, key: str, holder_token: str, ttl_seconds: float) -> AsyncIterator[None]:
        """Acquire or raise LockBusy; release on every exit path."""
        if not await self.try_acquire(key, holder_token, ttl_seconds):
            raise LockBusy("Registration in progress, please try again")
        try:
            yield
        finally:
            await self.release(key, holder_token)
