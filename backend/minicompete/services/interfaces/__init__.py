"""
Service interfaces for dependency inversion.
Allows swapping implementations without changing business logic.
"""

from .lock import DistributedLock, competition_lock_key, make_holder_token
from .noop_lock import NoopLock

__all__ = ['DistributedLock', 'NoopLock', 'competition_lock_key', 'make_holder_token']
