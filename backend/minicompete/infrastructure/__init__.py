"""
Infrastructure layer - external system integrations.
Keeps business logic clean from implementation details.
"""

from .redis_client import close_redis, create_redis, load_lua, ping_redis

__all__ = ['create_redis', 'close_redis', 'ping_redis', 'load_lua']
