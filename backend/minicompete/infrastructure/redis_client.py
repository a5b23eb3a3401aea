"""
Redis client for distributed locks and the notification queue.
Separated from business logic for clean architecture.

The client is created by the composition root (bootstrap.py) and passed to the
services that need it; nothing here keeps a module-level connection.
"""

from pathlib import Path

import redis.asyncio as redis

from minicompete.core.config import Settings
from minicompete.core.logging import get_logger

logger = get_logger(__name__)

LUA_DIR = Path(__file__).parent / "lua"


def create_redis(settings: Settings) -> redis.Redis:
    """Build a pooled Redis client. Connections are opened lazily."""
    return redis.from_url(
        settings.REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
        socket_connect_timeout=5,
        socket_timeout=5,
        retry_on_timeout=True,
        health_check_interval=30,
    )


async def ping_redis(client: redis.Redis) -> bool:
    try:
        await client.ping()
        return True
    except redis.RedisError as e:
        logger.error("redis_connection_failed", error=str(e))
        return False


async def close_redis(client: redis.Redis) -> None:
    await client.aclose()


def load_lua(name: str) -> str:
    """Read a Lua script shipped next to this module (infrastructure/lua/<name>.lua)."""
    return (LUA_DIR / f"{name}.lua").read_text(encoding="utf-8")
