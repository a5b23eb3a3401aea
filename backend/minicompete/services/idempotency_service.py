"""
Idempotency store for the Idempotency-Key request header.

Keys are opaque: compared byte-for-byte, never trimmed or case-folded.
Records are write-once. An expired record stays readable until the scheduled
purge deletes it; expiry is not checked on the read path, so a lookup cannot
race with a request that already saw the record exist.
"""

from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from minicompete.core.errors import IdempotencyConflict
from minicompete.core.logging import get_logger
from minicompete.db.base import utcnow
from minicompete.models.idempotency import IdempotencyKey

logger = get_logger(__name__)


class IdempotencyStore:
    def __init__(self, sessions: async_sessionmaker[AsyncSession]):
        self._sessions = sessions

    async def lookup(self, key: str) -> Optional[dict[str, Any]]:
        """Return the stored response for `key`, or None."""
        async with self._sessions() as session:
            result = await session.execute(
                select(IdempotencyKey.response).where(IdempotencyKey.key == key)
            )
            return result.scalar_one_or_none()

    async def store(
        self,
        key: str,
        response: dict[str, Any],
        ttl: timedelta,
        *,
        session: Optional[AsyncSession] = None,
    ) -> None:
        """
        Persist `response` under `key`.

        With `session`, the record is written inside the caller's transaction
        (and rolls back with it). Raises IdempotencyConflict if the key exists.
        """
        if session is not None:
            await self._insert(session, key, response, ttl)
            return

        async with self._sessions() as own_session:
            async with own_session.begin():
                await self._insert(own_session, key, response, ttl)

    async def _insert(
        self,
        session: AsyncSession,
        key: str,
        response: dict[str, Any],
        ttl: timedelta,
    ) -> None:
        record = IdempotencyKey(key=key, response=response, expires_at=utcnow() + ttl)
        try:
            # Savepoint so a duplicate key doesn't poison the caller's transaction
            async with session.begin_nested():
                session.add(record)
                await session.flush()
        except IntegrityError:
            logger.info("idempotency_key_conflict", key=key)
            raise IdempotencyConflict(key)

        logger.debug("idempotency_key_stored", key=key, expires_at=record.expires_at.isoformat())

    async def purge_expired(self, cutoff: datetime) -> int:
        """Delete records that expired at or before `cutoff`."""
        async with self._sessions() as session:
            async with session.begin():
                result = await session.execute(
                    delete(IdempotencyKey).where(IdempotencyKey.expires_at <= cutoff)
                )
        logger.info("idempotency_keys_purged", count=result.rowcount, cutoff=cutoff.isoformat())
        return result.rowcount
