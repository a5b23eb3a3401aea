"""
Registration orchestrator.

Ties together the idempotency store, the per-competition lock, the
serializable registration transaction and the notification queue:

  1. Idempotency-Key already answered?  -> replay the stored response
  2. Take lock:competition:{id}         -> Busy if someone else holds it
  3. Key answered while we waited?      -> replay the stored response
  4. Serializable transaction           -> registration + idempotency record
                                           commit together
  5. Enqueue the confirmation email     -> failure is logged, not surfaced
  6. Release the lock (every exit path)

A duplicate carrying the same key can still get past steps 1 and 3 when the
lock is disabled or failing open. Its transaction then fails, either with
AlreadyRegistered (same competition and user) or with IdempotencyConflict on
the key insert. In both cases the key is read again and, if the first request
stored it, the duplicate replays that response.
"""

import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from minicompete.core.errors import AlreadyRegistered, IdempotencyConflict, RegistrationError
from minicompete.core.logging import get_logger
from minicompete.core.metrics import (
    idempotency_replays,
    notification_enqueue_errors,
    record_registration_attempt,
    registration_latency,
)
from minicompete.schemas.notification import REGISTRATION_CONFIRMATION, RegistrationConfirmationJob
from minicompete.services.competition_store import CompetitionStore, RegistrationResult
from minicompete.services.idempotency_service import IdempotencyStore
from minicompete.services.interfaces.lock import DistributedLock, competition_lock_key, make_holder_token
from minicompete.services.notification_queue import NotificationQueue

logger = get_logger(__name__)


@dataclass(frozen=True)
class RegistrationOutcome:
    response: dict[str, Any]
    replayed: bool = False


class RegistrationService:
    def __init__(
        self,
        store: CompetitionStore,
        idempotency: IdempotencyStore,
        lock: DistributedLock,
        queue: NotificationQueue,
        *,
        lock_ttl_seconds: float,
        idempotency_ttl: timedelta,
    ):
        self.store = store
        self.idempotency = idempotency
        self.lock = lock
        self.queue = queue
        self.lock_ttl_seconds = lock_ttl_seconds
        self.idempotency_ttl = idempotency_ttl

    async def register(
        self,
        competition_id: int,
        user_id: int,
        idempotency_key: Optional[str] = None,
    ) -> RegistrationOutcome:
        start = time.perf_counter()
        try:
            outcome = await self._register(competition_id, user_id, idempotency_key)
        except RegistrationError as e:
            record_registration_attempt(e.kind.value)
            raise
        finally:
            registration_latency.observe(time.perf_counter() - start)

        record_registration_attempt("replayed" if outcome.replayed else "success")
        return outcome

    async def _register(
        self,
        competition_id: int,
        user_id: int,
        idempotency_key: Optional[str],
    ) -> RegistrationOutcome:
        if idempotency_key is not None:
            stored = await self.idempotency.lookup(idempotency_key)
            if stored is not None:
                return self._replay(idempotency_key, stored)

        before_commit = None
        if idempotency_key is not None:

            async def before_commit(session: AsyncSession, result: RegistrationResult) -> None:
                await self.idempotency.store(
                    idempotency_key,
                    result.to_response().model_dump(mode="json"),
                    self.idempotency_ttl,
                    session=session,
                )

        lock_key = competition_lock_key(competition_id)
        try:
            async with self.lock.hold(lock_key, make_holder_token(user_id), self.lock_ttl_seconds):
                if idempotency_key is not None:
                    # The previous holder may have committed this key meanwhile
                    stored = await self.idempotency.lookup(idempotency_key)
                    if stored is not None:
                        return self._replay(idempotency_key, stored)

                result = await self.store.register_participant(
                    competition_id, user_id, before_commit=before_commit
                )
                await self._enqueue_confirmation(result)
        except (IdempotencyConflict, AlreadyRegistered):
            if idempotency_key is None:
                raise
            # A request with the same key committed first
            stored = await self.idempotency.lookup(idempotency_key)
            if stored is None:
                raise
            return self._replay(idempotency_key, stored)

        return RegistrationOutcome(response=result.to_response().model_dump(mode="json"))

    def _replay(self, key: str, stored: dict[str, Any]) -> RegistrationOutcome:
        idempotency_replays.inc()
        logger.info("idempotent_replay", idempotency_key=key, registration_id=stored.get("id"))
        return RegistrationOutcome(response=stored, replayed=True)

    async def _enqueue_confirmation(self, result: RegistrationResult) -> None:
        job = RegistrationConfirmationJob(
            registration_id=result.registration_id,
            user_id=result.user_id,
            competition_id=result.competition_id,
            user_email=result.user_email,
            user_name=result.user_name,
            competition_title=result.competition_title,
        )
        try:
            await self.queue.add(REGISTRATION_CONFIRMATION, job)
        except Exception as e:
            # The registration is committed; the caller still gets it
            notification_enqueue_errors.inc()
            logger.error(
                "confirmation_enqueue_failed",
                registration_id=result.registration_id,
                competition_id=result.competition_id,
                error=str(e),
            )
