"""
Competition store with the concurrency-safe registration transaction.

CONCURRENCY STRATEGY: Serializable Transaction with Retry
==========================================================

Problem:
  Two participants try to take the last seat simultaneously.
  Both count 9 registrations out of 10, both insert, both succeed.
  Result: Overselling.

Solution:
  The whole check-then-insert runs in ONE transaction at SERIALIZABLE
  isolation:

  1. Read the competition and its live registration count
  2. Reject if the deadline has passed or no seat is left
  3. Reject if the participant already holds a live registration
  4. INSERT the registration
  5. Read the user's display fields for the confirmation email

  If two such transactions overlap on the same competition, PostgreSQL aborts
  one of them with a serialization failure (SQLSTATE 40001). We retry it; on
  the retry it sees the committed registration and answers "full" or
  "already registered" like any later request would.

  This approach:
  - No counter column to keep in sync on cancel/purge
  - Exactly one winner for the last seat, whatever the lock in front does
  - Partial unique index on live (competition, user) rows as the final net

  The per-competition Redis lock (lock_service.py) sits in front of this to
  keep most racing requests from ever starting a doomed transaction.

Timeout:
  The transaction runs under asyncio.wait_for. The timeout is configured
  below the lock TTL so a slow transaction is aborted before its lock lapses.
"""

import asyncio
import random
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from minicompete.core.errors import (
    AlreadyRegistered,
    CompetitionFull,
    CompetitionNotFound,
    InvalidCompetition,
    LockBusy,
    RegistrationDeadlinePassed,
    RegistrationNotFound,
    TransactionTimeout,
    UserNotFound,
)
from minicompete.core.logging import get_logger
from minicompete.core.metrics import transaction_retries, transaction_timeouts
from minicompete.db.base import utcnow
from minicompete.models.competition import Competition
from minicompete.models.registration import Registration
from minicompete.models.user import User
from minicompete.schemas.competition import CompetitionCreate, CompetitionDetail, CompetitionResponse
from minicompete.schemas.registration import CompetitionSummary, RegistrationResponse

logger = get_logger(__name__)

# serialization_failure, deadlock_detected
RETRYABLE_SQLSTATES = {"40001", "40P01"}


@dataclass(frozen=True)
class RegistrationResult:
    """A committed registration plus the fields the confirmation email needs."""

    registration_id: int
    competition_id: int
    user_id: int
    registered_at: datetime
    competition_title: str
    user_name: str
    user_email: str

    def to_response(self) -> RegistrationResponse:
        return RegistrationResponse(
            id=self.registration_id,
            competition_id=self.competition_id,
            user_id=self.user_id,
            registered_at=self.registered_at,
            competition=CompetitionSummary(id=self.competition_id, title=self.competition_title),
        )


@dataclass(frozen=True)
class UpcomingRegistration:
    user_id: int
    user_email: str
    user_name: str
    competition_id: int
    competition_title: str
    competition_start_date: Optional[datetime]


BeforeCommit = Callable[[AsyncSession, RegistrationResult], Awaitable[None]]


def is_serialization_failure(exc: DBAPIError) -> bool:
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in RETRYABLE_SQLSTATES:
        return True
    # SQLite reports lock contention instead of serialization failures
    return "database is locked" in str(orig)


def _live(query):
    return query.where(Registration.deleted_at.is_(None))


class CompetitionStore:
    def __init__(
        self,
        sessions: async_sessionmaker[AsyncSession],
        serializable_sessions: async_sessionmaker[AsyncSession],
        *,
        transaction_timeout: float,
        max_retries: int = 3,
    ):
        self._sessions = sessions
        self._serializable_sessions = serializable_sessions
        self._transaction_timeout = transaction_timeout
        self._max_retries = max_retries

    # ------------------------------------------------------------------
    # Registration transaction
    # ------------------------------------------------------------------

    async def register_participant(
        self,
        competition_id: int,
        user_id: int,
        *,
        before_commit: Optional[BeforeCommit] = None,
    ) -> RegistrationResult:
        """
        Register `user_id` for `competition_id` in one serializable transaction.

        `before_commit` runs inside the same transaction after the insert, so
        whatever it writes commits or rolls back together with the
        registration.
        """
        try:
            return await asyncio.wait_for(
                self._register_with_retries(competition_id, user_id, before_commit),
                timeout=self._transaction_timeout,
            )
        except asyncio.TimeoutError:
            transaction_timeouts.inc()
            logger.warning(
                "registration_transaction_timeout",
                competition_id=competition_id,
                user_id=user_id,
                timeout_s=self._transaction_timeout,
            )
            raise TransactionTimeout("Registration took too long. Please try again.")

    async def _register_with_retries(
        self,
        competition_id: int,
        user_id: int,
        before_commit: Optional[BeforeCommit],
    ) -> RegistrationResult:
        for attempt in range(1, self._max_retries + 1):
            try:
                async with self._serializable_sessions() as session:
                    async with session.begin():
                        result = await self._register_in_session(session, competition_id, user_id)
                        if before_commit is not None:
                            await before_commit(session, result)
                logger.info(
                    "registration_created",
                    registration_id=result.registration_id,
                    competition_id=competition_id,
                    user_id=user_id,
                    attempt=attempt,
                )
                return result
            except IntegrityError:
                raise
            except DBAPIError as e:
                if not is_serialization_failure(e):
                    raise
                transaction_retries.inc()
                logger.info(
                    "registration_retry",
                    competition_id=competition_id,
                    attempt=attempt,
                    reason="serialization_failure",
                )
                if attempt == self._max_retries:
                    raise LockBusy("Registration failed due to high demand. Please try again.")
                # Jittered backoff so the retries don't collide again
                await asyncio.sleep(random.uniform(0, 0.01 * 2 ** attempt))

        raise AssertionError("unreachable")

    async def _register_in_session(
        self,
        session: AsyncSession,
        competition_id: int,
        user_id: int,
    ) -> RegistrationResult:
        now = utcnow()

        # Step 1: competition and its live registration count, same snapshot
        competition = (
            await session.execute(select(Competition).where(Competition.id == competition_id))
        ).scalar_one_or_none()
        if competition is None:
            raise CompetitionNotFound(competition_id)

        registered = await session.scalar(
            _live(select(func.count(Registration.id)).where(Registration.competition_id == competition_id))
        )

        # Step 2: deadline
        if now > competition.reg_deadline:
            logger.info("registration_rejected", competition_id=competition_id, reason="deadline_passed")
            raise RegistrationDeadlinePassed("Registration deadline has passed")

        # Step 3: capacity
        seats_left = competition.capacity - registered
        if seats_left <= 0:
            logger.info(
                "registration_rejected",
                competition_id=competition_id,
                reason="full",
                capacity=competition.capacity,
            )
            raise CompetitionFull("Competition is full")

        # Step 4: one live registration per participant
        existing = await session.scalar(
            _live(
                select(Registration.id).where(
                    Registration.competition_id == competition_id,
                    Registration.user_id == user_id,
                )
            )
        )
        if existing is not None:
            raise AlreadyRegistered("You are already registered for this competition")

        user = (
            await session.execute(select(User.name, User.email).where(User.id == user_id))
        ).one_or_none()
        if user is None:
            raise UserNotFound(f"User {user_id} not found")

        # Step 5: insert
        registration = Registration(
            competition_id=competition_id,
            user_id=user_id,
            status="confirmed",
            created_at=now,
            updated_at=now,
        )
        session.add(registration)
        try:
            await session.flush()
        except IntegrityError:
            # Partial unique index caught a duplicate the check above missed
            raise AlreadyRegistered("You are already registered for this competition")

        logger.debug("seat_taken", competition_id=competition_id, seats_left=seats_left - 1)

        return RegistrationResult(
            registration_id=registration.id,
            competition_id=competition_id,
            user_id=user_id,
            registered_at=registration.created_at,
            competition_title=competition.title,
            user_name=user.name,
            user_email=user.email,
        )

    # ------------------------------------------------------------------
    # Competitions
    # ------------------------------------------------------------------

    async def create_competition(self, data: CompetitionCreate, organizer_id: int) -> CompetitionResponse:
        if data.reg_deadline <= utcnow():
            raise InvalidCompetition("Registration deadline must be in the future")

        competition = Competition(
            title=data.title,
            description=data.description,
            tags=list(dict.fromkeys(data.tags)),  # unordered set, keep first-seen order
            capacity=data.capacity,
            reg_deadline=data.reg_deadline,
            start_date=data.start_date,
            organizer_id=organizer_id,
        )
        async with self._sessions() as session:
            async with session.begin():
                session.add(competition)
                await session.flush()
            response = CompetitionResponse.model_validate(competition)

        logger.info(
            "competition_created",
            competition_id=competition.id,
            title=competition.title,
            capacity=competition.capacity,
        )
        return response

    async def get_competition(self, competition_id: int) -> CompetitionDetail:
        async with self._sessions() as session:
            competition = (
                await session.execute(select(Competition).where(Competition.id == competition_id))
            ).scalar_one_or_none()
            if competition is None:
                raise CompetitionNotFound(competition_id)

            registered = await session.scalar(
                _live(select(func.count(Registration.id)).where(Registration.competition_id == competition_id))
            )

        base = CompetitionResponse.model_validate(competition)
        return CompetitionDetail(
            **base.model_dump(),
            registered_count=registered,
            seats_left=max(competition.capacity - registered, 0),
        )

    # ------------------------------------------------------------------
    # Registrations outside the guarded transaction
    # ------------------------------------------------------------------

    async def cancel_registration(self, competition_id: int, user_id: int) -> Registration:
        """Soft-delete the caller's live registration, freeing the seat."""
        async with self._sessions() as session:
            async with session.begin():
                registration = (
                    await session.execute(
                        _live(
                            select(Registration).where(
                                Registration.competition_id == competition_id,
                                Registration.user_id == user_id,
                            )
                        )
                    )
                ).scalar_one_or_none()
                if registration is None:
                    raise RegistrationNotFound("You are not registered for this competition")

                registration.deleted_at = utcnow()

        logger.info(
            "registration_cancelled",
            registration_id=registration.id,
            competition_id=competition_id,
            user_id=user_id,
        )
        return registration

    async def registration_exists(self, registration_id: int) -> bool:
        async with self._sessions() as session:
            found = await session.scalar(
                _live(select(Registration.id).where(Registration.id == registration_id))
            )
        return found is not None

    async def is_registered(self, competition_id: int, user_id: int) -> bool:
        async with self._sessions() as session:
            found = await session.scalar(
                _live(
                    select(Registration.id).where(
                        Registration.competition_id == competition_id,
                        Registration.user_id == user_id,
                    )
                )
            )
        return found is not None

    async def list_upcoming_registrations(self, start: datetime, end: datetime) -> list[UpcomingRegistration]:
        """Live registrations of competitions starting within [start, end]."""
        query = _live(
            select(
                Registration.user_id,
                User.email,
                User.name,
                Competition.id,
                Competition.title,
                Competition.start_date,
            )
            .join(Competition, Competition.id == Registration.competition_id)
            .join(User, User.id == Registration.user_id)
            .where(Competition.start_date >= start, Competition.start_date <= end)
            .order_by(Competition.id, Registration.id)
        )
        async with self._sessions() as session:
            rows = (await session.execute(query)).all()

        return [
            UpcomingRegistration(
                user_id=row[0],
                user_email=row[1],
                user_name=row[2],
                competition_id=row[3],
                competition_title=row[4],
                competition_start_date=row[5],
            )
            for row in rows
        ]

    async def purge_soft_deleted(self, cutoff: datetime) -> int:
        """Hard-delete registrations soft-deleted at or before `cutoff`."""
        async with self._sessions() as session:
            async with session.begin():
                result = await session.execute(
                    delete(Registration).where(
                        Registration.deleted_at.is_not(None),
                        Registration.deleted_at <= cutoff,
                    )
                )
        logger.info("registrations_purged", count=result.rowcount, cutoff=cutoff.isoformat())
        return result.rowcount
