"""
Composition root.

Builds every long-lived object (engine, Redis client, lock, stores, queue,
orchestrator) from Settings and hands them out as one Container. The API
lifespan, the worker runner and the scheduler runner each build their own;
nothing is a module-level singleton.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

import redis.asyncio as redis

from minicompete.core.config import Settings
from minicompete.db.session import Database, create_database
from minicompete.infrastructure.redis_client import close_redis, create_redis
from minicompete.schemas.notification import Backoff, JobOptions
from minicompete.services.competition_store import CompetitionStore
from minicompete.services.idempotency_service import IdempotencyStore
from minicompete.services.interfaces.lock import DistributedLock
from minicompete.services.lock_factory import build_lock
from minicompete.services.notification_queue import NotificationQueue
from minicompete.services.notification_worker import NotificationWorker
from minicompete.services.registration_service import RegistrationService
from minicompete.services.scheduler_service import SchedulerService, ScheduledTask


@dataclass
class Container:
    settings: Settings
    database: Database
    redis: redis.Redis
    lock: DistributedLock
    competitions: CompetitionStore
    idempotency: IdempotencyStore
    queue: NotificationQueue
    registrations: RegistrationService

    def build_worker(self) -> NotificationWorker:
        s = self.settings
        return NotificationWorker(
            self.queue,
            self.competitions,
            self.database.sessions,
            concurrency=s.WORKER_CONCURRENCY,
            poll_interval=s.WORKER_POLL_INTERVAL_SECONDS,
            max_backoff=s.WORKER_MAX_BACKOFF_SECONDS,
            lease_seconds=s.WORKER_LEASE_SECONDS,
            reaper_interval=s.WORKER_REAPER_INTERVAL_SECONDS,
            reaper_batch_size=s.WORKER_REAPER_BATCH_SIZE,
        )

    def build_scheduler(self) -> SchedulerService:
        return SchedulerService(
            self.competitions,
            self.idempotency,
            self.queue,
            reminder_lookahead=timedelta(hours=self.settings.REMINDER_LOOKAHEAD_HOURS),
            soft_delete_retention=timedelta(days=self.settings.SOFT_DELETE_RETENTION_DAYS),
        )

    def scheduled_tasks(self, scheduler: SchedulerService) -> list[ScheduledTask]:
        s = self.settings
        return [
            ScheduledTask("competition_reminders", s.REMINDER_INTERVAL_SECONDS, scheduler.enqueue_competition_reminders),
            ScheduledTask("idempotency_purge", s.IDEMPOTENCY_PURGE_INTERVAL_SECONDS, scheduler.purge_expired_idempotency_keys),
            ScheduledTask("registration_purge", s.REGISTRATION_PURGE_INTERVAL_SECONDS, scheduler.purge_soft_deleted_registrations),
        ]

    async def close(self) -> None:
        await close_redis(self.redis)
        await self.database.dispose()


def build_container(
    settings: Settings,
    *,
    database_url: Optional[str] = None,
    redis_client: Optional[redis.Redis] = None,
) -> Container:
    database = create_database(settings, database_url)
    client = redis_client if redis_client is not None else create_redis(settings)

    competitions = CompetitionStore(
        database.sessions,
        database.serializable_sessions,
        transaction_timeout=settings.TRANSACTION_TIMEOUT_SECONDS,
        max_retries=settings.TRANSACTION_MAX_RETRIES,
    )
    idempotency = IdempotencyStore(database.sessions)
    lock = build_lock(settings, client)
    queue = NotificationQueue(
        client,
        settings.NOTIFICATION_QUEUE_NAME,
        default_options=JobOptions(
            attempts=settings.NOTIFICATION_MAX_ATTEMPTS,
            backoff=Backoff(type="exponential", delay_ms=settings.NOTIFICATION_BACKOFF_DELAY_MS),
            remove_on_complete=True,
        ),
    )
    registrations = RegistrationService(
        competitions,
        idempotency,
        lock,
        queue,
        lock_ttl_seconds=settings.LOCK_TTL_SECONDS,
        idempotency_ttl=timedelta(hours=settings.IDEMPOTENCY_TTL_HOURS),
    )

    return Container(
        settings=settings,
        database=database,
        redis=client,
        lock=lock,
        competitions=competitions,
        idempotency=idempotency,
        queue=queue,
        registrations=registrations,
    )
