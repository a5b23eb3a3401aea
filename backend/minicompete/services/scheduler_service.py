"""
Periodic maintenance tasks.

  reminders             daily   enqueue a reminder for every live registration
                                of a competition starting within the lookahead
  idempotency purge     daily   delete expired idempotency records
  registration purge    weekly  hard-delete registrations soft-deleted more
                                than the retention period ago

Each task is a plain coroutine taking the reference time, so it can be called
directly (tests, one-off runs) or from the interval loop in run().

A reminder run is not deduplicated: if the scheduler runs twice inside the
same window, participants get two reminders.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

from minicompete.core.logging import get_logger
from minicompete.db.base import utcnow
from minicompete.schemas.notification import REMINDER_NOTIFICATION, ReminderNotificationJob
from minicompete.services.competition_store import CompetitionStore
from minicompete.services.idempotency_service import IdempotencyStore
from minicompete.services.notification_queue import NotificationQueue

logger = get_logger(__name__)


@dataclass(frozen=True)
class ScheduledTask:
    name: str
    interval_seconds: float
    run: Callable[[Optional[datetime]], Awaitable[int]]


class SchedulerService:
    def __init__(
        self,
        store: CompetitionStore,
        idempotency: IdempotencyStore,
        queue: NotificationQueue,
        *,
        reminder_lookahead: timedelta = timedelta(hours=24),
        soft_delete_retention: timedelta = timedelta(days=30),
    ):
        self.store = store
        self.idempotency = idempotency
        self.queue = queue
        self.reminder_lookahead = reminder_lookahead
        self.soft_delete_retention = soft_delete_retention

    async def enqueue_competition_reminders(self, now: Optional[datetime] = None) -> int:
        """Enqueue one reminder per live registration starting within the lookahead."""
        now = now or utcnow()
        upcoming = await self.store.list_upcoming_registrations(now, now + self.reminder_lookahead)

        enqueued = 0
        for registration in upcoming:
            start = registration.competition_start_date
            job = ReminderNotificationJob(
                user_id=registration.user_id,
                competition_id=registration.competition_id,
                user_email=registration.user_email,
                user_name=registration.user_name,
                competition_title=registration.competition_title,
                competition_start_date=start.isoformat() if start else "TBD",
            )
            await self.queue.add(REMINDER_NOTIFICATION, job)
            enqueued += 1

        logger.info(
            "reminders_enqueued",
            count=enqueued,
            competitions=len({r.competition_id for r in upcoming}),
        )
        return enqueued

    async def purge_expired_idempotency_keys(self, now: Optional[datetime] = None) -> int:
        return await self.idempotency.purge_expired(now or utcnow())

    async def purge_soft_deleted_registrations(self, now: Optional[datetime] = None) -> int:
        cutoff = (now or utcnow()) - self.soft_delete_retention
        return await self.store.purge_soft_deleted(cutoff)

    async def run(self, tasks: list[ScheduledTask], stop: Optional[asyncio.Event] = None) -> None:
        """Run every task on its own interval until `stop` is set."""
        stop = stop or asyncio.Event()
        logger.info("scheduler_started", tasks=[t.name for t in tasks])
        await asyncio.gather(*(self._loop(task, stop) for task in tasks))
        logger.info("scheduler_stopped")

    async def _loop(self, task: ScheduledTask, stop: asyncio.Event) -> None:
        while not stop.is_set():
            try:
                result = await task.run(utcnow())
                logger.info("scheduled_task_finished", task=task.name, result=result)
            except Exception as e:
                # One failed run must not kill the schedule
                logger.error("scheduled_task_failed", task=task.name, error=str(e))
            try:
                await asyncio.wait_for(stop.wait(), timeout=task.interval_seconds)
            except asyncio.TimeoutError:
                pass
