"""
Notification worker: consumes the email queue and writes MailBox rows.

Delivery is at-least-once. A job can run twice if its lease expires while the
worker is still busy (or the worker dies after writing the mail but before
acknowledging it), so a participant may occasionally see a duplicate
message.

Failure handling:
  - the handler raises            -> queue retries with exponential backoff
  - attempts exhausted            -> FailedJob row (dead-letter) for operators
  - payload doesn't match the job -> dead-lettered at once, never retried
  - dead-letter write fails       -> logged as its own error; the job is still
                                     considered failed and not retried
"""

import asyncio
import random
import traceback
from enum import Enum
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from minicompete.core.errors import DeliveryFailed, ErrorKind, InvalidJobPayload
from minicompete.core.logging import get_logger
from minicompete.core.metrics import dead_letter_write_errors, record_notification_processed
from minicompete.models.failed_job import FailedJob
from minicompete.models.mailbox import MailBox
from minicompete.schemas.notification import RegistrationConfirmationJob, ReminderNotificationJob
from minicompete.services.competition_store import CompetitionStore
from minicompete.services.notification_queue import NotificationQueue, QueuedJob

logger = get_logger(__name__)

SIGN_OFF = "Best regards,\nMini Compete Team"


class JobOutcome(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"


def confirmation_message(job: RegistrationConfirmationJob) -> tuple[str, str]:
    subject = f"Registration Confirmed: {job.competition_title}"
    body = (
        f"Hi {job.user_name},\n\n"
        f"You have successfully registered for \"{job.competition_title}\".\n"
        f"Registration ID: {job.registration_id}\n\n"
        f"{SIGN_OFF}"
    )
    return subject, body


def reminder_message(job: ReminderNotificationJob) -> tuple[str, str]:
    subject = f"Reminder: {job.competition_title} starts soon!"
    body = (
        f"Hi {job.user_name},\n\n"
        f"This is a reminder that \"{job.competition_title}\" starts on "
        f"{job.competition_start_date}.\n\n"
        f"Good luck!\n\n"
        f"{SIGN_OFF}"
    )
    return subject, body


class NotificationWorker:
    def __init__(
        self,
        queue: NotificationQueue,
        store: CompetitionStore,
        sessions: async_sessionmaker[AsyncSession],
        *,
        concurrency: int = 1,
        poll_interval: float = 1.0,
        max_backoff: float = 15.0,
        lease_seconds: float = 60.0,
        reaper_interval: float = 15.0,
        reaper_batch_size: int = 100,
    ):
        self.queue = queue
        self.store = store
        self._sessions = sessions
        self.concurrency = max(concurrency, 1)
        self.poll_interval = poll_interval
        self.max_backoff = max_backoff
        self.lease_seconds = lease_seconds
        self.reaper_interval = reaper_interval
        self.reaper_batch_size = reaper_batch_size

    # ------------------------------------------------------------------
    # Job handlers
    # ------------------------------------------------------------------

    async def process(self, job: QueuedJob) -> JobOutcome:
        """
        Run the handler for one job.

        Raises InvalidJobPayload for data that doesn't match the job name and
        DeliveryFailed for anything else that goes wrong.
        """
        payload = job.payload()
        try:
            if isinstance(payload, RegistrationConfirmationJob):
                return await self._send_confirmation(payload)
            return await self._send_reminder(payload)
        except Exception as e:
            logger.error("job_handler_failed", error=str(e), attempt=job.attempts_made + 1)
            raise DeliveryFailed(f"{job.name} job {job.id} failed: {e}") from e

    async def _send_confirmation(self, job: RegistrationConfirmationJob) -> JobOutcome:
        # The registration may have been cancelled (or purged) since enqueue
        if not await self.store.registration_exists(job.registration_id):
            logger.warning(
                "confirmation_skipped",
                kind=ErrorKind.SKIPPED.value,
                registration_id=job.registration_id,
                reason="registration_missing",
            )
            return JobOutcome.SKIPPED

        subject, body = confirmation_message(job)
        await self._deliver(job.user_id, job.user_email, subject, body)
        return JobOutcome.SUCCESS

    async def _send_reminder(self, job: ReminderNotificationJob) -> JobOutcome:
        if not await self.store.is_registered(job.competition_id, job.user_id):
            logger.warning(
                "reminder_skipped",
                kind=ErrorKind.SKIPPED.value,
                competition_id=job.competition_id,
                user_id=job.user_id,
                reason="registration_missing",
            )
            return JobOutcome.SKIPPED

        subject, body = reminder_message(job)
        await self._deliver(job.user_id, job.user_email, subject, body)
        return JobOutcome.SUCCESS

    async def _deliver(self, user_id: int, to: str, subject: str, body: str) -> int:
        """Record the outbound message. Stands in for an email provider."""
        async with self._sessions() as session:
            async with session.begin():
                mail = MailBox(user_id=user_id, to=to, subject=subject, body=body)
                session.add(mail)
                await session.flush()
        logger.info("mail_delivered", mailbox_id=mail.id, user_id=user_id, subject=subject)
        return mail.id

    # ------------------------------------------------------------------
    # Queue plumbing
    # ------------------------------------------------------------------

    async def handle(self, job: QueuedJob) -> None:
        """Process one claimed job and settle it with the queue."""
        with structlog.contextvars.bound_contextvars(job_id=job.id, job_name=job.name):
            try:
                outcome = await self.process(job)
            except InvalidJobPayload as e:
                if await self.queue.fail(job, e, retry=False):
                    # Lease lost; the requeued copy will fail the same way
                    return
                await self.on_failed(job, e)
                return
            except DeliveryFailed as e:
                if await self.queue.fail(job, e):
                    record_notification_processed(job.name, "retry")
                    return
                await self.on_failed(job, e)
                return

            await self.queue.complete(job)
            record_notification_processed(job.name, outcome.value)
            logger.info("job_completed", outcome=outcome.value)

    async def on_failed(self, job: QueuedJob, error: BaseException) -> Optional[int]:
        """Persist a dead-letter record. Returns its id, or None if the write failed."""
        stack_trace = "".join(traceback.format_exception(error))
        try:
            async with self._sessions() as session:
                async with session.begin():
                    record = FailedJob(
                        job_id=job.id,
                        job_name=job.name,
                        payload=job.data,
                        error=str(error),
                        stack_trace=stack_trace,
                        attempts=job.attempts_made,
                    )
                    session.add(record)
                    await session.flush()
        except Exception as e:
            dead_letter_write_errors.inc()
            logger.error(
                "dead_letter_write_failed",
                kind=ErrorKind.EXHAUSTED.value,
                job_error=str(error),
                error=str(e),
            )
            return None

        record_notification_processed(job.name, "dead_lettered")
        logger.error(
            "job_dead_lettered",
            kind=ErrorKind.EXHAUSTED.value,
            failed_job_id=record.id,
            attempts=job.attempts_made,
            error=str(error),
        )
        return record.id

    async def run_once(self, limit: int = 10) -> int:
        """Claim and handle up to `limit` ready jobs. Returns how many ran."""
        handled = 0
        while handled < limit:
            job = await self.queue.claim(self.lease_seconds)
            if job is None:
                break
            await self.handle(job)
            handled += 1
        return handled

    async def run(self, stop: Optional[asyncio.Event] = None) -> None:
        """Poll the queue with `concurrency` consumers until `stop` is set."""
        stop = stop or asyncio.Event()
        logger.info(
            "worker_started",
            queue=self.queue.name,
            concurrency=self.concurrency,
            lease_seconds=self.lease_seconds,
        )
        await asyncio.gather(
            *(self._consume(i, stop) for i in range(self.concurrency)),
            self._reap(stop),
        )
        logger.info("worker_stopped", queue=self.queue.name)

    async def _consume(self, consumer: int, stop: asyncio.Event) -> None:
        backoff = self.poll_interval
        while not stop.is_set():
            try:
                handled = await self.run_once(limit=1)
            except Exception as e:
                # Redis or database unreachable: back off and try again
                sleep_for = min(backoff * (2.0 + random.uniform(0.0, 0.5)), self.max_backoff)
                logger.error("worker_poll_failed", consumer=consumer, error=str(e), retry_in_s=round(sleep_for, 1))
                await _wait(stop, sleep_for)
                backoff = sleep_for
                continue

            backoff = self.poll_interval
            if not handled:
                await _wait(stop, self.poll_interval)

    async def _reap(self, stop: asyncio.Event) -> None:
        while not stop.is_set():
            try:
                await self.queue.reap_stalled(self.reaper_batch_size)
            except Exception as e:
                logger.error("lease_reaper_failed", error=str(e))
            await _wait(stop, self.reaper_interval)


async def _wait(stop: asyncio.Event, timeout: float) -> None:
    """Sleep for `timeout` seconds, returning early once `stop` is set."""
    try:
        await asyncio.wait_for(stop.wait(), timeout=timeout)
    except asyncio.TimeoutError:
        pass
