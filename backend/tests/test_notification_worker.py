"""
Tests for the notification worker: mailbox delivery, skipped jobs, retries and
dead-lettering.
"""

import asyncio

import pytest
from sqlalchemy import func, select

from minicompete.models.failed_job import FailedJob
from minicompete.models.mailbox import MailBox
from minicompete.schemas.notification import REGISTRATION_CONFIRMATION, REMINDER_NOTIFICATION
from minicompete.services.notification_queue import NotificationQueue
from minicompete.services.notification_worker import JobOutcome, NotificationWorker

from conftest import FakeClock


class UnavailableSessions:
    """Session factory whose sessions fail to open."""

    def __call__(self):
        return self

    async def __aenter__(self):
        raise ConnectionError("database down")

    async def __aexit__(self, *exc_info):
        return False


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def worker(container, redis_client, clock):
    queue = NotificationQueue(redis_client, "email", clock=clock)
    container.registrations.queue = queue
    return NotificationWorker(queue, container.competitions, container.database.sessions, lease_seconds=60)


async def mailbox_rows(container, user_id=None):
    query = select(MailBox).order_by(MailBox.id)
    if user_id is not None:
        query = query.where(MailBox.user_id == user_id)
    async with container.database.sessions() as session:
        return list((await session.execute(query)).scalars().all())


async def failed_jobs(container):
    async with container.database.sessions() as session:
        return list((await session.execute(select(FailedJob).order_by(FailedJob.id))).scalars().all())


@pytest.mark.asyncio
async def test_confirmation_is_delivered(container, worker, competition, participant):
    outcome = await container.registrations.register(competition.id, participant.id)

    assert await worker.run_once() == 1

    [mail] = await mailbox_rows(container, participant.id)
    assert mail.to == "alice@example.com"
    assert mail.subject == "Registration Confirmed: Test Hackathon"
    assert "Hi Alice" in mail.body
    assert f"Registration ID: {outcome.response['id']}" in mail.body
    assert await worker.queue.counts() == {"waiting": 0, "delayed": 0, "active": 0}


@pytest.mark.asyncio
async def test_cancelled_registration_is_skipped(container, worker, competition, participant):
    await container.registrations.register(competition.id, participant.id)
    await container.competitions.cancel_registration(competition.id, participant.id)

    job = await worker.queue.claim(worker.lease_seconds)
    assert await worker.process(job) is JobOutcome.SKIPPED
    await worker.queue.complete(job)

    assert await mailbox_rows(container) == []
    assert await failed_jobs(container) == []


@pytest.mark.asyncio
async def test_reminder_is_delivered(container, worker, competition, participant):
    await container.competitions.register_participant(competition.id, participant.id)
    await worker.queue.add(
        REMINDER_NOTIFICATION,
        {
            "kind": REMINDER_NOTIFICATION,
            "user_id": participant.id,
            "competition_id": competition.id,
            "user_email": participant.email,
            "user_name": participant.name,
            "competition_title": competition.title,
            "competition_start_date": "2026-11-02T09:00:00+00:00",
        },
    )

    assert await worker.run_once() == 1

    [mail] = await mailbox_rows(container, participant.id)
    assert mail.subject == "Reminder: Test Hackathon starts soon!"
    assert "2026-11-02T09:00:00+00:00" in mail.body


@pytest.mark.asyncio
async def test_job_failing_every_attempt_is_dead_lettered(container, worker, clock, competition, participant, monkeypatch):
    await container.registrations.register(competition.id, participant.id)

    async def smtp_down(user_id, to, subject, body):
        raise ConnectionError("smtp down")

    monkeypatch.setattr(worker, "_deliver", smtp_down)

    for _ in range(3):
        assert await worker.run_once() == 1
        clock.advance(60)

    assert await worker.run_once() == 0
    [failed] = await failed_jobs(container)
    assert failed.job_name == REGISTRATION_CONFIRMATION
    assert failed.attempts == 3
    assert "smtp down" in failed.error
    assert "ConnectionError" in failed.stack_trace
    assert failed.payload["user_email"] == "alice@example.com"
    assert await mailbox_rows(container) == []


@pytest.mark.asyncio
async def test_transient_failure_then_success(container, worker, clock, competition, participant, monkeypatch):
    await container.registrations.register(competition.id, participant.id)
    real_deliver = worker._deliver
    calls = []

    async def flaky(user_id, to, subject, body):
        calls.append(1)
        if len(calls) == 1:
            raise ConnectionError("timeout")
        return await real_deliver(user_id, to, subject, body)

    monkeypatch.setattr(worker, "_deliver", flaky)

    await worker.run_once()
    assert await mailbox_rows(container) == []

    clock.advance(2)
    await worker.run_once()

    assert len(await mailbox_rows(container)) == 1
    assert await failed_jobs(container) == []


@pytest.mark.asyncio
async def test_invalid_payload_is_dead_lettered_without_retry(container, worker, redis_client):
    job_id = await worker.queue.add(
        REGISTRATION_CONFIRMATION,
        {
            "kind": REGISTRATION_CONFIRMATION,
            "registration_id": 1,
            "user_id": 1,
            "competition_id": 1,
            "user_email": "a@example.com",
            "user_name": "A",
            "competition_title": "T",
        },
    )
    # Stored data drifts after enqueue
    await redis_client.hset(f"queue:email:job:{job_id}", "data", '{"kind": "registration-confirmation"}')

    assert await worker.run_once() == 1

    [failed] = await failed_jobs(container)
    assert failed.attempts == 1
    assert failed.job_id == job_id
    assert await worker.queue.counts() == {"waiting": 0, "delayed": 0, "active": 0}


@pytest.mark.asyncio
async def test_dead_letter_write_failure_is_logged_not_retried(container, worker, competition, participant, monkeypatch):
    await container.registrations.register(competition.id, participant.id)

    async def smtp_down(user_id, to, subject, body):
        raise ConnectionError("smtp down")

    monkeypatch.setattr(worker, "_deliver", smtp_down)

    job = await worker.queue.claim(worker.lease_seconds)
    job.options.attempts = 1
    monkeypatch.setattr(worker, "_sessions", UnavailableSessions())

    await worker.handle(job)

    assert await worker.queue.counts() == {"waiting": 0, "delayed": 0, "active": 0}
    async with container.database.sessions() as session:
        assert await session.scalar(select(func.count(FailedJob.id))) == 0


@pytest.mark.asyncio
async def test_run_stops_when_signalled(container, worker, competition, participant):
    await container.registrations.register(competition.id, participant.id)
    worker.poll_interval = 0.01
    worker.reaper_interval = 0.01

    stop = asyncio.Event()
    task = asyncio.create_task(worker.run(stop))
    for _ in range(200):
        if await mailbox_rows(container):
            break
        await asyncio.sleep(0.01)
    stop.set()
    await asyncio.wait_for(task, timeout=2)

    assert len(await mailbox_rows(container)) == 1
