"""
Tests for the Redis notification queue: validation, leasing, retry backoff and
stalled-lease recovery. Time is driven by a fake clock, nothing sleeps.
"""

import pytest

from minicompete.core.errors import InvalidJobPayload
from minicompete.schemas.notification import (
    REGISTRATION_CONFIRMATION,
    REMINDER_NOTIFICATION,
    Backoff,
    JobOptions,
    RegistrationConfirmationJob,
)
from minicompete.services.notification_queue import NotificationQueue

from conftest import FakeClock

CONFIRMATION = {
    "kind": REGISTRATION_CONFIRMATION,
    "registration_id": 1,
    "user_id": 2,
    "competition_id": 3,
    "user_email": "alice@example.com",
    "user_name": "Alice",
    "competition_title": "Test Hackathon",
}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def queue(redis_client, clock):
    return NotificationQueue(redis_client, "email", clock=clock)


@pytest.mark.asyncio
async def test_add_and_claim_in_fifo_order(queue):
    first = await queue.add(REGISTRATION_CONFIRMATION, CONFIRMATION)
    second = await queue.add(
        REGISTRATION_CONFIRMATION, RegistrationConfirmationJob(**{**CONFIRMATION, "registration_id": 9})
    )

    job = await queue.claim(lease_seconds=60)
    assert job.id == first
    assert job.data == CONFIRMATION
    assert job.attempts_made == 0
    assert job.options == JobOptions()
    assert isinstance(job.payload(), RegistrationConfirmationJob)

    assert (await queue.claim(lease_seconds=60)).id == second
    assert await queue.claim(lease_seconds=60) is None


@pytest.mark.asyncio
async def test_add_rejects_invalid_payload(queue):
    with pytest.raises(InvalidJobPayload):
        await queue.add(REGISTRATION_CONFIRMATION, {**CONFIRMATION, "registration_id": "not-a-number"})

    # Payload valid for another job name
    with pytest.raises(InvalidJobPayload):
        await queue.add(REMINDER_NOTIFICATION, CONFIRMATION)

    assert await queue.counts() == {"waiting": 0, "delayed": 0, "active": 0}


@pytest.mark.asyncio
async def test_complete_removes_job(queue, redis_client):
    job_id = await queue.add(REGISTRATION_CONFIRMATION, CONFIRMATION)
    job = await queue.claim(lease_seconds=60)
    assert await queue.counts() == {"waiting": 0, "delayed": 0, "active": 1}

    await queue.complete(job)

    assert await queue.counts() == {"waiting": 0, "delayed": 0, "active": 0}
    assert await redis_client.exists(f"queue:email:job:{job_id}") == 0


@pytest.mark.asyncio
async def test_retry_uses_exponential_backoff(queue, clock):
    await queue.add(REGISTRATION_CONFIRMATION, CONFIRMATION)

    job = await queue.claim(lease_seconds=60)
    assert await queue.fail(job, RuntimeError("smtp down")) is True
    assert job.attempts_made == 1

    # First retry after 2s
    clock.advance(1.9)
    assert await queue.claim(lease_seconds=60) is None
    clock.advance(0.2)
    job = await queue.claim(lease_seconds=60)
    assert job.attempts_made == 1
    assert job.last_error == "smtp down"

    # Second retry after 4s
    assert await queue.fail(job, RuntimeError("smtp down")) is True
    clock.advance(3.9)
    assert await queue.claim(lease_seconds=60) is None
    clock.advance(0.2)
    job = await queue.claim(lease_seconds=60)
    assert job.attempts_made == 2

    # Third failure exhausts the job
    assert await queue.fail(job, RuntimeError("smtp down")) is False
    assert job.attempts_made == 3
    assert await queue.counts() == {"waiting": 0, "delayed": 0, "active": 0}


@pytest.mark.asyncio
async def test_fail_without_retry_exhausts_immediately(queue):
    await queue.add(REGISTRATION_CONFIRMATION, CONFIRMATION)
    job = await queue.claim(lease_seconds=60)

    assert await queue.fail(job, ValueError("bad payload"), retry=False) is False
    assert job.attempts_made == 1
    assert await queue.counts() == {"waiting": 0, "delayed": 0, "active": 0}


@pytest.mark.asyncio
async def test_custom_options(queue, clock):
    options = JobOptions(attempts=2, backoff=Backoff(type="fixed", delay_ms=500))
    await queue.add(REGISTRATION_CONFIRMATION, CONFIRMATION, options)

    job = await queue.claim(lease_seconds=60)
    assert job.options == options
    assert await queue.fail(job, RuntimeError("x")) is True

    clock.advance(0.5)
    job = await queue.claim(lease_seconds=60)
    assert await queue.fail(job, RuntimeError("x")) is False


@pytest.mark.asyncio
async def test_stalled_lease_is_requeued(queue, clock):
    """A worker that dies mid-job doesn't lose it; the job runs again."""
    job_id = await queue.add(REGISTRATION_CONFIRMATION, CONFIRMATION)
    await queue.claim(lease_seconds=30)

    clock.advance(29)
    assert await queue.reap_stalled() == 0

    clock.advance(2)
    assert await queue.reap_stalled() == 1
    assert await queue.counts() == {"waiting": 1, "delayed": 0, "active": 0}

    job = await queue.claim(lease_seconds=30)
    assert job.id == job_id
    # Lease expiry is not a failed attempt
    assert job.attempts_made == 0


def test_backoff_delays():
    backoff = Backoff(type="exponential", delay_ms=2000)
    assert [backoff.delay_for(n) for n in (1, 2, 3)] == [2000, 4000, 8000]
    assert Backoff(type="fixed", delay_ms=700).delay_for(3) == 700


@pytest.mark.asyncio
async def test_fail_after_lease_expired_leaves_requeued_job(queue, clock):
    """A worker that overran its lease must not schedule a second copy."""
    job_id = await queue.add(REGISTRATION_CONFIRMATION, CONFIRMATION)
    slow = await queue.claim(lease_seconds=30)
    clock.advance(31)
    assert await queue.reap_stalled() == 1

    assert await queue.fail(slow, RuntimeError("smtp timeout")) is True
    assert await queue.counts() == {"waiting": 1, "delayed": 0, "active": 0}

    clock.advance(60)
    job = await queue.claim(lease_seconds=30)
    assert job.id == job_id
    assert job.attempts_made == 1
    assert job.last_error == "smtp timeout"
    assert await queue.claim(lease_seconds=30) is None


@pytest.mark.asyncio
async def test_exhausted_fail_after_lease_expired_does_not_delete(queue, clock, redis_client):
    job_id = await queue.add(REGISTRATION_CONFIRMATION, CONFIRMATION)
    slow = await queue.claim(lease_seconds=30)
    clock.advance(31)
    await queue.reap_stalled()

    assert await queue.fail(slow, ValueError("bad"), retry=False) is True
    assert await redis_client.exists(f"queue:email:job:{job_id}") == 1
    assert await queue.counts() == {"waiting": 1, "delayed": 0, "active": 0}


@pytest.mark.asyncio
async def test_complete_after_lease_expired_removes_requeued_copy(queue, clock, redis_client):
    job_id = await queue.add(REGISTRATION_CONFIRMATION, CONFIRMATION)
    slow = await queue.claim(lease_seconds=30)
    clock.advance(31)
    await queue.reap_stalled()

    await queue.complete(slow)

    assert await queue.counts() == {"waiting": 0, "delayed": 0, "active": 0}
    assert await redis_client.exists(f"queue:email:job:{job_id}") == 0


@pytest.mark.asyncio
async def test_complete_after_lease_expired_leaves_new_holder_alone(queue, clock, redis_client):
    job_id = await queue.add(REGISTRATION_CONFIRMATION, CONFIRMATION)
    slow = await queue.claim(lease_seconds=30)
    clock.advance(31)
    await queue.reap_stalled()
    current = await queue.claim(lease_seconds=30)

    await queue.complete(slow)

    assert await queue.counts() == {"waiting": 0, "delayed": 0, "active": 1}
    assert await redis_client.exists(f"queue:email:job:{job_id}") == 1

    await queue.complete(current)
    assert await queue.counts() == {"waiting": 0, "delayed": 0, "active": 0}
