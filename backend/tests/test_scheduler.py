"""
Tests for the scheduled maintenance tasks.
"""

import asyncio
from datetime import datetime, timezone, timedelta

import pytest

from minicompete.db.base import utcnow
from minicompete.schemas.notification import REMINDER_NOTIFICATION
from minicompete.services.scheduler_service import ScheduledTask

from conftest import create_competition, live_registration_count


@pytest.fixture
def scheduler(container):
    return container.build_scheduler()


@pytest.mark.asyncio
async def test_reminders_for_competitions_starting_within_a_day(
    container, scheduler, organizer, participant, other_participant
):
    now = datetime.now(timezone.utc)
    tomorrow = await create_competition(
        container, organizer, title="Tomorrow",
        reg_deadline=now + timedelta(hours=1), start_date=now + timedelta(hours=20),
    )
    next_week = await create_competition(
        container, organizer, title="Next week",
        reg_deadline=now + timedelta(days=2), start_date=now + timedelta(days=7),
    )
    store = container.competitions
    await store.register_participant(tomorrow.id, participant.id)
    await store.register_participant(tomorrow.id, other_participant.id)
    await store.register_participant(next_week.id, participant.id)
    await store.cancel_registration(tomorrow.id, other_participant.id)

    # Confirmation jobs from the registrations above are not what we count
    await container.redis.delete("queue:email:waiting")

    assert await scheduler.enqueue_competition_reminders(now) == 1

    job = await container.queue.claim(lease_seconds=60)
    assert job.name == REMINDER_NOTIFICATION
    assert job.data["user_id"] == participant.id
    assert job.data["competition_title"] == "Tomorrow"
    assert datetime.fromisoformat(job.data["competition_start_date"]) == tomorrow.start_date
    assert await container.queue.claim(lease_seconds=60) is None


@pytest.mark.asyncio
async def test_reminders_are_not_deduplicated(container, scheduler, organizer, participant):
    now = datetime.now(timezone.utc)
    soon = await create_competition(
        container, organizer, reg_deadline=now + timedelta(hours=1), start_date=now + timedelta(hours=3),
    )
    await container.competitions.register_participant(soon.id, participant.id)

    assert await scheduler.enqueue_competition_reminders(now) == 1
    assert await scheduler.enqueue_competition_reminders(now) == 1


@pytest.mark.asyncio
async def test_purge_expired_idempotency_keys(container, scheduler):
    await container.idempotency.store("stale", {"id": 1}, timedelta(hours=-1))
    await container.idempotency.store("live", {"id": 2}, timedelta(hours=24))

    assert await scheduler.purge_expired_idempotency_keys() == 1
    assert await container.idempotency.lookup("live") == {"id": 2}


@pytest.mark.asyncio
async def test_purge_soft_deleted_after_retention(container, scheduler, competition, participant, other_participant):
    store = container.competitions
    await store.register_participant(competition.id, participant.id)
    await store.register_participant(competition.id, other_participant.id)
    await store.cancel_registration(competition.id, participant.id)

    # Cancelled just now: inside the 30-day retention
    assert await scheduler.purge_soft_deleted_registrations(utcnow()) == 0
    assert await scheduler.purge_soft_deleted_registrations(utcnow() + timedelta(days=31)) == 1
    assert await live_registration_count(container, competition.id) == 1


@pytest.mark.asyncio
async def test_run_survives_failing_task(scheduler):
    calls = []

    async def flaky(now):
        calls.append(now)
        if len(calls) == 1:
            raise RuntimeError("database down")
        return 0

    stop = asyncio.Event()
    task = asyncio.create_task(scheduler.run([ScheduledTask("flaky", 0.01, flaky)], stop))
    for _ in range(200):
        if len(calls) >= 3:
            break
        await asyncio.sleep(0.01)
    stop.set()
    await asyncio.wait_for(task, timeout=2)

    assert len(calls) >= 3
