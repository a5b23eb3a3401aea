"""
Tests for the HTTP API: auth guards, registration responses and error mapping.
"""

from datetime import datetime, timezone, timedelta

import pytest
from httpx import AsyncClient

from minicompete.core.security import Role, create_access_token

from conftest import bearer, create_competition


def future(**delta) -> str:
    return (datetime.now(timezone.utc) + timedelta(**delta)).isoformat()


@pytest.mark.asyncio
async def test_register_returns_201(client: AsyncClient, competition, participant, participant_headers):
    response = await client.post(
        f"/api/v1/competitions/{competition.id}/register",
        headers=participant_headers,
    )

    assert response.status_code == 201
    data = response.json()
    assert data["competition_id"] == competition.id
    assert data["user_id"] == participant.id
    assert data["competition"] == {"id": competition.id, "title": "Test Hackathon"}
    assert "Idempotent-Replayed" not in response.headers


@pytest.mark.asyncio
async def test_register_replay_with_idempotency_key(client: AsyncClient, competition, participant_headers):
    headers = {**participant_headers, "Idempotency-Key": "abc-123"}

    first = await client.post(f"/api/v1/competitions/{competition.id}/register", headers=headers)
    second = await client.post(f"/api/v1/competitions/{competition.id}/register", headers=headers)

    assert first.status_code == 201
    assert second.status_code == 201
    assert second.json() == first.json()
    assert second.headers["Idempotent-Replayed"] == "true"

    detail = await client.get(f"/api/v1/competitions/{competition.id}")
    assert detail.json()["registered_count"] == 1


@pytest.mark.asyncio
async def test_register_unauthenticated(client: AsyncClient, competition):
    response = await client.post(f"/api/v1/competitions/{competition.id}/register")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_register_invalid_token(client: AsyncClient, competition):
    response = await client.post(
        f"/api/v1/competitions/{competition.id}/register",
        headers={"Authorization": "Bearer not-a-jwt"},
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_organizer_cannot_register(client: AsyncClient, competition, organizer_headers):
    response = await client.post(
        f"/api/v1/competitions/{competition.id}/register",
        headers=organizer_headers,
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_register_unknown_competition(client: AsyncClient, participant_headers):
    response = await client.post("/api/v1/competitions/9999/register", headers=participant_headers)

    assert response.status_code == 404
    assert response.json()["error"] == "NotFound"


@pytest.mark.asyncio
async def test_register_twice_conflicts(client: AsyncClient, competition, participant_headers):
    url = f"/api/v1/competitions/{competition.id}/register"
    await client.post(url, headers=participant_headers)

    response = await client.post(url, headers=participant_headers)

    assert response.status_code == 409
    assert response.json() == {
        "detail": "You are already registered for this competition",
        "error": "AlreadyRegistered",
    }


@pytest.mark.asyncio
async def test_register_full_competition(client: AsyncClient, container, organizer, participant, other_participant):
    tiny = await create_competition(container, organizer, capacity=1)
    url = f"/api/v1/competitions/{tiny.id}/register"

    assert (await client.post(url, headers=bearer(other_participant))).status_code == 201
    response = await client.post(url, headers=bearer(participant))

    assert response.status_code == 400
    assert response.json()["error"] == "CapacityExceeded"


@pytest.mark.asyncio
async def test_register_after_deadline(client: AsyncClient, container, organizer, participant_headers):
    now = datetime.now(timezone.utc)
    closed = await create_competition(
        container, organizer, reg_deadline=now - timedelta(minutes=5), start_date=now + timedelta(days=1)
    )

    response = await client.post(f"/api/v1/competitions/{closed.id}/register", headers=participant_headers)

    assert response.status_code == 400
    assert response.json()["error"] == "DeadlinePassed"


@pytest.mark.asyncio
async def test_busy_has_retry_after(client: AsyncClient, container, competition, participant_headers):
    await container.redis.set(f"lock:competition:{competition.id}", "other-request", px=8000)

    response = await client.post(f"/api/v1/competitions/{competition.id}/register", headers=participant_headers)

    assert response.status_code == 409
    assert response.json()["error"] == "Busy"
    assert response.headers["Retry-After"] == "1"


@pytest.mark.asyncio
async def test_cancel_registration(client: AsyncClient, competition, participant_headers):
    url = f"/api/v1/competitions/{competition.id}/register"
    registered = await client.post(url, headers=participant_headers)

    response = await client.delete(url, headers=participant_headers)

    assert response.status_code == 200
    assert response.json()["registration_id"] == registered.json()["id"]
    detail = await client.get(f"/api/v1/competitions/{competition.id}")
    assert detail.json()["seats_left"] == 100

    again = await client.delete(url, headers=participant_headers)
    assert again.status_code == 404


@pytest.mark.asyncio
async def test_create_competition(client: AsyncClient, organizer, organizer_headers):
    response = await client.post(
        "/api/v1/competitions",
        json={
            "title": "Robotics Cup",
            "description": "Build a line follower",
            "tags": ["robots", "hardware"],
            "capacity": 20,
            "reg_deadline": future(days=3),
            "start_date": future(days=10),
        },
        headers=organizer_headers,
    )

    assert response.status_code == 201
    data = response.json()
    assert data["organizer_id"] == organizer.id
    assert data["capacity"] == 20

    detail = await client.get(f"/api/v1/competitions/{data['id']}")
    assert detail.json()["seats_left"] == 20


@pytest.mark.asyncio
async def test_create_competition_validation(client: AsyncClient, organizer_headers, participant_headers):
    body = {"title": "X", "description": "Y", "capacity": 5, "reg_deadline": future(days=1)}

    assert (await client.post("/api/v1/competitions", json=body, headers=participant_headers)).status_code == 403
    assert (
        await client.post("/api/v1/competitions", json={**body, "capacity": 0}, headers=organizer_headers)
    ).status_code == 422
    # start_date before the deadline
    assert (
        await client.post(
            "/api/v1/competitions", json={**body, "start_date": future(hours=1)}, headers=organizer_headers
        )
    ).status_code == 422

    past = await client.post(
        "/api/v1/competitions", json={**body, "reg_deadline": future(days=-1)}, headers=organizer_headers
    )
    assert past.status_code == 400
    assert past.json()["error"] == "Invalid"


@pytest.mark.asyncio
async def test_mailbox_after_worker_run(client: AsyncClient, container, competition, participant, participant_headers):
    await client.post(f"/api/v1/competitions/{competition.id}/register", headers=participant_headers)
    await container.build_worker().run_once()

    response = await client.get("/api/v1/users/me/mailbox", headers=participant_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["user_id"] == participant.id
    assert data["total_emails"] == 1
    assert data["emails"][0]["subject"] == "Registration Confirmed: Test Hackathon"


@pytest.mark.asyncio
async def test_failed_jobs_requires_organizer(client: AsyncClient, participant_headers, organizer_headers):
    assert (await client.get("/api/v1/admin/failed-jobs", headers=participant_headers)).status_code == 403

    response = await client.get(
        "/api/v1/admin/failed-jobs", params={"job_name": "registration-confirmation"}, headers=organizer_headers
    )
    assert response.status_code == 200
    assert response.json() == []


@pytest.mark.asyncio
async def test_expired_token_rejected(client: AsyncClient, competition, participant):
    token = create_access_token(participant.id, Role.PARTICIPANT, expires_minutes=-1)

    response = await client.post(
        f"/api/v1/competitions/{competition.id}/register",
        headers={"Authorization": f"Bearer {token}"},
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_health_and_metrics(client: AsyncClient):
    health = await client.get("/health")
    assert health.status_code == 200
    assert health.json()["database"] == "up"
    assert health.json()["redis"] == "up"

    metrics = await client.get("/metrics")
    assert metrics.status_code == 200
    assert "registration_attempts_total" in metrics.text
