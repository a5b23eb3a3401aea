"""
Locust Load Test Suite

Tokens are minted locally with the shared SECRET_KEY, so seed users first:
  python -m scripts.seed --participants 200      # from backend/

Run scenarios:
  locust -f locustfile.py --tags concurrency  # Test overselling the last seats
  locust -f locustfile.py --tags idempotency  # Test retried requests
  locust -f locustfile.py --tags edge         # Test bad input
  locust -f locustfile.py                     # All tests

Environment:
  LOCUST_ORGANIZER_ID        organizer user id (default 1)
  LOCUST_PARTICIPANT_IDS     participant id range "first-last" (default 2-201)
"""

import itertools
import os
import random
import uuid
from datetime import datetime, timezone, timedelta

from locust import HttpUser, task, between, tag, events

from minicompete.core.security import Role, create_access_token

ORGANIZER_ID = int(os.environ.get("LOCUST_ORGANIZER_ID", "1"))
_first, _last = (int(x) for x in os.environ.get("LOCUST_PARTICIPANT_IDS", "2-201").split("-"))
PARTICIPANT_IDS = itertools.cycle(range(_first, _last + 1))

# Shared state
CONCURRENCY_COMPETITION_ID = None
CONCURRENCY_CAPACITY = 10


def auth_headers(user_id: int, role: Role) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user_id, role)}"}


def create_competition(client, capacity: int, title: str):
    now = datetime.now(timezone.utc)
    resp = client.post(
        "/api/v1/competitions",
        json={
            "title": title,
            "description": f"{capacity} seats only",
            "tags": ["load-test"],
            "capacity": capacity,
            "reg_deadline": (now + timedelta(days=7)).isoformat(),
            "start_date": (now + timedelta(days=14)).isoformat(),
        },
        headers=auth_headers(ORGANIZER_ID, Role.ORGANIZER),
    )
    if resp.status_code == 201:
        return resp.json()["id"]
    return None


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    """Setup: Create a competition with limited seats for the concurrency test."""
    print("\n" + "="*60)
    print("SETUP: Creating concurrency test competition...")
    print("="*60)


class ConcurrencyUser(HttpUser):
    """
    TEST 1: Concurrency - 100 participants → 10 seats

    Run: locust -f locustfile.py --tags concurrency -u 100 -r 50 --run-time 30s

    After test, verify:
      SELECT COUNT(*) FROM registrations WHERE competition_id = X AND deleted_at IS NULL;
    Should be exactly 10
    """
    wait_time = between(0, 0.1)

    def on_start(self):
        self.user_id = next(PARTICIPANT_IDS)
        self.headers = auth_headers(self.user_id, Role.PARTICIPANT)

        if not CONCURRENCY_COMPETITION_ID:
            competition_id = create_competition(self.client, CONCURRENCY_CAPACITY, "Concurrency Test Competition")
            if competition_id:
                globals()["CONCURRENCY_COMPETITION_ID"] = competition_id
                print(f"\n✓ Created competition {competition_id} with {CONCURRENCY_CAPACITY} seats\n")

    @tag("concurrency")
    @task
    def register_for_limited_seats(self):
        """All participants fight for the same 10 seats."""
        if not CONCURRENCY_COMPETITION_ID:
            return

        with self.client.post(
            f"/api/v1/competitions/{CONCURRENCY_COMPETITION_ID}/register",
            headers=self.headers,
            name="/api/v1/competitions/{id}/register",
            catch_response=True,
        ) as resp:
            if resp.status_code == 201:
                resp.success()
            elif resp.status_code in (400, 409):
                resp.success()  # Expected: full, already registered, or busy
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class IdempotentRetryUser(HttpUser):
    """
    TEST 2: Idempotency - every registration is sent twice with the same key

    Run: locust -f locustfile.py --tags idempotency -u 50 -r 10 --run-time 60s

    The second request must be a replay of the first (same body,
    Idempotent-Replayed: true), never a second registration.
    """
    wait_time = between(0.1, 0.5)

    def on_start(self):
        self.user_id = next(PARTICIPANT_IDS)
        self.headers = auth_headers(self.user_id, Role.PARTICIPANT)
        self.competition_id = create_competition(self.client, 1000, f"Idempotency {uuid.uuid4().hex[:6]}")

    @tag("idempotency")
    @task
    def register_twice(self):
        if not self.competition_id:
            return

        key = str(uuid.uuid4())
        url = f"/api/v1/competitions/{self.competition_id}/register"
        headers = {**self.headers, "Idempotency-Key": key}
        first = self.client.post(url, headers=headers, name="/api/v1/competitions/{id}/register [first]")

        with self.client.post(
            url,
            headers=headers,
            name="/api/v1/competitions/{id}/register [retry]",
            catch_response=True,
        ) as resp:
            if first.status_code != 201:
                resp.success()
            elif resp.status_code == 201 and resp.headers.get("Idempotent-Replayed") == "true":
                if resp.json() == first.json():
                    resp.success()
                else:
                    resp.failure("Replayed body differs from the original")
            else:
                resp.failure(f"Expected replay, got {resp.status_code}")

        # Free the seat so the next iteration can register again
        self.client.delete(url, headers=self.headers, name="/api/v1/competitions/{id}/register [cancel]")


class EdgeCaseUser(HttpUser):
    """
    TEST 3: Edge cases - Bad input handling

    Run: locust -f locustfile.py --tags edge -u 20 -r 5 --run-time 30s

    System should NOT crash, return proper error codes.
    """
    wait_time = between(0.5, 1.5)

    def on_start(self):
        self.headers = auth_headers(next(PARTICIPANT_IDS), Role.PARTICIPANT)

    @tag("edge")
    @task
    def invalid_competition_id(self):
        """Register for a non-existent competition."""
        with self.client.post(
            "/api/v1/competitions/999999/register",
            headers=self.headers,
            name="/api/v1/competitions/{id}/register [missing]",
            catch_response=True,
        ) as resp:
            if resp.status_code == 404:
                resp.success()
            else:
                resp.failure(f"Expected 404, got {resp.status_code}")

    @tag("edge")
    @task
    def participant_creates_competition(self):
        """Participants may not create competitions."""
        with self.client.post(
            "/api/v1/competitions",
            json={"title": "x", "description": "x", "capacity": 1,
                  "reg_deadline": (datetime.now(timezone.utc) + timedelta(days=1)).isoformat()},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            if resp.status_code == 403:
                resp.success()
            else:
                resp.failure(f"Expected 403, got {resp.status_code}")

    @tag("edge")
    @task
    def zero_capacity(self):
        """Organizer sends a competition without seats."""
        with self.client.post(
            "/api/v1/competitions",
            json={"title": "x", "description": "x", "capacity": 0,
                  "reg_deadline": (datetime.now(timezone.utc) + timedelta(days=1)).isoformat()},
            headers=auth_headers(ORGANIZER_ID, Role.ORGANIZER),
            name="/api/v1/competitions [invalid]",
            catch_response=True,
        ) as resp:
            if resp.status_code in [400, 422]:
                resp.success()
            else:
                resp.failure(f"Expected 400/422, got {resp.status_code}")

    @tag("edge")
    @task
    def missing_auth(self):
        """Try registering without auth."""
        with self.client.post(
            f"/api/v1/competitions/{random.randint(1, 10)}/register",
            name="/api/v1/competitions/{id}/register [anonymous]",
            catch_response=True,
        ) as resp:
            if resp.status_code == 401:
                resp.success()
            else:
                resp.failure(f"Expected 401, got {resp.status_code}")
