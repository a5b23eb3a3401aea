"""
Pytest fixtures for test database, Redis, container, client, and authentication.

Every test gets its own SQLite file database (override with TEST_DATABASE_URL)
and its own in-memory Redis server (fakeredis with Lua support), wired together
through the same build_container() the API uses.

Fixtures open short-lived sessions only: on SQLite every transaction holds the
write lock, so a session kept open by a fixture would block the code under
test.
"""

import os
from datetime import datetime, timezone, timedelta
from typing import AsyncGenerator

import fakeredis
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import func, select

from minicompete.bootstrap import Container, build_container
from minicompete.core.config import get_settings
from minicompete.core.security import Role, create_access_token
from minicompete.db.base import Base
from minicompete.main import app
from minicompete.models import Competition, Registration, User

TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL")


class FakeClock:
    """Controllable wall clock for the notification queue (seconds since epoch)."""

    def __init__(self, start: float = 1_800_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def settings():
    return get_settings()


@pytest_asyncio.fixture
async def redis_client():
    client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    await client.aclose()


@pytest_asyncio.fixture
async def container(tmp_path, settings, redis_client) -> AsyncGenerator[Container, None]:
    url = TEST_DATABASE_URL or f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"
    container = build_container(settings, database_url=url, redis_client=redis_client)

    async with container.database.engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield container

    await container.database.dispose()


@pytest_asyncio.fixture
async def client(container: Container) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app with the test container installed."""
    app.state.container = container

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.state.container = None


async def create_user(container: Container, email: str, name: str, role: Role = Role.PARTICIPANT) -> User:
    async with container.database.sessions() as session:
        async with session.begin():
            user = User(email=email, name=name, role=role.value)
            session.add(user)
            await session.flush()
    return user


async def create_competition(
    container: Container,
    organizer: User,
    *,
    capacity: int = 100,
    reg_deadline: datetime | None = None,
    start_date: datetime | None = None,
    title: str = "Test Hackathon",
) -> Competition:
    now = datetime.now(timezone.utc)
    async with container.database.sessions() as session:
        async with session.begin():
            competition = Competition(
                title=title,
                description="A test competition",
                tags=["test"],
                capacity=capacity,
                reg_deadline=reg_deadline or now + timedelta(days=7),
                start_date=start_date or now + timedelta(days=14),
                organizer_id=organizer.id,
            )
            session.add(competition)
            await session.flush()
    return competition


async def live_registration_count(container: Container, competition_id: int) -> int:
    async with container.database.sessions() as session:
        return await session.scalar(
            select(func.count(Registration.id)).where(
                Registration.competition_id == competition_id,
                Registration.deleted_at.is_(None),
            )
        )


def bearer(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id, Role(user.role))}"}


@pytest_asyncio.fixture
async def organizer(container: Container) -> User:
    return await create_user(container, "organizer@example.com", "Olive Organizer", Role.ORGANIZER)


@pytest_asyncio.fixture
async def participant(container: Container) -> User:
    return await create_user(container, "alice@example.com", "Alice")


@pytest_asyncio.fixture
async def other_participant(container: Container) -> User:
    return await create_user(container, "bob@example.com", "Bob")


@pytest_asyncio.fixture
async def competition(container: Container, organizer: User) -> Competition:
    """An open competition with 100 seats."""
    return await create_competition(container, organizer)


@pytest.fixture
def participant_headers(participant: User) -> dict:
    return bearer(participant)


@pytest.fixture
def organizer_headers(organizer: User) -> dict:
    return bearer(organizer)
