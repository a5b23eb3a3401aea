"""
Seed demo data: organizers, participants and a few competitions.

    cd backend
    alembic upgrade head
    python -m scripts.seed --participants 200

Prints a bearer token per seeded organizer plus the first participant, for
trying the API by hand. User ids are stable on an empty database: organizers
first, then participants (the locust suite relies on that).
"""

import argparse
import asyncio
from datetime import timedelta

from minicompete.core.config import get_settings
from minicompete.core.logging import get_logger, setup_logging
from minicompete.core.security import Role, create_access_token
from minicompete.db.base import Base, utcnow
from minicompete.db.session import create_database
from minicompete.models import Competition, User

COMPETITIONS = [
    ("Hackathon 2026", "48-hour hackathon", ["coding", "teams"], 100, 7, 10),
    ("Last Seat Sprint", "Tiny capacity to watch contention", ["load-test"], 1, 3, 5),
    ("Tomorrow's Quiz", "Starts within a day, triggers reminders", ["quiz"], 50, 0.5, 0.9),
]


async def seed(organizers: int, participants: int, create_tables: bool) -> None:
    settings = get_settings()
    setup_logging(service="seed")
    logger = get_logger(__name__)
    database = create_database(settings)

    try:
        if create_tables:
            async with database.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

        async with database.sessions() as session:
            async with session.begin():
                organizer_rows = [
                    User(email=f"organizer{i}@example.com", name=f"Organizer {i}", role=Role.ORGANIZER.value)
                    for i in range(1, organizers + 1)
                ]
                session.add_all(organizer_rows)
                await session.flush()

                participant_rows = [
                    User(email=f"load_{i}@test.com", name=f"Participant {i}", role=Role.PARTICIPANT.value)
                    for i in range(1, participants + 1)
                ]
                session.add_all(participant_rows)
                await session.flush()

                now = utcnow()
                for title, description, tags, capacity, deadline_days, start_days in COMPETITIONS:
                    session.add(
                        Competition(
                            title=title,
                            description=description,
                            tags=tags,
                            capacity=capacity,
                            reg_deadline=now + timedelta(days=deadline_days),
                            start_date=now + timedelta(days=start_days),
                            organizer_id=organizer_rows[0].id,
                        )
                    )

        logger.info(
            "seed_completed",
            organizers=organizers,
            participants=participants,
            competitions=len(COMPETITIONS),
            participant_ids=f"{participant_rows[0].id}-{participant_rows[-1].id}" if participant_rows else None,
        )
        for organizer in organizer_rows:
            print(f"organizer {organizer.id}: {create_access_token(organizer.id, Role.ORGANIZER)}")
        if participant_rows:
            first = participant_rows[0]
            print(f"participant {first.id}: {create_access_token(first.id, Role.PARTICIPANT)}")
    finally:
        await database.dispose()


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed Mini Compete demo data")
    parser.add_argument("--organizers", type=int, default=1)
    parser.add_argument("--participants", type=int, default=200)
    parser.add_argument("--create-tables", action="store_true", help="create tables without alembic (SQLite dev)")
    args = parser.parse_args()
    asyncio.run(seed(args.organizers, args.participants, args.create_tables))


if __name__ == "__main__":
    main()
