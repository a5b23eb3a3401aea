"""
Declarative base, timestamp mixin and the timezone-aware DateTime type shared by
all models.
"""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, func
from sqlalchemy.orm import declarative_base
from sqlalchemy.types import TypeDecorator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """
    DateTime that always comes back timezone-aware (UTC).

    PostgreSQL returns aware values for timestamptz already; SQLite drops the
    offset, and comparing a naive deadline with an aware "now" would raise.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        # SQLite stores the wall-clock fields only, so normalise before binding
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


Base = declarative_base()


class TimestampMixin:
    # Python-side defaults so the values are available right after flush,
    # without a refresh round-trip.
    created_at = Column(UTCDateTime, nullable=False, default=utcnow, server_default=func.now())
    updated_at = Column(
        UTCDateTime,
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
    )
