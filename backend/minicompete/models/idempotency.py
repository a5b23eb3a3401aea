"""
Stored responses for the Idempotency-Key header.

The key is the primary key, so concurrent inserts of the same key resolve in
the database: exactly one wins, the other gets an IntegrityError.
"""

from sqlalchemy import JSON, Column, Index, String

from minicompete.db.base import Base, UTCDateTime, utcnow


class IdempotencyKey(Base):
    __tablename__ = "idempotency_keys"

    key = Column(String(255), primary_key=True)
    response = Column(JSON, nullable=False)
    expires_at = Column(UTCDateTime, nullable=False)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        # Purge sweep: DELETE ... WHERE expires_at <= :cutoff
        Index("ix_idempotency_keys_expires_at", "expires_at"),
    )

    def __repr__(self) -> str:
        return f"<IdempotencyKey(key={self.key!r}, expires_at={self.expires_at})>"
