"""
Registration model representing a participant's seat in a competition.

Key design decisions:
- Soft delete via `deleted_at`: cancelling keeps the row for auditing until
  the weekly purge removes it. Only live rows (deleted_at IS NULL) hold a seat.
- Partial unique index on (competition_id, user_id) over live rows: at most
  one live registration per participant, while a cancelled one does not block
  registering again. The registration transaction checks this first; the index
  is the last line of defence.
- Status field allows a pending -> confirmed flow; both states hold a seat.
"""

from sqlalchemy import CheckConstraint, Column, ForeignKey, Index, Integer, String, text
from sqlalchemy.orm import relationship

from minicompete.db.base import Base, TimestampMixin, UTCDateTime

LIVE_ROWS = text("deleted_at IS NULL")


class Registration(Base, TimestampMixin):
    __tablename__ = "registrations"

    id = Column(Integer, primary_key=True, index=True)
    competition_id = Column(Integer, ForeignKey("competitions.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="confirmed")  # pending, confirmed
    deleted_at = Column(UTCDateTime, nullable=True)

    # Relationships
    competition = relationship("Competition", back_populates="registrations")
    user = relationship("User", back_populates="registrations")

    __table_args__ = (
        Index(
            "uq_live_registration",
            "competition_id",
            "user_id",
            unique=True,
            postgresql_where=LIVE_ROWS,
            sqlite_where=LIVE_ROWS,
        ),
        CheckConstraint("status IN ('pending', 'confirmed')", name="check_registration_status"),
        Index("ix_registrations_deleted_at", "deleted_at"),
    )

    @property
    def is_live(self) -> bool:
        return self.deleted_at is None

    def __repr__(self) -> str:
        return (
            f"<Registration(id={self.id}, competition={self.competition_id}, "
            f"user={self.user_id}, live={self.is_live})>"
        )
