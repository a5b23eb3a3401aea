"""
Competition model.

Key design decisions:
- No denormalized seat counter: seats left is capacity minus the live
  registration count, computed inside the serializable registration
  transaction. A counter column would be a second source of truth to keep in
  sync on cancel and purge.
- `tags` is a JSON list so the model works on both PostgreSQL and SQLite.
- Index on `start_date` for the reminder scan ("competitions starting in the
  next 24 hours").
"""

from sqlalchemy import JSON, CheckConstraint, Column, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from minicompete.db.base import Base, TimestampMixin, UTCDateTime


class Competition(Base, TimestampMixin):
    __tablename__ = "competitions"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    tags = Column(JSON, nullable=False, default=list)
    capacity = Column(Integer, nullable=False)
    reg_deadline = Column(UTCDateTime, nullable=False)
    start_date = Column(UTCDateTime, nullable=True)
    organizer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # Relationships
    organizer = relationship("User", back_populates="competitions")
    registrations = relationship("Registration", back_populates="competition")

    __table_args__ = (
        CheckConstraint("capacity > 0", name="check_competition_capacity_positive"),
        Index("ix_competitions_start_date", "start_date"),
    )

    def __repr__(self) -> str:
        return f"<Competition(id={self.id}, title={self.title}, capacity={self.capacity})>"
