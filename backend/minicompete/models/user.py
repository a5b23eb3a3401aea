"""
User model. Rows are owned by the auth service; the registration flow only
reads name and email for notifications.
"""

from sqlalchemy import CheckConstraint, Column, Integer, String
from sqlalchemy.orm import relationship

from minicompete.db.base import Base, TimestampMixin


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default="PARTICIPANT")

    # Relationships
    competitions = relationship("Competition", back_populates="organizer")
    registrations = relationship("Registration", back_populates="user")

    __table_args__ = (
        CheckConstraint("role IN ('ORGANIZER', 'PARTICIPANT')", name="check_user_role"),
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"
