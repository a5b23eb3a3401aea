from sqlalchemy import Column, ForeignKey, Index, Integer, String, Text

from minicompete.db.base import Base, UTCDateTime, utcnow


class MailBox(Base):
    """An outbound message. Written by the notification worker instead of sending email."""

    __tablename__ = "mailbox"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    to = Column(String(255), nullable=False)
    subject = Column(String(500), nullable=False)
    body = Column(Text, nullable=False)
    sent_at = Column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_mailbox_user_sent_at", "user_id", "sent_at"),
    )

    def __repr__(self) -> str:
        return f"<MailBox(id={self.id}, user={self.user_id}, subject={self.subject!r})>"
