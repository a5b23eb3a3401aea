"""
Dead-letter records for notification jobs that exhausted their attempts.
Kept for operational remediation; nothing in the service deletes them.
"""

from sqlalchemy import JSON, Column, Index, Integer, String, Text

from minicompete.db.base import Base, UTCDateTime, utcnow


class FailedJob(Base):
    __tablename__ = "failed_jobs"

    id = Column(Integer, primary_key=True, index=True)
    job_id = Column(String(64), nullable=False)
    job_name = Column(String(100), nullable=False)
    payload = Column(JSON, nullable=False)
    error = Column(Text, nullable=False)
    stack_trace = Column(Text, nullable=False, default="")
    attempts = Column(Integer, nullable=False)
    failed_at = Column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_failed_jobs_job_name_failed_at", "job_name", "failed_at"),
    )

    def __repr__(self) -> str:
        return f"<FailedJob(id={self.id}, job={self.job_name}:{self.job_id}, attempts={self.attempts})>"
