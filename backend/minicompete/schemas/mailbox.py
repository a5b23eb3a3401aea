"""
Pydantic schemas for the mailbox and dead-letter read endpoints.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel


class MailBoxEntry(BaseModel):
    id: int
    to: str
    subject: str
    body: str
    sent_at: datetime

    model_config = {"from_attributes": True}


class MailBoxResponse(BaseModel):
    user_id: int
    total_emails: int
    emails: list[MailBoxEntry]


class FailedJobResponse(BaseModel):
    id: int
    job_id: str
    job_name: str
    payload: dict[str, Any]
    error: str
    stack_trace: str
    attempts: int
    failed_at: datetime

    model_config = {"from_attributes": True}
