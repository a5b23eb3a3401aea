"""
Read side of the notification pipeline: a user's mailbox and the dead-letter
records.
"""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from minicompete.models.failed_job import FailedJob
from minicompete.models.mailbox import MailBox
from minicompete.schemas.mailbox import MailBoxEntry, MailBoxResponse


async def get_user_mailbox(db: AsyncSession, user_id: int) -> MailBoxResponse:
    """Messages delivered to `user_id`, newest first."""
    result = await db.execute(
        select(MailBox)
        .where(MailBox.user_id == user_id)
        .order_by(MailBox.sent_at.desc(), MailBox.id.desc())
    )
    emails = [MailBoxEntry.model_validate(mail) for mail in result.scalars().all()]
    return MailBoxResponse(user_id=user_id, total_emails=len(emails), emails=emails)


async def list_failed_jobs(
    db: AsyncSession,
    job_name: Optional[str] = None,
    limit: int = 100,
) -> list[FailedJob]:
    query = select(FailedJob)
    if job_name:
        query = query.where(FailedJob.job_name == job_name)

    result = await db.execute(query.order_by(FailedJob.failed_at.desc(), FailedJob.id.desc()).limit(limit))
    return list(result.scalars().all())
