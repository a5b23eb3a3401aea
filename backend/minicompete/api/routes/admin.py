"""
Operator endpoints. Read-only.

Dead-letter payloads carry participant names and email addresses from every
competition, not only the caller's. The ORGANIZER guard is the only check, so
this router is meant for operators; expose it to organizers at large only
behind a network or gateway restriction.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from minicompete.core.security import Role, require_role
from minicompete.db.session import get_db
from minicompete.schemas.mailbox import FailedJobResponse
from minicompete.services.mailbox_service import list_failed_jobs

router = APIRouter(prefix="/admin", tags=["Admin"])


@router.get(
    "/failed-jobs",
    response_model=list[FailedJobResponse],
    dependencies=[Depends(require_role(Role.ORGANIZER))],
)
async def failed_jobs(
    job_name: Optional[str] = Query(None, description="Filter by job name"),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    """
    Dead-lettered notification jobs, newest first.

    Operator-only: returns payloads across all competitions.
    """
    return await list_failed_jobs(db, job_name=job_name, limit=limit)
