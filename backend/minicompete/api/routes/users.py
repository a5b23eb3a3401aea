"""
Endpoints scoped to the authenticated user.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from minicompete.core.security import Principal, get_current_principal
from minicompete.db.session import get_db
from minicompete.schemas.mailbox import MailBoxResponse
from minicompete.services.mailbox_service import get_user_mailbox

router = APIRouter(prefix="/users", tags=["Users"])


@router.get("/me/mailbox", response_model=MailBoxResponse)
async def my_mailbox(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Messages the notification worker delivered to the caller, newest first."""
    return await get_user_mailbox(db, principal.user_id)
