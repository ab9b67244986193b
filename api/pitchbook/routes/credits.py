"""Compensation credits of the current user."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from pitchbook.core.database import get_db
from pitchbook.core.dependencies import get_current_user
from pitchbook.models.user import User
from pitchbook.schemas import CreditOut
from pitchbook.services.credit import list_credits

router = APIRouter(prefix="/credits", tags=["credits"])


@router.get("", response_model=list[CreditOut])
async def list_my_credits(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await list_credits(db, user.id)
