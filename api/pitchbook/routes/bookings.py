"""Booking routes: create, list, confirm, cancel.

The handlers only translate between HTTP and the engine; every rule lives in
the admission and cancellation services. Engine errors propagate to the
exception handler registered in main.py.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pitchbook.core.database import get_db
from pitchbook.core.dependencies import get_current_user
from pitchbook.models.booking import Booking
from pitchbook.models.user import User
from pitchbook.schemas import BookingCreate, BookingOut, CancellationOut, CancelRequest, CreditOut
from pitchbook.services.admission import confirm_booking, create_booking
from pitchbook.services.cancellation import cancel_booking

router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.post("", response_model=BookingOut, status_code=status.HTTP_201_CREATED)
async def create(body: BookingCreate, user: User = Depends(get_current_user)):
    return await create_booking(body.facility_id, user.id, body.date, body.hour, code=body.code)


@router.get("", response_model=list[BookingOut])
async def list_my_bookings(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(Booking)
        .where(Booking.user_id == user.id)
        .order_by(Booking.booking_date.desc(), Booking.start_hour.desc())
        .limit(50)
    )
    return result.scalars().all()


@router.post("/{booking_id}/confirm", response_model=BookingOut)
async def confirm(booking_id: int, user: User = Depends(get_current_user)):
    return await confirm_booking(booking_id, user.id)


@router.post("/{booking_id}/cancel", response_model=CancellationOut)
async def cancel(booking_id: int, body: CancelRequest | None = None, user: User = Depends(get_current_user)):
    outcome = await cancel_booking(booking_id, user.id, reason=body.reason if body else None)
    return CancellationOut(
        booking_id=outcome.booking.id,
        status=outcome.booking.status.value,
        tier=outcome.tier.value,
        refund_amount=outcome.refund_amount,
        compensation_issued=outcome.compensation_issued,
        credit=CreditOut.model_validate(outcome.credit) if outcome.credit else None,
    )
