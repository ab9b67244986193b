"""Facility routes: listing, registration, availability, slot blocking and ratings."""

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pitchbook.core.database import get_db
from pitchbook.core.dependencies import get_current_user, require_facility_owner
from pitchbook.models.facility import DepositType, Facility
from pitchbook.models.user import User, UserRole
from pitchbook.schemas import (
    AvailabilityOut,
    BlockCreate,
    BlockedSlotOut,
    FacilityCreate,
    FacilityOut,
    RatingCreate,
    RatingOut,
)
from pitchbook.services.admission import block_slot, unblock_slot
from pitchbook.services.availability import available_slots
from pitchbook.services.rating import list_ratings, rate_facility

router = APIRouter(prefix="/facilities", tags=["facilities"])


# ---------------------------------------------------------------------------
# Public endpoints (no auth required)
# ---------------------------------------------------------------------------


@router.get("", response_model=list[FacilityOut])
async def list_facilities(db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(Facility).where(Facility.is_active.is_(True)).order_by(Facility.name))
    return result.scalars().all()


@router.get("/{facility_id}", response_model=FacilityOut)
async def get_facility(facility_id: int, db: AsyncSession = Depends(get_db)):
    facility = await db.get(Facility, facility_id)
    if facility is None or not facility.is_active:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Facility not found")
    return facility


@router.get("/{facility_id}/availability", response_model=AvailabilityOut)
async def get_availability(
    facility_id: int,
    query_date: date = Query(..., alias="date", description="Date in YYYY-MM-DD format"),
    period: str = Query("all"),
    db: AsyncSession = Depends(get_db),
):
    """Free hours for a facility on a date, narrowed to a period (all, night, morning, afternoon, evening)."""
    availability = await available_slots(db, facility_id, query_date, period)
    return AvailabilityOut(
        facility_id=availability.facility_id,
        date=availability.date,
        period=availability.period,
        available_slots=availability.available_slots,
        available_count=availability.available_count,
        total_slots=availability.total_slots,
    )


# ---------------------------------------------------------------------------
# Owner / operator endpoints
# ---------------------------------------------------------------------------


@router.post("", response_model=FacilityOut, status_code=status.HTTP_201_CREATED)
async def create_facility(
    body: FacilityCreate,
    user: User = Depends(require_facility_owner),
    db: AsyncSession = Depends(get_db),
):
    owner_id = user.id
    if body.owner_id is not None and body.owner_id != user.id:
        if user.role != UserRole.ADMIN:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Cannot register facilities for others")
        owner_id = body.owner_id

    facility = Facility(
        owner_id=owner_id,
        name=body.name,
        location=body.location,
        price_per_hour=body.price_per_hour,
        deposit_type=DepositType(body.deposit_type),
        deposit_value=body.deposit_value,
        open_hour=body.open_hour,
        close_hour=body.close_hour,
    )
    db.add(facility)
    await db.flush()
    return facility


@router.post("/{facility_id}/blocks", response_model=BlockedSlotOut, status_code=status.HTTP_201_CREATED)
async def create_block(facility_id: int, body: BlockCreate, user: User = Depends(get_current_user)):
    return await block_slot(facility_id, body.date, body.hour, body.reason, user.id)


@router.delete("/{facility_id}/blocks/{block_id}", response_model=BlockedSlotOut)
async def delete_block(facility_id: int, block_id: int, user: User = Depends(get_current_user)):
    return await unblock_slot(facility_id, block_id, user.id)


# ---------------------------------------------------------------------------
# Ratings
# ---------------------------------------------------------------------------


@router.get("/{facility_id}/ratings", response_model=list[RatingOut])
async def get_ratings(facility_id: int, db: AsyncSession = Depends(get_db)):
    return await list_ratings(db, facility_id)


@router.post("/{facility_id}/ratings", response_model=RatingOut, status_code=status.HTTP_201_CREATED)
async def create_rating(facility_id: int, body: RatingCreate, user: User = Depends(get_current_user)):
    """Rate a completed booking at this facility (1-5 stars, once per booking)."""
    return await rate_facility(facility_id, body.booking_id, user.id, body.rating, body.comment)
