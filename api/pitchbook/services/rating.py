"""Facility ratings.

Only the player who made a booking can rate it, once, after it completed.
The facility's running sum and count are updated in the same transaction.
"""

import logging

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from pitchbook.core.database import run_in_transaction
from pitchbook.core.exceptions import AlreadyRated, Forbidden, InvalidRequest, NotFound
from pitchbook.models.booking import Booking, BookingStatus
from pitchbook.models.facility import Facility
from pitchbook.models.rating import Rating

logger = logging.getLogger(__name__)

MIN_RATING = 1
MAX_RATING = 5


async def rate_facility(
    facility_id: int,
    booking_id: int,
    requester_id: int,
    value: int,
    comment: str | None = None,
) -> Rating:
    if not MIN_RATING <= value <= MAX_RATING:
        raise InvalidRequest(f"Rating must be between {MIN_RATING} and {MAX_RATING}.")

    async def work(db: AsyncSession) -> Rating:
        booking = await db.get(Booking, booking_id)
        if booking is None or booking.facility_id != facility_id:
            raise NotFound("Booking not found.")
        if booking.user_id != requester_id:
            raise Forbidden("Only the player who booked can rate this booking.")
        if booking.status != BookingStatus.COMPLETED:
            raise InvalidRequest("Only completed bookings can be rated.")

        rating = Rating(
            facility_id=facility_id,
            booking_id=booking.id,
            user_id=requester_id,
            value=value,
            comment=comment,
        )
        db.add(rating)
        try:
            await db.flush()
        except IntegrityError:
            raise AlreadyRated("This booking has already been rated.") from None

        await db.execute(
            update(Facility)
            .where(Facility.id == facility_id)
            .values(rating_sum=Facility.rating_sum + value, rating_count=Facility.rating_count + 1)
            .execution_options(synchronize_session=False)
        )
        return rating

    rating = await run_in_transaction(work)
    logger.info("Booking %d rated %d by user %d", booking_id, value, requester_id)
    return rating


async def list_ratings(db: AsyncSession, facility_id: int) -> list[Rating]:
    result = await db.execute(
        select(Rating).where(Rating.facility_id == facility_id).order_by(Rating.created_at.desc()).limit(50)
    )
    return list(result.scalars().all())
