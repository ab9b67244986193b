"""Slot calendar: which hourly slots of a facility are bookable on a day.

The candidate set is the facility's operating hours narrowed to a period.
Exclusions are read from the store on every call, never cached: an hour is
taken while a non-cancelled booking or an active block covers it. Writers go
through claim_slot/release_slot, which maintain the shared slot_claims key.
"""

from datetime import date, datetime, time
from zoneinfo import ZoneInfo

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from pitchbook.core.config import settings
from pitchbook.core.exceptions import InvalidRequest, SlotConflict
from pitchbook.models.base import utcnow
from pitchbook.models.booking import Booking, BookingStatus
from pitchbook.models.facility import Facility
from pitchbook.models.slot import BlockedSlot, ClaimKind, SlotClaim

HOURS_PER_DAY = 24


def local_tz() -> ZoneInfo:
    return ZoneInfo(settings.timezone)


def slot_start(day: date, hour: int) -> datetime:
    """Start instant of the slot, in the facility timezone."""
    return datetime.combine(day, time(hour), tzinfo=local_tz())


def period_hours(period: str) -> range:
    try:
        first, end = settings.slot_periods[period]
    except KeyError:
        choices = ", ".join(settings.slot_periods)
        raise InvalidRequest(f"Unknown period '{period}'. Choose from: {choices}.") from None
    return range(max(first, 0), min(end, HOURS_PER_DAY))


def candidate_hours(facility: Facility, period: str = "all") -> list[int]:
    """Operating hours of the facility within the period, ascending."""
    opening = range(facility.open_hour, facility.close_hour)
    return [h for h in period_hours(period) if h in opening]


async def taken_hours(db: AsyncSession, facility_id: int, day: date) -> set[int]:
    """Hours covered by a live booking or an active block."""
    bookings = await db.execute(
        select(Booking.start_hour, Booking.end_hour).where(
            Booking.facility_id == facility_id,
            Booking.booking_date == day,
            Booking.status != BookingStatus.CANCELLED,
        )
    )
    blocks = await db.execute(
        select(BlockedSlot.start_hour, BlockedSlot.end_hour).where(
            BlockedSlot.facility_id == facility_id,
            BlockedSlot.block_date == day,
            BlockedSlot.is_active.is_(True),
        )
    )

    taken: set[int] = set()
    for start, end in [*bookings.all(), *blocks.all()]:
        taken.update(range(start, end))
    return taken


async def free_hours(
    db: AsyncSession,
    facility: Facility,
    day: date,
    period: str = "all",
    now: datetime | None = None,
) -> list[int]:
    """Candidate hours that are neither taken nor already started."""
    now = now or utcnow()
    taken = await taken_hours(db, facility.id, day)
    return [h for h in candidate_hours(facility, period) if h not in taken and slot_start(day, h) > now]


async def claim_slot(
    db: AsyncSession,
    facility_id: int,
    day: date,
    hour: int,
    kind: ClaimKind,
    booking_id: int | None = None,
    blocked_slot_id: int | None = None,
) -> SlotClaim:
    """Insert the exclusion key for the slot. Raises SlotConflict if anything already holds it.

    Must run inside the caller's transaction; a conflict leaves that
    transaction unusable, so the caller lets the exception roll it back.
    """
    claim = SlotClaim(
        facility_id=facility_id,
        slot_date=day,
        start_hour=hour,
        kind=kind,
        booking_id=booking_id,
        blocked_slot_id=blocked_slot_id,
    )
    db.add(claim)
    try:
        await db.flush()
    except IntegrityError:
        raise SlotConflict(f"{day} {hour:02d}:00 is no longer available.") from None
    return claim


async def release_slot(db: AsyncSession, facility_id: int, day: date, hour: int) -> None:
    await db.execute(
        delete(SlotClaim).where(
            SlotClaim.facility_id == facility_id,
            SlotClaim.slot_date == day,
            SlotClaim.start_hour == hour,
        )
    )
