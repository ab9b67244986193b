"""Booking admission.

Creates bookings, confirms them, and blocks/unblocks slots. Each operation is
one transaction. Exclusivity on (facility, date, hour) is decided by the store:
the booking row and its slot claim are inserted under unique constraints, so
of several concurrent attempts on one slot exactly one commits and the others
get SlotConflict. Nothing here locks in-process or re-reads availability.
"""

import logging
from datetime import date, datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from pitchbook.core.database import run_in_transaction
from pitchbook.core.exceptions import Forbidden, InvalidRequest, NotFound, SlotConflict
from pitchbook.models.base import utcnow
from pitchbook.models.booking import Booking, BookingStatus
from pitchbook.models.facility import Facility
from pitchbook.models.slot import BlockedSlot, ClaimKind
from pitchbook.models.user import User
from pitchbook.services import credit as ledger
from pitchbook.services import events
from pitchbook.services.slot_calendar import claim_slot, release_slot, slot_start

logger = logging.getLogger(__name__)


async def get_active_facility(db: AsyncSession, facility_id: int) -> Facility:
    result = await db.execute(select(Facility).where(Facility.id == facility_id, Facility.is_active.is_(True)))
    facility = result.scalar_one_or_none()
    if facility is None:
        raise NotFound("Facility not found or not bookable.")
    return facility


async def get_actor(db: AsyncSession, actor_id: int) -> User:
    result = await db.execute(select(User).where(User.id == actor_id, User.is_active.is_(True)))
    actor = result.scalar_one_or_none()
    if actor is None:
        raise Forbidden("Unknown or disabled user.")
    return actor


def can_manage(actor: User, facility: Facility) -> bool:
    """Facility owner or a platform operator."""
    return actor.is_operator or facility.owner_id == actor.id


def check_slot_bookable(facility: Facility, day: date, hour: int, now: datetime) -> None:
    if not 0 <= hour <= 23:
        raise InvalidRequest("Hour must be between 0 and 23.")
    if not facility.open_hour <= hour < facility.close_hour:
        raise InvalidRequest(
            f"{facility.name} is open from {facility.open_hour:02d}:00 to {facility.close_hour:02d}:00."
        )
    if slot_start(day, hour) <= now:
        raise InvalidRequest("Cannot book a slot in the past.")


# ---------------------------------------------------------------------------
# CreateBooking
# ---------------------------------------------------------------------------


async def admit_booking(
    db: AsyncSession,
    facility_id: int,
    requester_id: int,
    day: date,
    hour: int,
    code: str | None = None,
    now: datetime | None = None,
) -> Booking:
    """Admission steps inside the caller's transaction."""
    now = now or utcnow()
    facility = await get_active_facility(db, facility_id)
    check_slot_bookable(facility, day, hour, now)

    total = facility.price_per_hour
    deposit = facility.deposit_amount

    credit = None
    if code:
        credit = await ledger.redeem(db, code, requester_id, now=now)

    booking = Booking(
        facility_id=facility.id,
        user_id=requester_id,
        booking_date=day,
        start_hour=hour,
        end_hour=hour + 1,
        status=BookingStatus.PENDING,
        total_price=total,
        deposit_paid=deposit,
        credit_applied=min(credit.value, deposit) if credit else 0,
        remaining_balance=total - deposit,
        redeemed_code=credit.code if credit else None,
    )
    db.add(booking)
    try:
        await db.flush()
    except IntegrityError:
        raise SlotConflict(f"{day} {hour:02d}:00 is already booked.") from None

    await claim_slot(db, facility.id, day, hour, ClaimKind.BOOKING, booking_id=booking.id)

    if credit is not None:
        credit.redeemed_booking_id = booking.id
        await db.flush()

    return booking


async def create_booking(
    facility_id: int,
    requester_id: int,
    day: date,
    hour: int,
    code: str | None = None,
    now: datetime | None = None,
) -> Booking:
    """CreateBooking: admit a pending booking, optionally paying the deposit with a compensation code.

    Raises NotFound, InvalidRequest, InvalidCode or SlotConflict. On any error
    the credit stays unused.
    """

    async def work(db: AsyncSession) -> Booking:
        return await admit_booking(db, facility_id, requester_id, day, hour, code=code, now=now)

    try:
        booking = await run_in_transaction(work)
    except SlotConflict:
        logger.info("Slot conflict: facility=%d %s %02d:00 user=%d", facility_id, day, hour, requester_id)
        raise

    logger.info("Booking %d created: facility=%d %s %02d:00 user=%d", booking.id, facility_id, day, hour, requester_id)
    events.publish(events.DomainEvent(events.BOOKING_CREATED, events.booking_payload(booking)))
    return booking


# ---------------------------------------------------------------------------
# ConfirmBooking
# ---------------------------------------------------------------------------


async def confirm_booking(booking_id: int, actor_id: int, now: datetime | None = None) -> Booking:
    """Owner/operator confirmation once the balance is settled: pending -> confirmed."""

    async def work(db: AsyncSession) -> Booking:
        result = await db.execute(select(Booking).where(Booking.id == booking_id).with_for_update())
        booking = result.scalar_one_or_none()
        if booking is None:
            raise NotFound("Booking not found.")

        facility = await db.get(Facility, booking.facility_id)
        actor = await get_actor(db, actor_id)
        if not can_manage(actor, facility):
            raise Forbidden("Only the facility owner or an operator can confirm bookings.")

        if not booking.can_transition(BookingStatus.CONFIRMED):
            raise InvalidRequest(f"A {booking.status.value} booking cannot be confirmed.")

        booking.status = BookingStatus.CONFIRMED
        booking.confirmed_at = now or utcnow()
        await db.flush()
        return booking

    booking = await run_in_transaction(work)
    logger.info("Booking %d confirmed by user %d", booking.id, actor_id)
    events.publish(events.DomainEvent(events.BOOKING_CONFIRMED, events.booking_payload(booking)))
    return booking


# ---------------------------------------------------------------------------
# BlockSlot / UnblockSlot
# ---------------------------------------------------------------------------


async def block_slot(
    facility_id: int,
    day: date,
    hour: int,
    reason: str | None,
    actor_id: int,
    now: datetime | None = None,
) -> BlockedSlot:
    """Take an hour out of sale. Shares the exclusion space with bookings."""
    now = now or utcnow()

    async def work(db: AsyncSession) -> BlockedSlot:
        facility = await get_active_facility(db, facility_id)
        actor = await get_actor(db, actor_id)
        if not can_manage(actor, facility):
            raise Forbidden("Only the facility owner or an operator can block slots.")
        check_slot_bookable(facility, day, hour, now)

        block = BlockedSlot(
            facility_id=facility.id,
            created_by_id=actor.id,
            block_date=day,
            start_hour=hour,
            end_hour=hour + 1,
            reason=reason,
        )
        db.add(block)
        try:
            await db.flush()
        except IntegrityError:
            raise SlotConflict(f"{day} {hour:02d}:00 is already blocked.") from None

        await claim_slot(db, facility.id, day, hour, ClaimKind.BLOCK, blocked_slot_id=block.id)
        return block

    block = await run_in_transaction(work)
    logger.info("Slot blocked: facility=%d %s %02d:00 by user %d", facility_id, day, hour, actor_id)
    return block


async def unblock_slot(facility_id: int, block_id: int, actor_id: int) -> BlockedSlot:
    async def work(db: AsyncSession) -> BlockedSlot:
        result = await db.execute(
            select(BlockedSlot)
            .where(
                BlockedSlot.id == block_id,
                BlockedSlot.facility_id == facility_id,
                BlockedSlot.is_active.is_(True),
            )
            .with_for_update()
        )
        block = result.scalar_one_or_none()
        if block is None:
            raise NotFound("Blocked slot not found.")

        facility = await db.get(Facility, block.facility_id)
        actor = await get_actor(db, actor_id)
        if not can_manage(actor, facility):
            raise Forbidden("Only the facility owner or an operator can unblock slots.")

        block.is_active = False
        await release_slot(db, block.facility_id, block.block_date, block.start_hour)
        await db.flush()
        return block

    block = await run_in_transaction(work)
    logger.info("Slot unblocked: facility=%d %s %02d:00 by user %d", facility_id, block.block_date, block.start_hour, actor_id)
    return block
