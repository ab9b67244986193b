"""Periodic booking status sweeps.

Run by the Celery beat schedule in pitchbook.worker:

- pending bookings nobody confirmed within ``pending_expiry_minutes`` are
  cancelled (reason "expired", no refund, no credit), their hour released
  and any credit they spent handed back;
- confirmed bookings whose slot has ended become completed.
"""

import logging
from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from pitchbook.core.config import settings
from pitchbook.core.database import run_in_transaction
from pitchbook.models.base import utcnow
from pitchbook.models.booking import Booking, BookingStatus
from pitchbook.services import credit as ledger
from pitchbook.services import events
from pitchbook.services.slot_calendar import local_tz, release_slot, slot_start

logger = logging.getLogger(__name__)

EXPIRED_REASON = "expired"


async def expire_pending(db: AsyncSession, now: datetime) -> list[Booking]:
    cutoff = now - timedelta(minutes=settings.pending_expiry_minutes)
    result = await db.execute(
        select(Booking).where(Booking.status == BookingStatus.PENDING, Booking.created_at <= cutoff)
    )
    expired: list[Booking] = []
    for booking in result.scalars().all():
        changed = await db.execute(
            update(Booking)
            .where(Booking.id == booking.id, Booking.status == BookingStatus.PENDING)
            .values(status=BookingStatus.CANCELLED, cancelled_at=now, cancellation_reason=EXPIRED_REASON)
            .execution_options(synchronize_session=False)
        )
        if changed.rowcount != 1:
            continue
        await release_slot(db, booking.facility_id, booking.booking_date, booking.start_hour)
        # The player did not cancel, so a credit spent on the booking goes back to them
        if booking.redeemed_code:
            await ledger.release(db, booking.id)
        await db.refresh(booking)
        expired.append(booking)
    return expired


async def complete_past(db: AsyncSession, now: datetime) -> list[int]:
    today = now.astimezone(local_tz()).date()
    result = await db.execute(
        select(Booking).where(Booking.status == BookingStatus.CONFIRMED, Booking.booking_date <= today)
    )
    completed: list[int] = []
    for booking in result.scalars().all():
        ends_at = slot_start(booking.booking_date, booking.start_hour) + timedelta(hours=booking.end_hour - booking.start_hour)
        if ends_at > now:
            continue
        booking.status = BookingStatus.COMPLETED
        completed.append(booking.id)
    await db.flush()
    return completed


async def expire_pending_bookings(now: datetime | None = None) -> list[int]:
    now = now or utcnow()
    expired = await run_in_transaction(lambda db: expire_pending(db, now))
    if expired:
        logger.info("Expired %d pending booking(s): %s", len(expired), [b.id for b in expired])
    for booking in expired:
        events.publish(events.DomainEvent(events.BOOKING_CANCELLED, events.booking_payload(booking)))
    return [b.id for b in expired]


async def complete_past_bookings(now: datetime | None = None) -> list[int]:
    now = now or utcnow()
    completed = await run_in_transaction(lambda db: complete_past(db, now))
    if completed:
        logger.info("Completed %d booking(s): %s", len(completed), completed)
    return completed
