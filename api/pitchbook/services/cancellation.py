"""Cancellation and compensation.

The refund tier is decided here, on the server, from the time left before the
slot starts. Any tier the client displayed is advisory only.

    more than 48h   cash part of the deposit refunded + credit worth the deposit (14 days)
    24h to 48h      credit worth the deposit (14 days), no cash
    24h or less     nothing

Cancelling frees the hour straight away: the booking leaves the live set and
its slot claim is deleted in the same transaction.
"""

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from pitchbook.core.config import settings
from pitchbook.core.database import run_in_transaction
from pitchbook.core.exceptions import Forbidden, InvalidRequest, NotFound
from pitchbook.models.base import utcnow
from pitchbook.models.booking import Booking, BookingStatus
from pitchbook.models.credit import CompensationCredit
from pitchbook.models.facility import Facility
from pitchbook.services import credit as ledger
from pitchbook.services import events
from pitchbook.services.admission import can_manage, get_actor
from pitchbook.services.slot_calendar import release_slot, slot_start

logger = logging.getLogger(__name__)

LIVE_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED)


class RefundTier(enum.StrEnum):
    FULL_REFUND = "full_refund"
    CREDIT_ONLY = "credit_only"
    NONE = "none"


@dataclass(frozen=True)
class CancellationOutcome:
    booking: Booking
    tier: RefundTier
    refund_amount: int
    credit: CompensationCredit | None

    @property
    def compensation_issued(self) -> bool:
        return self.credit is not None


def refund_tier(starts_at: datetime, now: datetime) -> RefundTier:
    hours_left = (starts_at - now) / timedelta(hours=1)
    if hours_left > settings.full_refund_hours:
        return RefundTier.FULL_REFUND
    if hours_left > settings.credit_only_hours:
        return RefundTier.CREDIT_ONLY
    return RefundTier.NONE


async def resolve_cancellation(
    db: AsyncSession,
    booking_id: int,
    actor_id: int,
    reason: str | None = None,
    now: datetime | None = None,
) -> CancellationOutcome:
    """Cancellation steps inside the caller's transaction."""
    now = now or utcnow()

    result = await db.execute(select(Booking).where(Booking.id == booking_id).with_for_update())
    booking = result.scalar_one_or_none()
    if booking is None or booking.status == BookingStatus.CANCELLED:
        raise NotFound("Booking not found.")
    if not booking.can_transition(BookingStatus.CANCELLED):
        raise InvalidRequest(f"A {booking.status.value} booking cannot be cancelled.")

    actor = await get_actor(db, actor_id)
    if actor.id != booking.user_id:
        facility = await db.get(Facility, booking.facility_id)
        if not can_manage(actor, facility):
            raise Forbidden("You cannot cancel this booking.")

    starts_at = slot_start(booking.booking_date, booking.start_hour)
    if starts_at <= now:
        raise InvalidRequest("The booking has already started.")

    tier = refund_tier(starts_at, now)
    # The part of the deposit paid with a credit is never refunded as cash
    refund = booking.deposit_paid - booking.credit_applied if tier == RefundTier.FULL_REFUND else 0

    # Guarded write: of two racing cancellations only one sees a live row
    cancelled = await db.execute(
        update(Booking)
        .where(Booking.id == booking.id, Booking.status.in_(LIVE_STATUSES))
        .values(
            status=BookingStatus.CANCELLED,
            cancelled_at=now,
            cancelled_by_id=actor.id,
            cancellation_reason=reason,
            refund_amount=refund,
        )
        .execution_options(synchronize_session=False)
    )
    if cancelled.rowcount != 1:
        raise NotFound("Booking not found.")
    await db.refresh(booking)

    await release_slot(db, booking.facility_id, booking.booking_date, booking.start_hour)

    credit = None
    if tier != RefundTier.NONE and booking.deposit_paid > 0:
        credit = await ledger.issue(
            db,
            beneficiary_id=booking.user_id,
            value=booking.deposit_paid,
            ttl=timedelta(days=settings.compensation_ttl_days),
            source_booking_id=booking.id,
            now=now,
        )

    return CancellationOutcome(booking=booking, tier=tier, refund_amount=refund, credit=credit)


async def cancel_booking(
    booking_id: int,
    actor_id: int,
    reason: str | None = None,
    now: datetime | None = None,
) -> CancellationOutcome:
    """CancelBooking. Raises NotFound (absent or already cancelled), Forbidden or InvalidRequest."""

    async def work(db: AsyncSession) -> CancellationOutcome:
        return await resolve_cancellation(db, booking_id, actor_id, reason=reason, now=now)

    outcome = await run_in_transaction(work)
    logger.info(
        "Booking %d cancelled by user %d: tier=%s refund=%d credit=%s",
        booking_id,
        actor_id,
        outcome.tier.value,
        outcome.refund_amount,
        outcome.credit.code if outcome.credit else None,
    )

    events.publish(events.DomainEvent(events.BOOKING_CANCELLED, events.booking_payload(outcome.booking)))
    if outcome.credit is not None:
        events.publish(events.DomainEvent(events.CREDIT_ISSUED, events.credit_payload(outcome.credit)))
    return outcome
