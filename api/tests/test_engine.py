"""Engine tests: admission, exclusivity, cancellation tiers, compensation credits, sweeps, ratings."""

import asyncio
from datetime import date, timedelta
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, OperationalError

from pitchbook.core.database import async_session_factory, run_in_transaction
from pitchbook.core.exceptions import (
    AlreadyRated,
    Forbidden,
    InvalidCode,
    InvalidRequest,
    NotFound,
    SlotConflict,
    StorageUnavailable,
)
from pitchbook.models import (
    Booking,
    BookingStatus,
    CompensationCredit,
    DepositType,
    Facility,
    Rating,
    SlotClaim,
    User,
    UserRole,
)
from pitchbook.models.base import utcnow
from pitchbook.services import admission, email, events
from pitchbook.services import credit as ledger
from pitchbook.services.admission import block_slot, confirm_booking, create_booking, unblock_slot
from pitchbook.services.availability import available_slots
from pitchbook.services.cancellation import RefundTier, cancel_booking
from pitchbook.services.lifecycle import EXPIRED_REASON, complete_past_bookings, expire_pending_bookings
from pitchbook.services.rating import rate_facility
from pitchbook.services.slot_calendar import slot_start

# Far enough ahead that no hour of the day is in the past in any timezone
FUTURE = date.today() + timedelta(days=10)


async def _availability(facility_id, day=FUTURE, period="all"):
    async with async_session_factory() as db:
        return await available_slots(db, facility_id, day, period)


async def _issue_credit(user_id, value=5000, now=None):
    async def work(db):
        return await ledger.issue(db, user_id, value, timedelta(days=14), now=now)

    return await run_in_transaction(work)


async def _get(model, pk):
    async with async_session_factory() as db:
        return await db.get(model, pk)


async def _count(model, *where):
    async with async_session_factory() as db:
        result = await db.execute(select(func.count()).select_from(model).where(*where))
        return result.scalar_one()


# ---------------------------------------------------------------------------
# CreateBooking
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_create_booking_is_pending_with_deposit(facility, people):
    booking = await create_booking(facility.id, people.player.id, FUTURE, 18)

    assert booking.status == BookingStatus.PENDING
    assert (booking.start_hour, booking.end_hour) == (18, 19)
    assert booking.total_price == 25000
    assert booking.deposit_paid == 7500
    assert booking.remaining_balance == 17500
    assert booking.credit_applied == 0
    assert booking.redeemed_code is None
    assert await _count(SlotClaim, SlotClaim.booking_id == booking.id) == 1


@pytest.mark.asyncio
async def test_percentage_deposit(people):
    async with async_session_factory() as db:
        pitch = Facility(
            owner_id=people.owner.id,
            name="Good Shepherd",
            price_per_hour=30000,
            deposit_type=DepositType.PERCENTAGE,
            deposit_value=30,
        )
        db.add(pitch)
        await db.commit()

    booking = await create_booking(pitch.id, people.player.id, FUTURE, 20)
    assert booking.deposit_paid == 9000
    assert booking.remaining_balance == 21000


@pytest.mark.asyncio
async def test_second_booking_same_slot_conflicts(facility, people):
    await create_booking(facility.id, people.player.id, FUTURE, 18)

    with pytest.raises(SlotConflict):
        await create_booking(facility.id, people.other.id, FUTURE, 18)

    assert await _count(Booking, Booking.facility_id == facility.id) == 1


@pytest.mark.asyncio
async def test_same_hour_other_day_is_independent(facility, people):
    await create_booking(facility.id, people.player.id, FUTURE, 18)
    booking = await create_booking(facility.id, people.player.id, FUTURE + timedelta(days=1), 18)
    assert booking.status == BookingStatus.PENDING


@pytest.mark.asyncio
async def test_concurrent_admissions_have_one_winner(facility, people):
    players = []
    async with async_session_factory() as db:
        for i in range(5):
            user = User(email=f"racer{i}@example.com", name=f"Racer {i}", role=UserRole.PLAYER)
            db.add(user)
            players.append(user)
        await db.commit()

    results = await asyncio.gather(
        *(create_booking(facility.id, p.id, FUTURE, 21) for p in players),
        return_exceptions=True,
    )

    winners = [r for r in results if isinstance(r, Booking)]
    conflicts = [r for r in results if isinstance(r, SlotConflict)]
    assert len(winners) == 1
    assert len(conflicts) == 4
    assert await _count(Booking, Booking.facility_id == facility.id, Booking.start_hour == 21) == 1
    assert 21 not in (await _availability(facility.id)).available_slots


@pytest.mark.asyncio
async def test_booking_in_the_past_rejected(facility, people):
    with pytest.raises(InvalidRequest):
        await create_booking(facility.id, people.player.id, FUTURE - timedelta(days=30), 18)


@pytest.mark.asyncio
async def test_booking_outside_opening_hours_rejected(people):
    async with async_session_factory() as db:
        pitch = Facility(owner_id=people.owner.id, name="Day Pitch", price_per_hour=20000, open_hour=8, close_hour=22)
        db.add(pitch)
        await db.commit()

    with pytest.raises(InvalidRequest):
        await create_booking(pitch.id, people.player.id, FUTURE, 7)
    with pytest.raises(InvalidRequest):
        await create_booking(pitch.id, people.player.id, FUTURE, 22)


@pytest.mark.asyncio
async def test_unknown_or_inactive_facility(facility, people):
    with pytest.raises(NotFound):
        await create_booking(9999, people.player.id, FUTURE, 18)

    async with async_session_factory() as db:
        pitch = await db.get(Facility, facility.id)
        pitch.is_active = False
        await db.commit()

    with pytest.raises(NotFound):
        await create_booking(facility.id, people.player.id, FUTURE, 18)
    with pytest.raises(NotFound):
        await _availability(facility.id)


# ---------------------------------------------------------------------------
# Availability
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_availability_reflects_bookings_and_blocks(facility, people):
    before = await _availability(facility.id)
    assert before.total_slots == 24
    assert before.available_slots == list(range(24))

    await create_booking(facility.id, people.player.id, FUTURE, 10)
    await block_slot(facility.id, FUTURE, 12, "Pitch maintenance", people.owner.id)

    after = await _availability(facility.id)
    assert 10 not in after.available_slots
    assert 12 not in after.available_slots
    assert after.available_count == 22
    assert after.total_slots == 24


@pytest.mark.asyncio
async def test_availability_by_period(facility, people):
    await create_booking(facility.id, people.player.id, FUTURE, 19)

    evening = await _availability(facility.id, period="evening")
    assert evening.total_slots == 6
    assert evening.available_slots == [18, 20, 21, 22, 23]

    night = await _availability(facility.id, period="night")
    assert night.available_slots == [0, 1, 2, 3, 4, 5]

    with pytest.raises(InvalidRequest):
        await _availability(facility.id, period="brunch")


@pytest.mark.asyncio
async def test_availability_excludes_started_hours(facility):
    async with async_session_factory() as db:
        availability = await available_slots(db, facility.id, FUTURE, now=slot_start(FUTURE, 15) + timedelta(minutes=5))
    assert availability.available_slots == list(range(16, 24))
    assert availability.total_slots == 24


# ---------------------------------------------------------------------------
# Blocked slots
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_block_and_booking_exclude_each_other(facility, people):
    block = await block_slot(facility.id, FUTURE, 9, "Private event", people.owner.id)
    with pytest.raises(SlotConflict):
        await create_booking(facility.id, people.player.id, FUTURE, 9)

    await create_booking(facility.id, people.player.id, FUTURE, 11)
    with pytest.raises(SlotConflict):
        await block_slot(facility.id, FUTURE, 11, None, people.owner.id)

    await unblock_slot(facility.id, block.id, people.employee.id)
    booking = await create_booking(facility.id, people.player.id, FUTURE, 9)
    assert booking.start_hour == 9


@pytest.mark.asyncio
async def test_players_cannot_block(facility, people):
    with pytest.raises(Forbidden):
        await block_slot(facility.id, FUTURE, 9, None, people.player.id)


# ---------------------------------------------------------------------------
# ConfirmBooking
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_owner_confirms_booking(facility, people):
    booking = await create_booking(facility.id, people.player.id, FUTURE, 18)

    with pytest.raises(Forbidden):
        await confirm_booking(booking.id, people.player.id)

    confirmed = await confirm_booking(booking.id, people.owner.id)
    assert confirmed.status == BookingStatus.CONFIRMED
    assert confirmed.confirmed_at is not None

    with pytest.raises(InvalidRequest):
        await confirm_booking(booking.id, people.owner.id)


# ---------------------------------------------------------------------------
# CancelBooking
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_cancel_more_than_48h_refunds_and_credits(facility, people):
    booking = await create_booking(facility.id, people.player.id, FUTURE, 18)
    now = slot_start(FUTURE, 18) - timedelta(hours=72)

    outcome = await cancel_booking(booking.id, people.player.id, reason="Team travelling", now=now)

    assert outcome.tier == RefundTier.FULL_REFUND
    assert outcome.refund_amount == 7500
    assert outcome.booking.status == BookingStatus.CANCELLED
    assert outcome.booking.refund_amount == 7500
    assert outcome.booking.cancellation_reason == "Team travelling"
    assert outcome.compensation_issued
    assert outcome.credit.value == 7500
    assert outcome.credit.beneficiary_id == people.player.id
    assert outcome.credit.code.startswith("PB-")
    assert outcome.credit.expires_at == now + timedelta(days=14)


@pytest.mark.asyncio
async def test_cancel_between_24_and_48h_credit_only(facility, people):
    booking = await create_booking(facility.id, people.player.id, FUTURE, 18)
    now = slot_start(FUTURE, 18) - timedelta(hours=36)

    outcome = await cancel_booking(booking.id, people.player.id, now=now)

    assert outcome.tier == RefundTier.CREDIT_ONLY
    assert outcome.refund_amount == 0
    assert outcome.credit.value == 7500


@pytest.mark.asyncio
async def test_cancel_within_24h_gets_nothing(facility, people):
    booking = await create_booking(facility.id, people.player.id, FUTURE, 18)
    now = slot_start(FUTURE, 18) - timedelta(hours=5)

    outcome = await cancel_booking(booking.id, people.player.id, now=now)

    assert outcome.tier == RefundTier.NONE
    assert outcome.refund_amount == 0
    assert outcome.credit is None
    assert await _count(CompensationCredit) == 0


@pytest.mark.asyncio
async def test_cancel_frees_the_slot(facility, people):
    booking = await create_booking(facility.id, people.player.id, FUTURE, 18)
    await cancel_booking(booking.id, people.player.id)

    assert 18 in (await _availability(facility.id)).available_slots
    rebooked = await create_booking(facility.id, people.other.id, FUTURE, 18)
    assert rebooked.user_id == people.other.id


@pytest.mark.asyncio
async def test_cancel_twice_issues_one_credit(facility, people):
    booking = await create_booking(facility.id, people.player.id, FUTURE, 18)
    await cancel_booking(booking.id, people.player.id)

    with pytest.raises(NotFound):
        await cancel_booking(booking.id, people.player.id)
    assert await _count(CompensationCredit, CompensationCredit.source_booking_id == booking.id) == 1


@pytest.mark.asyncio
async def test_concurrent_cancellations_issue_one_credit(facility, people):
    booking = await create_booking(facility.id, people.player.id, FUTURE, 18)

    results = await asyncio.gather(
        cancel_booking(booking.id, people.player.id),
        cancel_booking(booking.id, people.owner.id),
        return_exceptions=True,
    )

    assert sum(1 for r in results if isinstance(r, NotFound)) == 1
    assert await _count(CompensationCredit, CompensationCredit.source_booking_id == booking.id) == 1


@pytest.mark.asyncio
async def test_cancel_unknown_booking(people):
    with pytest.raises(NotFound):
        await cancel_booking(4242, people.player.id)


@pytest.mark.asyncio
async def test_stranger_cannot_cancel(facility, people):
    booking = await create_booking(facility.id, people.player.id, FUTURE, 18)

    with pytest.raises(Forbidden):
        await cancel_booking(booking.id, people.other.id)
    assert (await _get(Booking, booking.id)).status == BookingStatus.PENDING


@pytest.mark.asyncio
async def test_owner_and_operator_can_cancel(facility, people):
    first = await create_booking(facility.id, people.player.id, FUTURE, 18)
    second = await create_booking(facility.id, people.player.id, FUTURE, 19)

    by_owner = await cancel_booking(first.id, people.owner.id, reason="Pitch flooded")
    by_staff = await cancel_booking(second.id, people.employee.id)

    assert by_owner.booking.cancelled_by_id == people.owner.id
    assert by_staff.booking.cancelled_by_id == people.employee.id
    # Compensation goes to the player who booked, not the canceller
    assert by_owner.credit.beneficiary_id == people.player.id


@pytest.mark.asyncio
async def test_cannot_cancel_started_booking(facility, people):
    booking = await create_booking(facility.id, people.player.id, FUTURE, 18)
    with pytest.raises(InvalidRequest):
        await cancel_booking(booking.id, people.player.id, now=slot_start(FUTURE, 18) + timedelta(minutes=10))


# ---------------------------------------------------------------------------
# Compensation credits
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_redeem_credit_pays_deposit(facility, people):
    credit = await _issue_credit(people.player.id, value=5000)

    booking = await create_booking(facility.id, people.player.id, FUTURE, 18, code=credit.code.lower())

    assert booking.redeemed_code == credit.code
    assert booking.credit_applied == 5000
    assert booking.deposit_paid == 7500
    assert booking.remaining_balance == 17500

    stored = await _get(CompensationCredit, credit.id)
    assert stored.is_used
    assert stored.used_at is not None
    assert stored.redeemed_booking_id == booking.id


@pytest.mark.asyncio
async def test_credit_larger_than_deposit_is_capped(facility, people):
    credit = await _issue_credit(people.player.id, value=9000)
    booking = await create_booking(facility.id, people.player.id, FUTURE, 18, code=credit.code)
    assert booking.credit_applied == 7500


@pytest.mark.asyncio
async def test_used_credit_rejected(facility, people):
    credit = await _issue_credit(people.player.id)
    await create_booking(facility.id, people.player.id, FUTURE, 18, code=credit.code)

    with pytest.raises(InvalidCode):
        await create_booking(facility.id, people.player.id, FUTURE, 19, code=credit.code)
    assert await _count(Booking, Booking.start_hour == 19) == 0


@pytest.mark.asyncio
async def test_expired_credit_rejected(facility, people):
    credit = await _issue_credit(people.player.id, now=utcnow() - timedelta(days=15))

    with pytest.raises(InvalidCode):
        await create_booking(facility.id, people.player.id, FUTURE, 18, code=credit.code)
    assert not (await _get(CompensationCredit, credit.id)).is_used


@pytest.mark.asyncio
async def test_foreign_and_unknown_codes_look_the_same(facility, people):
    credit = await _issue_credit(people.player.id)

    with pytest.raises(InvalidCode) as foreign:
        await create_booking(facility.id, people.other.id, FUTURE, 18, code=credit.code)
    with pytest.raises(InvalidCode) as unknown:
        await create_booking(facility.id, people.other.id, FUTURE, 18, code="PB-00000000")

    assert foreign.value.message == unknown.value.message
    assert not (await _get(CompensationCredit, credit.id)).is_used


@pytest.mark.asyncio
async def test_conflict_leaves_credit_unused(facility, people):
    await create_booking(facility.id, people.other.id, FUTURE, 18)
    credit = await _issue_credit(people.player.id)

    with pytest.raises(SlotConflict):
        await create_booking(facility.id, people.player.id, FUTURE, 18, code=credit.code)

    assert not (await _get(CompensationCredit, credit.id)).is_used


@pytest.mark.asyncio
async def test_failure_after_redemption_rolls_everything_back(facility, people, monkeypatch):
    credit = await _issue_credit(people.player.id)

    async def broken_claim(*args, **kwargs):
        raise RuntimeError("lost the slot claim")

    monkeypatch.setattr(admission, "claim_slot", broken_claim)

    with pytest.raises(RuntimeError):
        await create_booking(facility.id, people.player.id, FUTURE, 18, code=credit.code)

    stored = await _get(CompensationCredit, credit.id)
    assert not stored.is_used
    assert stored.redeemed_booking_id is None
    assert await _count(Booking) == 0


@pytest.mark.asyncio
async def test_cancelled_credit_can_be_spent_on_new_booking(facility, people):
    booking = await create_booking(facility.id, people.player.id, FUTURE, 18)
    outcome = await cancel_booking(booking.id, people.player.id)

    rebooked = await create_booking(facility.id, people.player.id, FUTURE, 20, code=outcome.credit.code)
    assert rebooked.credit_applied == 7500


@pytest.mark.asyncio
async def test_early_cancel_of_credit_funded_booking_refunds_only_cash(facility, people):
    booking = await create_booking(facility.id, people.player.id, FUTURE, 18)
    first = await cancel_booking(booking.id, people.player.id)
    assert first.refund_amount == 7500

    rebooked = await create_booking(facility.id, people.player.id, FUTURE, 18, code=first.credit.code)
    second = await cancel_booking(rebooked.id, people.player.id)

    assert second.tier == RefundTier.FULL_REFUND
    assert second.refund_amount == rebooked.deposit_paid - rebooked.credit_applied == 0
    assert second.booking.refund_amount == 0
    assert second.credit.value == 7500


@pytest.mark.asyncio
async def test_partly_credit_funded_booking_refunds_the_cash_part(facility, people):
    credit = await _issue_credit(people.player.id, value=5000)
    booking = await create_booking(facility.id, people.player.id, FUTURE, 18, code=credit.code)

    outcome = await cancel_booking(booking.id, people.player.id)

    assert outcome.refund_amount == 2500
    assert outcome.credit.value == 7500


@pytest.mark.asyncio
async def test_code_allocation_gives_up_after_repeated_collisions(people, monkeypatch):
    taken = await _issue_credit(people.player.id)
    monkeypatch.setattr(ledger, "generate_code", lambda: taken.code)

    with pytest.raises(StorageUnavailable):
        await _issue_credit(people.other.id)
    assert await _count(CompensationCredit) == 1


@pytest.mark.asyncio
async def test_issue_rejects_non_positive_value(people):
    with pytest.raises(InvalidRequest):
        await _issue_credit(people.player.id, value=0)


# ---------------------------------------------------------------------------
# Lifecycle sweeps
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_unconfirmed_bookings_expire(facility, people):
    stale = await create_booking(facility.id, people.player.id, FUTURE, 18)
    kept = await create_booking(facility.id, people.player.id, FUTURE, 19)
    await confirm_booking(kept.id, people.owner.id)

    expired = await expire_pending_bookings(now=utcnow() + timedelta(minutes=31))

    assert expired == [stale.id]
    stored = await _get(Booking, stale.id)
    assert stored.status == BookingStatus.CANCELLED
    assert stored.cancellation_reason == EXPIRED_REASON
    assert stored.refund_amount == 0
    assert await _count(CompensationCredit) == 0
    assert 18 in (await _availability(facility.id)).available_slots


@pytest.mark.asyncio
async def test_expiry_hands_back_the_spent_credit(facility, people):
    credit = await _issue_credit(people.player.id)
    booking = await create_booking(facility.id, people.player.id, FUTURE, 18, code=credit.code)

    assert await expire_pending_bookings(now=utcnow() + timedelta(minutes=31)) == [booking.id]

    stored = await _get(CompensationCredit, credit.id)
    assert not stored.is_used
    assert stored.used_at is None
    assert stored.redeemed_booking_id is None
    assert stored.expires_at == credit.expires_at

    again = await create_booking(facility.id, people.player.id, FUTURE, 19, code=credit.code)
    assert again.credit_applied == 5000


@pytest.mark.asyncio
async def test_expiry_publishes_cancellation(facility, people):
    received = []
    events.subscribe(events.BOOKING_CANCELLED, received.append)
    try:
        booking = await create_booking(facility.id, people.player.id, FUTURE, 18)
        await expire_pending_bookings(now=utcnow() + timedelta(minutes=31))
    finally:
        events.unsubscribe(events.BOOKING_CANCELLED, received.append)

    assert len(received) == 1
    assert received[0].payload["booking_id"] == booking.id
    assert received[0].payload["status"] == "cancelled"
    assert received[0].payload["refund_amount"] == 0


@pytest.mark.asyncio
async def test_fresh_pending_bookings_survive_sweep(facility, people):
    await create_booking(facility.id, people.player.id, FUTURE, 18)
    assert await expire_pending_bookings() == []


@pytest.mark.asyncio
async def test_confirmed_bookings_complete_after_the_slot(facility, people):
    booking = await create_booking(facility.id, people.player.id, FUTURE, 18)
    await confirm_booking(booking.id, people.owner.id)

    assert await complete_past_bookings(now=slot_start(FUTURE, 18) + timedelta(minutes=30)) == []
    assert await complete_past_bookings(now=slot_start(FUTURE, 19)) == [booking.id]
    assert (await _get(Booking, booking.id)).status == BookingStatus.COMPLETED

    with pytest.raises(InvalidRequest):
        await cancel_booking(booking.id, people.player.id, now=slot_start(FUTURE, 12))


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_events_published_after_commit(facility, people):
    received = []

    def collect(event):
        received.append(event)

    names = (events.BOOKING_CREATED, events.BOOKING_CANCELLED, events.CREDIT_ISSUED)
    for name in names:
        events.subscribe(name, collect)
    try:
        booking = await create_booking(facility.id, people.player.id, FUTURE, 18)
        with pytest.raises(SlotConflict):
            await create_booking(facility.id, people.other.id, FUTURE, 18)
        await cancel_booking(booking.id, people.player.id)
    finally:
        for name in names:
            events.unsubscribe(name, collect)

    assert [e.name for e in received] == [events.BOOKING_CREATED, events.BOOKING_CANCELLED, events.CREDIT_ISSUED]
    assert received[0].payload["booking_id"] == booking.id
    assert received[1].payload["status"] == "cancelled"
    assert received[2].payload["value"] == 7500


@pytest.mark.asyncio
async def test_failing_subscriber_does_not_break_admission(facility, people):
    async def explode(event):
        raise RuntimeError("mail server down")

    def explode_inline(event):
        raise RuntimeError("inline failure")

    events.subscribe(events.BOOKING_CREATED, explode)
    events.subscribe(events.BOOKING_CREATED, explode_inline)
    try:
        booking = await create_booking(facility.id, people.player.id, FUTURE, 18)
        await events.drain()
    finally:
        events.unsubscribe(events.BOOKING_CREATED, explode)
        events.unsubscribe(events.BOOKING_CREATED, explode_inline)

    assert (await _get(Booking, booking.id)).status == BookingStatus.PENDING


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


def _locked():
    return OperationalError("INSERT INTO bookings", {}, Exception("database is locked"))


@pytest.mark.asyncio
async def test_transient_error_is_retried_once():
    calls = []

    async def flaky(db):
        calls.append(1)
        if len(calls) == 1:
            raise _locked()
        return "ok"

    assert await run_in_transaction(flaky) == "ok"
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_persistent_store_failure_is_storage_unavailable():
    async def down(db):
        raise _locked()

    with pytest.raises(StorageUnavailable) as exc_info:
        await run_in_transaction(down)
    assert "locked" not in exc_info.value.message


@pytest.mark.asyncio
async def test_integrity_errors_are_not_retried():
    calls = []

    async def duplicate(db):
        calls.append(1)
        raise IntegrityError("INSERT INTO slot_claims", {}, Exception("UNIQUE constraint failed"))

    with pytest.raises(IntegrityError):
        await run_in_transaction(duplicate)
    assert len(calls) == 1


@pytest.mark.asyncio
@patch("pitchbook.services.email.send_email", new_callable=AsyncMock)
async def test_notifications_sent_for_booking_events(mock_send, facility, people):
    handlers = {
        events.BOOKING_CREATED: email.notify_booking_created,
        events.BOOKING_CANCELLED: email.notify_booking_cancelled,
        events.CREDIT_ISSUED: email.notify_credit_issued,
    }
    email.register_notifications()
    try:
        booking = await create_booking(facility.id, people.player.id, FUTURE, 18)
        outcome = await cancel_booking(booking.id, people.player.id)
        await events.drain()
    finally:
        for name, handler in handlers.items():
            events.unsubscribe(name, handler)

    assert mock_send.await_count == 3
    recipients = {c.args[0] for c in mock_send.await_args_list}
    assert recipients == {"player@example.com"}
    subjects = [c.args[1] for c in mock_send.await_args_list]
    assert "Your PitchBook compensation code" in subjects
    assert any(outcome.credit.code in c.args[2] for c in mock_send.await_args_list)


# ---------------------------------------------------------------------------
# Ratings
# ---------------------------------------------------------------------------


async def _completed_booking(facility, people, hour=18):
    booking = await create_booking(facility.id, people.player.id, FUTURE, hour)
    await confirm_booking(booking.id, people.owner.id)
    await complete_past_bookings(now=slot_start(FUTURE, hour + 1))
    return booking


@pytest.mark.asyncio
async def test_rating_a_completed_booking_updates_the_average(facility, people):
    first = await _completed_booking(facility, people, 18)
    second = await _completed_booking(facility, people, 20)

    rating = await rate_facility(facility.id, first.id, people.player.id, 5, "Great turf")
    await rate_facility(facility.id, second.id, people.player.id, 4)

    assert rating.value == 5
    assert rating.comment == "Great turf"
    pitch = await _get(Facility, facility.id)
    assert pitch.rating_count == 2
    assert pitch.average_rating == 4.5


@pytest.mark.asyncio
async def test_unrated_facility_has_no_average(facility):
    pitch = await _get(Facility, facility.id)
    assert pitch.rating_count == 0
    assert pitch.average_rating is None


@pytest.mark.asyncio
async def test_booking_can_be_rated_once(facility, people):
    booking = await _completed_booking(facility, people)
    await rate_facility(facility.id, booking.id, people.player.id, 3)

    with pytest.raises(AlreadyRated):
        await rate_facility(facility.id, booking.id, people.player.id, 5)
    assert (await _get(Facility, facility.id)).rating_count == 1


@pytest.mark.asyncio
async def test_only_completed_bookings_can_be_rated(facility, people):
    booking = await create_booking(facility.id, people.player.id, FUTURE, 18)
    with pytest.raises(InvalidRequest):
        await rate_facility(facility.id, booking.id, people.player.id, 4)


@pytest.mark.asyncio
async def test_only_the_requester_can_rate(facility, people):
    booking = await _completed_booking(facility, people)
    with pytest.raises(Forbidden):
        await rate_facility(facility.id, booking.id, people.other.id, 1)


@pytest.mark.asyncio
async def test_rating_checks_facility_and_range(facility, people):
    booking = await _completed_booking(facility, people)

    with pytest.raises(NotFound):
        await rate_facility(facility.id + 1, booking.id, people.player.id, 4)
    with pytest.raises(InvalidRequest):
        await rate_facility(facility.id, booking.id, people.player.id, 6)
    assert await _count(Rating) == 0
