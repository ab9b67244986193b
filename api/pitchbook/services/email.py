"""Email notifications via SMTP.

Subscribes to booking and credit events. Delivery failures are logged and
dropped; the booking engine never waits on them.
"""

import logging
from email.message import EmailMessage

import aiosmtplib
from sqlalchemy import select

from pitchbook.core.config import settings
from pitchbook.core.database import async_session_factory
from pitchbook.models.facility import Facility
from pitchbook.models.user import User
from pitchbook.services import events

logger = logging.getLogger(__name__)


async def send_email(to: str, subject: str, body: str) -> None:
    """Send a plain-text email via SMTP."""
    message = EmailMessage()
    message["From"] = settings.smtp_from
    message["To"] = to
    message["Subject"] = subject
    message.set_content(body)

    await aiosmtplib.send(message, hostname=settings.smtp_host, port=settings.smtp_port)


async def _lookup(user_id: int, facility_id: int | None = None) -> tuple[User | None, Facility | None]:
    async with async_session_factory() as db:
        user = (await db.execute(select(User).where(User.id == user_id))).scalar_one_or_none()
        facility = await db.get(Facility, facility_id) if facility_id else None
        return user, facility


async def notify_booking_created(event: events.DomainEvent) -> None:
    p = event.payload
    user, facility = await _lookup(p["user_id"], p["facility_id"])
    if user is None or facility is None:
        return
    body = (
        f"Hi {user.name},\n\n"
        f"Your booking at {facility.name} on {p['date']} at {p['start_hour']:02d}:00 is reserved.\n"
        f"Total price: {p['total_price']}\n"
        f"Deposit paid: {p['deposit_paid']}\n"
        f"Remaining to pay at the venue: {p['remaining_balance']}\n\n"
        f"PitchBook"
    )
    await send_email(user.email, "Your PitchBook booking", body)
    logger.info("Booking confirmation email sent for booking %s", p["booking_id"])


async def notify_booking_cancelled(event: events.DomainEvent) -> None:
    p = event.payload
    user, facility = await _lookup(p["user_id"], p["facility_id"])
    if user is None or facility is None:
        return
    refund_line = f"A refund of {p['refund_amount']} is on its way.\n" if p["refund_amount"] else ""
    body = (
        f"Hi {user.name},\n\n"
        f"Your booking at {facility.name} on {p['date']} at {p['start_hour']:02d}:00 has been cancelled.\n"
        f"{refund_line}\n"
        f"PitchBook"
    )
    await send_email(user.email, "Your PitchBook booking was cancelled", body)
    logger.info("Cancellation email sent for booking %s", p["booking_id"])


async def notify_credit_issued(event: events.DomainEvent) -> None:
    p = event.payload
    user, _ = await _lookup(p["beneficiary_id"])
    if user is None:
        return
    body = (
        f"Hi {user.name},\n\n"
        f"You have received a compensation code worth {p['value']}: {p['code']}\n"
        f"Use it towards the deposit of your next booking before {p['expires_at'][:10]}.\n\n"
        f"PitchBook"
    )
    await send_email(user.email, "Your PitchBook compensation code", body)
    logger.info("Compensation code email sent for credit %s", p["credit_id"])


def register_notifications() -> None:
    """Hook the email senders onto the event bus. Called at startup when notifications are enabled."""
    events.subscribe(events.BOOKING_CREATED, notify_booking_created)
    events.subscribe(events.BOOKING_CANCELLED, notify_booking_cancelled)
    events.subscribe(events.CREDIT_ISSUED, notify_credit_issued)
