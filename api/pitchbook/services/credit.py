"""Compensation ledger: issuing and redeeming compensation credits.

A credit is single-use and belongs to one beneficiary. The ledger never
commits on its own: issue() runs inside the cancellation transaction and
redeem() inside the admission transaction, so a credit cannot end up used
without the booking that used it.
"""

import logging
import secrets
from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from pitchbook.core.exceptions import InvalidCode, InvalidRequest, StorageUnavailable
from pitchbook.models.base import utcnow
from pitchbook.models.credit import CompensationCredit

logger = logging.getLogger(__name__)

CODE_PREFIX = "PB-"
_CODE_ATTEMPTS = 5


def generate_code() -> str:
    return CODE_PREFIX + secrets.token_hex(4).upper()


def normalise_code(code: str) -> str:
    return code.strip().upper()


async def issue(
    db: AsyncSession,
    beneficiary_id: int,
    value: int,
    ttl: timedelta,
    source_booking_id: int | None = None,
    now: datetime | None = None,
) -> CompensationCredit:
    """Create a new unused credit expiring ``ttl`` from now."""
    if value <= 0:
        raise InvalidRequest("Credit value must be positive.")
    now = now or utcnow()

    for _ in range(_CODE_ATTEMPTS):
        code = generate_code()
        taken = await db.execute(select(CompensationCredit.id).where(CompensationCredit.code == code))
        if taken.scalar_one_or_none() is None:
            break
        logger.info("Credit code collision, regenerating")
    else:
        logger.error("No free credit code after %d attempts", _CODE_ATTEMPTS)
        raise StorageUnavailable("Could not allocate a compensation code. Please try again.")

    credit = CompensationCredit(
        code=code,
        beneficiary_id=beneficiary_id,
        value=value,
        expires_at=now + ttl,
        source_booking_id=source_booking_id,
    )
    db.add(credit)
    await db.flush()
    logger.info("Issued credit %s worth %d to user %d", credit.code, value, beneficiary_id)
    return credit


async def redeem(
    db: AsyncSession,
    code: str,
    requester_id: int,
    now: datetime | None = None,
) -> CompensationCredit:
    """Validate and mark a credit used for ``requester_id``.

    The caller links the credit to its booking and owns the transaction.
    Raises InvalidCode if the code is unknown, belongs to someone else,
    has expired or was already used.
    """
    now = now or utcnow()

    result = await db.execute(
        select(CompensationCredit).where(CompensationCredit.code == normalise_code(code)).with_for_update()
    )
    credit = result.scalar_one_or_none()

    # Unknown and foreign codes get the same answer so codes can't be guessed
    if credit is None or credit.beneficiary_id != requester_id:
        raise InvalidCode("Compensation code is not valid.")
    if not credit.is_redeemable(now):
        if credit.is_used:
            raise InvalidCode("Compensation code has already been used.")
        raise InvalidCode(f"Compensation code expired on {credit.expires_at:%Y-%m-%d %H:%M} UTC.")

    # Guarded write: a concurrent redemption that got here first wins
    marked = await db.execute(
        update(CompensationCredit)
        .where(CompensationCredit.id == credit.id, CompensationCredit.is_used.is_(False))
        .values(is_used=True, used_at=now)
        .execution_options(synchronize_session=False)
    )
    if marked.rowcount != 1:
        raise InvalidCode("Compensation code has already been used.")

    await db.refresh(credit)
    return credit


async def release(db: AsyncSession, booking_id: int) -> list[str]:
    """Hand back the credit spent on a booking the system cancelled.

    The credit keeps its original expiry. Returns the released codes.
    """
    spent = CompensationCredit.redeemed_booking_id == booking_id
    result = await db.execute(select(CompensationCredit.code).where(spent))
    codes = list(result.scalars().all())
    if not codes:
        return codes

    await db.execute(
        update(CompensationCredit)
        .where(spent)
        .values(is_used=False, used_at=None, redeemed_booking_id=None)
        .execution_options(synchronize_session=False)
    )
    for code in codes:
        logger.info("Released credit %s from booking %d", code, booking_id)
    return codes


async def list_credits(db: AsyncSession, beneficiary_id: int) -> list[CompensationCredit]:
    result = await db.execute(
        select(CompensationCredit)
        .where(CompensationCredit.beneficiary_id == beneficiary_id)
        .order_by(CompensationCredit.created_at.desc())
        .limit(50)
    )
    return list(result.scalars().all())
