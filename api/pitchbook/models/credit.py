"""Compensation credit model.

Issued to a player when a booking is cancelled early enough, redeemable once
against the deposit of a later booking.
"""

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pitchbook.models.base import Base, TimestampMixin, UTCDateTime

if TYPE_CHECKING:
    from pitchbook.models.user import User


class CompensationCredit(TimestampMixin, Base):
    __tablename__ = "compensation_credits"

    id: Mapped[int] = mapped_column(primary_key=True)
    code: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    beneficiary_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    value: Mapped[int] = mapped_column(Integer, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    is_used: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    used_at: Mapped[datetime | None] = mapped_column(UTCDateTime)

    # The cancelled booking this credit compensates, and the booking that spent it
    source_booking_id: Mapped[int | None] = mapped_column(ForeignKey("bookings.id"))
    redeemed_booking_id: Mapped[int | None] = mapped_column(ForeignKey("bookings.id"))

    beneficiary: Mapped["User"] = relationship(lazy="raise")

    __table_args__ = (
        Index("ix_credits_beneficiary", "beneficiary_id", "is_used"),
        CheckConstraint("value > 0", name="ck_credits_value_positive"),
    )

    def is_redeemable(self, now: datetime) -> bool:
        return not self.is_used and self.expires_at > now

    def __repr__(self) -> str:
        return f"<CompensationCredit {self.code} {self.value} user={self.beneficiary_id}>"
