"""Booking model.

A booking reserves one hourly slot of a facility for a requester.
This is the core transactional entity in the system.
"""

import enum
from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import CheckConstraint, Enum, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pitchbook.models.base import Base, TimestampMixin, UTCDateTime

if TYPE_CHECKING:
    from pitchbook.models.facility import Facility
    from pitchbook.models.user import User


class BookingStatus(enum.StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


# pending -> confirmed -> completed ; pending|confirmed -> cancelled
TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED}),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.COMPLETED: frozenset(),
}


class Booking(TimestampMixin, Base):
    __tablename__ = "bookings"

    id: Mapped[int] = mapped_column(primary_key=True)
    facility_id: Mapped[int] = mapped_column(ForeignKey("facilities.id"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)

    # When (wall-clock hours in settings.timezone)
    booking_date: Mapped[date] = mapped_column(nullable=False)
    start_hour: Mapped[int] = mapped_column(Integer, nullable=False)
    end_hour: Mapped[int] = mapped_column(Integer, nullable=False)

    # Status
    status: Mapped[BookingStatus] = mapped_column(
        Enum(BookingStatus, name="booking_status", values_callable=lambda e: [x.value for x in e]),
        default=BookingStatus.PENDING,
        nullable=False,
    )
    confirmed_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    cancelled_by_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"))
    cancellation_reason: Mapped[str | None] = mapped_column(Text)

    # Money (minor currency units). remaining_balance = total_price - deposit_paid
    total_price: Mapped[int] = mapped_column(Integer, nullable=False)
    deposit_paid: Mapped[int] = mapped_column(Integer, nullable=False)
    credit_applied: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    remaining_balance: Mapped[int] = mapped_column(Integer, nullable=False)
    refund_amount: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Compensation code that paid (part of) the deposit
    redeemed_code: Mapped[str | None] = mapped_column(String(20))

    # Relationships
    facility: Mapped["Facility"] = relationship(lazy="raise")
    user: Mapped["User"] = relationship(foreign_keys=[user_id], lazy="raise")

    __table_args__ = (
        # Exclusivity: one live booking per facility/date/hour. Cancelled rows
        # drop out of the index so the hour can be booked again.
        Index(
            "ix_bookings_no_double",
            "facility_id",
            "booking_date",
            "start_hour",
            unique=True,
            postgresql_where=text("status != 'cancelled'"),
            sqlite_where=text("status != 'cancelled'"),
        ),
        Index("ix_bookings_user", "user_id", "booking_date"),
        Index("ix_bookings_status_created", "status", "created_at"),
        CheckConstraint("start_hour >= 0 AND start_hour < 24", name="ck_bookings_start_hour"),
        CheckConstraint("remaining_balance = total_price - deposit_paid", name="ck_bookings_remaining"),
    )

    def can_transition(self, target: BookingStatus) -> bool:
        return target in TRANSITIONS[self.status]

    def __repr__(self) -> str:
        return f"<Booking {self.booking_date} {self.start_hour:02d}:00 facility={self.facility_id} {self.status.value}>"
