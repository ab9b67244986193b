"""Facility model.

A facility is a bookable pitch/stadium with a single hourly price and a
deposit rule. Bookings and blocked slots live in its scheduling namespace.
"""

import enum
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, CheckConstraint, Enum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pitchbook.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from pitchbook.models.user import User


class DepositType(enum.StrEnum):
    FIXED = "fixed"            # deposit_value is an amount
    PERCENTAGE = "percentage"  # deposit_value is a percentage of the hourly price


class Facility(TimestampMixin, Base):
    __tablename__ = "facilities"

    id: Mapped[int] = mapped_column(primary_key=True)
    owner_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    location: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Pricing (minor currency units)
    price_per_hour: Mapped[int] = mapped_column(Integer, nullable=False)
    deposit_type: Mapped[DepositType] = mapped_column(
        Enum(DepositType, name="deposit_type", values_callable=lambda e: [x.value for x in e]),
        default=DepositType.FIXED,
        nullable=False,
    )
    deposit_value: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Operating hours: slots start at open_hour .. close_hour - 1
    open_hour: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    close_hour: Mapped[int] = mapped_column(Integer, default=24, nullable=False)

    # Ratings aggregate, kept in step with the ratings table
    rating_sum: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    rating_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Relationships
    owner: Mapped["User"] = relationship(lazy="raise")

    __table_args__ = (
        CheckConstraint("price_per_hour >= 0", name="ck_facilities_price_positive"),
        CheckConstraint("deposit_value >= 0", name="ck_facilities_deposit_positive"),
        CheckConstraint("open_hour >= 0 AND close_hour <= 24 AND open_hour < close_hour", name="ck_facilities_hours"),
    )

    @property
    def deposit_amount(self) -> int:
        if self.deposit_type == DepositType.PERCENTAGE:
            return self.price_per_hour * self.deposit_value // 100
        return self.deposit_value

    @property
    def average_rating(self) -> float | None:
        if not self.rating_count:
            return None
        return round(self.rating_sum / self.rating_count, 1)

    def __repr__(self) -> str:
        return f"<Facility {self.name}>"
