"""Rating model.

A player rates a facility once per completed booking, 1 to 5 stars.
"""

from typing import TYPE_CHECKING

from sqlalchemy import CheckConstraint, ForeignKey, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pitchbook.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from pitchbook.models.user import User


class Rating(TimestampMixin, Base):
    __tablename__ = "ratings"

    id: Mapped[int] = mapped_column(primary_key=True)
    facility_id: Mapped[int] = mapped_column(ForeignKey("facilities.id"), nullable=False, index=True)
    booking_id: Mapped[int] = mapped_column(ForeignKey("bookings.id"), unique=True, nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    value: Mapped[int] = mapped_column(Integer, nullable=False)
    comment: Mapped[str | None] = mapped_column(Text)

    user: Mapped["User"] = relationship(lazy="raise")

    __table_args__ = (CheckConstraint("value >= 1 AND value <= 5", name="ck_ratings_value"),)

    def __repr__(self) -> str:
        return f"<Rating {self.value} facility={self.facility_id} booking={self.booking_id}>"
