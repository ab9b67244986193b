"""Blocked slots and the shared slot-claim table.

A SlotClaim row is the single exclusion key for (facility, date, hour). Every
live booking and every active block owns exactly one claim, so the primary key
stops a booking and a block (or two of either) from holding the same hour.
"""

import enum
from datetime import date
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Enum, ForeignKey, Index, Integer, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pitchbook.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from pitchbook.models.facility import Facility


class ClaimKind(enum.StrEnum):
    BOOKING = "booking"
    BLOCK = "block"


class BlockedSlot(TimestampMixin, Base):
    """An hour taken out of sale by the facility owner or an operator (maintenance, private event)."""

    __tablename__ = "blocked_slots"

    id: Mapped[int] = mapped_column(primary_key=True)
    facility_id: Mapped[int] = mapped_column(ForeignKey("facilities.id"), nullable=False)
    created_by_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    block_date: Mapped[date] = mapped_column(nullable=False)
    start_hour: Mapped[int] = mapped_column(Integer, nullable=False)
    end_hour: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    facility: Mapped["Facility"] = relationship(lazy="raise")

    __table_args__ = (
        Index(
            "ix_blocked_slots_unique",
            "facility_id",
            "block_date",
            "start_hour",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    def __repr__(self) -> str:
        return f"<BlockedSlot {self.block_date} {self.start_hour:02d}:00 facility={self.facility_id}>"


class SlotClaim(Base):
    __tablename__ = "slot_claims"

    facility_id: Mapped[int] = mapped_column(ForeignKey("facilities.id"), primary_key=True)
    slot_date: Mapped[date] = mapped_column(primary_key=True)
    start_hour: Mapped[int] = mapped_column(Integer, primary_key=True)
    kind: Mapped[ClaimKind] = mapped_column(
        Enum(ClaimKind, name="claim_kind", values_callable=lambda e: [x.value for x in e]),
        nullable=False,
    )
    booking_id: Mapped[int | None] = mapped_column(ForeignKey("bookings.id"))
    blocked_slot_id: Mapped[int | None] = mapped_column(ForeignKey("blocked_slots.id"))

    def __repr__(self) -> str:
        return f"<SlotClaim {self.slot_date} {self.start_hour:02d}:00 facility={self.facility_id} {self.kind.value}>"
