"""All models imported here for Alembic autogenerate discovery."""

from pitchbook.models.base import Base
from pitchbook.models.booking import Booking, BookingStatus
from pitchbook.models.credit import CompensationCredit
from pitchbook.models.facility import DepositType, Facility
from pitchbook.models.rating import Rating
from pitchbook.models.slot import BlockedSlot, ClaimKind, SlotClaim
from pitchbook.models.user import OPERATOR_ROLES, User, UserRole

__all__ = [
    "Base",
    "User",
    "UserRole",
    "OPERATOR_ROLES",
    "Facility",
    "DepositType",
    "Booking",
    "BookingStatus",
    "BlockedSlot",
    "SlotClaim",
    "ClaimKind",
    "CompensationCredit",
    "Rating",
]
