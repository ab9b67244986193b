"""User model.

A user is anyone who can log in: players book pitches, owners run facilities,
employees and admins operate the platform on behalf of any facility.
"""

import enum

from sqlalchemy import Boolean, Enum, String
from sqlalchemy.orm import Mapped, mapped_column

from pitchbook.models.base import Base, TimestampMixin


class UserRole(enum.StrEnum):
    PLAYER = "player"
    EMPLOYEE = "employee"
    OWNER = "owner"
    ADMIN = "admin"


# Roles allowed to act on any facility's schedule
OPERATOR_ROLES = frozenset({UserRole.EMPLOYEE, UserRole.ADMIN})


class User(TimestampMixin, Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    email: Mapped[str] = mapped_column(String(254), unique=True, nullable=False, index=True)
    hashed_password: Mapped[str | None] = mapped_column(String(200))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, name="user_role", values_callable=lambda e: [x.value for x in e]),
        default=UserRole.PLAYER,
        nullable=False,
    )

    # Profile
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(50))

    @property
    def is_operator(self) -> bool:
        return self.role in OPERATOR_ROLES

    def __repr__(self) -> str:
        return f"<User {self.email}>"
