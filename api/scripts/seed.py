"""Seed the database with demo facilities and users.

Run with: python -m scripts.seed
Creates the tables, an admin, an employee, a facility owner with three
pitches, and a player.
"""

import asyncio

from sqlalchemy import select

from pitchbook.core.auth import hash_password
from pitchbook.core.database import async_session_factory, engine
from pitchbook.models import Base, DepositType, Facility, User, UserRole

# Prices and deposits in piastres
PITCHES = [
    {
        "name": "Al Tayara Club - Main Pitch",
        "location": "Mokattam - 90th Street",
        "price_per_hour": 25000,
        "deposit_value": 7500,
    },
    {
        "name": "Al Tayara Club - Second Pitch",
        "location": "Mokattam - 90th Street",
        "price_per_hour": 22000,
        "deposit_value": 6600,
    },
    {
        "name": "Good Shepherd",
        "location": "Mokattam - Street 9",
        "price_per_hour": 30000,
        "deposit_value": 30,
        "deposit_type": DepositType.PERCENTAGE,
        "open_hour": 8,
    },
]

USERS = [
    ("admin@pitchbook.app", "admin123", "Platform Admin", UserRole.ADMIN),
    ("staff@pitchbook.app", "staff123", "Front Desk", UserRole.EMPLOYEE),
    ("owner@pitchbook.app", "owner123", "Pitch Owner", UserRole.OWNER),
    ("player@example.com", "player123", "Test Player", UserRole.PLAYER),
]


async def seed():
    # Create tables (in dev; production uses Alembic migrations)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_session_factory() as db:
        # Check if already seeded
        result = await db.execute(select(User).where(User.email == "admin@pitchbook.app"))
        if result.scalar_one_or_none():
            print("Database already seeded, skipping.")
            return

        users = {}
        for email, password, name, role in USERS:
            user = User(email=email, hashed_password=hash_password(password), name=name, role=role)
            db.add(user)
            users[role] = user
        await db.flush()

        for pitch in PITCHES:
            db.add(Facility(owner_id=users[UserRole.OWNER].id, **pitch))

        await db.commit()

        print(f"Seeded {len(PITCHES)} pitches and {len(USERS)} users:")
        for email, password, _, role in USERS:
            print(f"  {email} / {password} ({role.value})")


if __name__ == "__main__":
    asyncio.run(seed())
