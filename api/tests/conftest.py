"""Shared test fixtures.

Tests run against a throwaway SQLite file (aiosqlite). The URL is set before
anything from pitchbook is imported because the engine is built at import time.
"""

import os
import tempfile

_DB_DIR = tempfile.mkdtemp(prefix="pitchbook-tests-")
os.environ.setdefault("PB_DATABASE_URL", f"sqlite+aiosqlite:///{os.path.join(_DB_DIR, 'test.db')}")
os.environ.setdefault("PB_NOTIFICATIONS_ENABLED", "false")

from types import SimpleNamespace  # noqa: E402

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from pitchbook.core.auth import create_access_token  # noqa: E402
from pitchbook.core.database import async_session_factory, engine  # noqa: E402
from pitchbook.main import app  # noqa: E402
from pitchbook.models import Base, DepositType, Facility, User, UserRole  # noqa: E402
from pitchbook.services import events  # noqa: E402


@pytest.fixture(autouse=True)
async def _fresh_schema():
    """Dispose stale pool connections and rebuild the schema before each test.

    The global engine is created at import time. When pytest-asyncio creates a new
    event loop for tests, any existing pooled connections are bound to the old loop
    and will fail with 'Future attached to a different loop'.
    """
    await engine.dispose()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    await events.drain()
    await engine.dispose()


@pytest.fixture
async def client():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def people():
    """An owner, an employee, and two players."""
    async with async_session_factory() as db:
        owner = User(email="owner@example.com", name="Pitch Owner", role=UserRole.OWNER)
        employee = User(email="staff@example.com", name="Front Desk", role=UserRole.EMPLOYEE)
        player = User(email="player@example.com", name="Player One", role=UserRole.PLAYER)
        other = User(email="other@example.com", name="Player Two", role=UserRole.PLAYER)
        db.add_all([owner, employee, player, other])
        await db.commit()
        return SimpleNamespace(owner=owner, employee=employee, player=player, other=other)


@pytest.fixture
async def facility(people):
    """Open all day, 250.00 per hour with a fixed 75.00 deposit."""
    async with async_session_factory() as db:
        pitch = Facility(
            owner_id=people.owner.id,
            name="Main Pitch",
            location="Mokattam",
            price_per_hour=25000,
            deposit_type=DepositType.FIXED,
            deposit_value=7500,
        )
        db.add(pitch)
        await db.commit()
        return pitch


@pytest.fixture
def headers_for():
    def _headers(user: User) -> dict:
        return {"Authorization": f"Bearer {create_access_token(str(user.id))}"}

    return _headers
