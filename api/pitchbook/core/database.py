"""Async database engine and session management.

Request handlers that only read use ``get_db``. Engine operations that must be
atomic (admission, cancellation, blocking, sweeps) go through
``run_in_transaction``, which owns one session and one transaction per attempt
and retries once on transient store failures.
"""

import logging
from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from pitchbook.core.config import settings
from pitchbook.core.exceptions import StorageUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        # Writers queue on the file lock instead of failing straight away
        return {"connect_args": {"timeout": 30}}
    return {"pool_size": 20, "max_overflow": 10, "pool_pre_ping": True}


engine = create_async_engine(
    settings.database_url,
    echo=settings.database_echo,
    **_engine_options(settings.database_url),
)

async_session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session. Used as a FastAPI dependency."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def is_transient(exc: DBAPIError) -> bool:
    """Connection loss, deadlock and lock timeouts are worth one more attempt. Constraint violations never are."""
    if isinstance(exc, IntegrityError):
        return False
    return exc.connection_invalidated or isinstance(exc, (OperationalError, InterfaceError))


async def run_in_transaction(work: Callable[[AsyncSession], Awaitable[T]], attempts: int = 2) -> T:
    """Run ``work`` inside a single transaction, committing on success.

    Any exception rolls the whole unit back. Transient store errors are retried
    once with a fresh session; if the store is still failing the caller gets
    StorageUnavailable. Domain errors raised by ``work`` pass through untouched.
    """
    for attempt in range(1, attempts + 1):
        async with async_session_factory() as session:
            try:
                async with session.begin():
                    return await work(session)
            except DBAPIError as exc:
                if not is_transient(exc):
                    raise
                logger.warning("Transient storage error (attempt %d/%d): %s", attempt, attempts, exc.orig)
                if attempt == attempts:
                    raise StorageUnavailable() from exc
    raise StorageUnavailable()
