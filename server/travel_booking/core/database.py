"""Database configuration, async session management and transaction helpers."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import AsyncGenerator, Awaitable, Callable, TypeVar

from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

from .config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

# SQLSTATE codes PostgreSQL uses for serialization failure, deadlock and lock timeout
TRANSIENT_SQLSTATES = {"40001", "40P01", "55P03"}


def _engine_options(database_url: str) -> dict:
    if "sqlite" not in database_url:
        return {"pool_pre_ping": True}
    options = {"connect_args": {"check_same_thread": False}}
    # In-memory SQLite only exists for the lifetime of one connection
    if ":memory:" in database_url:
        options["poolclass"] = StaticPool
    return options


# Create async engine
engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    **_engine_options(settings.database_url),
)

# Create async session factory
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

# Create declarative base for models
Base = declarative_base()


def utcnow() -> datetime:
    """Current time as naive UTC, the representation stored in every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency function that yields database sessions.

    Yields:
        AsyncSession: Database session
    """
    async with async_session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# Alias for FastAPI dependency injection
get_db = get_async_session


def is_transient_error(exc: DBAPIError) -> bool:
    """Return True for lock timeouts, deadlocks and serialization failures."""
    orig = getattr(exc, "orig", None)
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in TRANSIENT_SQLSTATES:
        return True
    return "database is locked" in str(orig or exc).lower()


async def run_in_transaction(
    session: AsyncSession,
    operation: Callable[[], Awaitable[T]],
    attempts: int | None = None,
) -> T:
    """
    Run a unit of work and commit it, retrying transient database failures.

    The operation must do all of its reads inside the call so a retry starts
    from fresh state. Anything other than a transient DBAPIError rolls back
    and propagates immediately.

    Args:
        session: Session the operation writes through
        operation: Coroutine factory performing the unit of work (without committing)
        attempts: Maximum attempts, defaults to settings.transaction_retry_attempts

    Returns:
        Whatever the operation returned
    """
    max_attempts = attempts or settings.transaction_retry_attempts
    attempt = 1
    while True:
        try:
            result = await operation()
            await session.commit()
            return result
        except DBAPIError as e:
            await session.rollback()
            if attempt >= max_attempts or not is_transient_error(e):
                raise
            logger.warning(
                "Transient database failure, retrying unit of work",
                extra={"attempt": attempt, "max_attempts": max_attempts, "error": str(e)}
            )
            await asyncio.sleep(0.05 * attempt)
            attempt += 1
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Initialize the database by creating all tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close database connections."""
    await engine.dispose()
