"""Per-(package, date) serialization for capacity-affecting transactions."""

import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from datetime import date
from typing import AsyncIterator
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

# Locks live as long as some coroutine holds or waits on them
_local_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()


def capacity_lock_key(package_id: UUID, travel_date: date) -> str:
    """Key shared by the advisory lock and the in-process fallback."""
    return f"capacity:{package_id}:{travel_date.isoformat()}"


def is_postgresql(db: AsyncSession) -> bool:
    return bool(db.bind) and db.bind.dialect.name == "postgresql"


@asynccontextmanager
async def local_lock(key: str) -> AsyncIterator[None]:
    """
    Hold an in-process lock for ``key`` until the block exits.

    Used where the database has no advisory locks (SQLite in development and
    tests). It only serializes coroutines inside one process.
    """
    lock = _local_locks.get(key)
    if lock is None:
        lock = asyncio.Lock()
        _local_locks[key] = lock
    async with lock:
        yield


async def advisory_xact_lock(db: AsyncSession, key: str) -> None:
    """
    Take a PostgreSQL transaction-scoped advisory lock.

    The lock is released automatically when the surrounding transaction
    commits or rolls back. No-op on other dialects.
    """
    if not is_postgresql(db):
        return
    await db.execute(
        text("SELECT pg_advisory_xact_lock(hashtext(:lock_key))"),
        {"lock_key": key}
    )
    logger.debug("Acquired advisory lock", extra={"lock_key": key})
