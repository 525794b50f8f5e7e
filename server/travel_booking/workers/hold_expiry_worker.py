"""Background worker for expiring lapsed holds."""

import logging

from ..core.database import async_session_factory
from ..services.hold_service import HoldService
from .base import BaseWorker

logger = logging.getLogger(__name__)


class HoldExpiryWorker(BaseWorker):
    """
    Marks active holds past their expiry as expired.

    Purely housekeeping: a lapsed hold stops counting against capacity the
    moment it expires, whether or not this worker has run.
    """

    def __init__(self, interval_seconds: int = 60, session_factory=async_session_factory):
        super().__init__(name="HoldExpiry", interval_seconds=interval_seconds)
        self.session_factory = session_factory

    async def process(self) -> None:
        async with self.session_factory() as db:
            expired_count = await HoldService(db).sweep_expired()

        if expired_count > 0:
            logger.info("Expired holds", extra={"expired_count": expired_count, "worker": self.name})
