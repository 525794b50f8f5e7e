"""Worker manager for coordinating background tasks."""

import asyncio
import logging
from typing import Dict

from ..core.config import settings
from .base import BaseWorker
from .hold_expiry_worker import HoldExpiryWorker
from .idempotency_cleanup_worker import IdempotencyCleanupWorker

logger = logging.getLogger(__name__)


class WorkerManager:
    """
    Manages background workers for the application.

    Coordinates starting, stopping, and monitoring of all background workers.
    """

    def __init__(self):
        self.workers: Dict[str, BaseWorker] = {
            "hold_expiry": HoldExpiryWorker(interval_seconds=settings.hold_sweep_interval_seconds),
            "idempotency_cleanup": IdempotencyCleanupWorker(
                interval_seconds=settings.idempotency_cleanup_interval_seconds
            ),
        }

    async def start_all(self) -> None:
        """Start all workers."""
        for name, worker in self.workers.items():
            try:
                await worker.start()
            except Exception:
                logger.error("Failed to start worker", exc_info=True, extra={"worker": name})

        logger.info("Workers started", extra={"count": len(self.workers)})

    async def stop_all(self) -> None:
        """Stop all workers gracefully."""
        results = await asyncio.gather(
            *(worker.stop() for worker in self.workers.values()),
            return_exceptions=True
        )

        for name, result in zip(self.workers.keys(), results):
            if isinstance(result, Exception):
                logger.error("Error stopping worker", extra={"worker": name, "error": str(result)})

        logger.info("All workers stopped")

    def get_worker(self, name: str) -> BaseWorker:
        """
        Get a specific worker by name.

        Raises:
            KeyError: If worker not found
        """
        return self.workers[name]

    def get_worker_status(self) -> Dict[str, bool]:
        """Map of worker name to running status."""
        return {name: worker.is_running for name, worker in self.workers.items()}


# Global worker manager instance
worker_manager = WorkerManager()
