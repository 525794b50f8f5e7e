"""Background workers for periodic maintenance tasks."""

from .manager import WorkerManager, worker_manager

__all__ = ["WorkerManager", "worker_manager"]
