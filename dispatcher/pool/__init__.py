from dispatcher.pool.registry import WorkerRegistry
from dispatcher.pool.queue import TaskQueue
from dispatcher.pool.discovery import discover_workers, worker_from_spec

__all__ = ["WorkerRegistry", "TaskQueue", "discover_workers", "worker_from_spec"]
