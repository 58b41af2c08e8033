"""Worker Registry: the authoritative set of workers and their live load."""

import logging
import threading
import time
from typing import Any, Callable, Iterator, Optional

from dispatcher.errors import CapacityExceededError, DuplicateWorkerError, UnknownWorkerError
from dispatcher.models.task import ResourceRequirement, TaskKind
from dispatcher.models.worker import Worker, WorkerAvailability

logger = logging.getLogger(__name__)


class WorkerRegistry:
    """Tracks workers, their load counters and liveness.

    Load counters are the only state shared between the scheduling loop
    (reserve) and executor threads (release), so every mutation happens under
    one lock. Callers never touch ``current_load`` directly.
    """

    def __init__(self, heartbeat_timeout: float = 30.0, clock: Callable[[], float] = time.monotonic):
        self.heartbeat_timeout = heartbeat_timeout
        self._clock = clock
        self._workers: dict[str, Worker] = {}
        self._lock = threading.Lock()

    def register(self, worker: Worker) -> None:
        """Add a worker. Registration order is kept for round-robin."""
        with self._lock:
            if worker.id in self._workers:
                raise DuplicateWorkerError(f"worker {worker.id!r} is already registered")
            self._workers[worker.id] = worker
        logger.info(
            "Registered %s worker %s (capacity %d)",
            worker.kind.value, worker.id, worker.capacity.max_concurrent,
        )

    # ── Liveness ──────────────────────────────────────────────────────

    def heartbeat(self, worker_id: str, timestamp: Optional[float] = None) -> None:
        """Record that the worker is alive."""
        with self._lock:
            worker = self._get(worker_id)
            worker.last_heartbeat = self._clock() if timestamp is None else timestamp
            if worker.availability != WorkerAvailability.AVAILABLE:
                logger.info("Worker %s is available", worker_id)
            worker.availability = WorkerAvailability.AVAILABLE

    def expire_stale(self, now: Optional[float] = None) -> list[str]:
        """Mark workers silent for longer than the timeout as unavailable."""
        now = self._clock() if now is None else now
        expired: list[str] = []
        with self._lock:
            for worker in self._workers.values():
                if worker.availability != WorkerAvailability.AVAILABLE:
                    continue
                if worker.last_heartbeat is None or now - worker.last_heartbeat > self.heartbeat_timeout:
                    worker.availability = WorkerAvailability.UNAVAILABLE
                    expired.append(worker.id)
        for worker_id in expired:
            logger.warning("Worker %s missed its heartbeat; marked unavailable", worker_id)
        return expired

    def mark_unavailable(self, worker_id: str) -> None:
        with self._lock:
            self._get(worker_id).availability = WorkerAvailability.UNAVAILABLE
        logger.warning("Worker %s marked unavailable", worker_id)

    # ── Load accounting ───────────────────────────────────────────────

    def reserve(
        self,
        worker_id: str,
        slots: int = 1,
        resources: Optional[ResourceRequirement] = None,
    ) -> None:
        """Take task slots (and resource budget) on a worker."""
        _check_slots(slots)
        with self._lock:
            worker = self._get(worker_id)
            if worker.current_load + slots > worker.capacity.max_concurrent:
                raise CapacityExceededError(
                    f"worker {worker_id} has {worker.free_slots} free slot(s), "
                    f"{slots} requested"
                )
            worker.current_load += slots
            if resources is not None:
                worker.reserved = _combine(worker.reserved, resources, 1)

    def release(
        self,
        worker_id: str,
        slots: int = 1,
        resources: Optional[ResourceRequirement] = None,
    ) -> None:
        """Give back slots taken by reserve(). Never drops below zero."""
        _check_slots(slots)
        with self._lock:
            worker = self._get(worker_id)
            worker.current_load = max(0, worker.current_load - slots)
            if resources is not None:
                worker.reserved = _combine(worker.reserved, resources, -1)

    # ── Queries ───────────────────────────────────────────────────────

    def list_available(
        self,
        capability: Optional[TaskKind] = None,
        key: Optional[Callable[[Worker], Any]] = None,
    ) -> list[Worker]:
        """Available workers able to run ``capability``, sorted by ``key``."""
        with self._lock:
            workers = [
                w for w in self._workers.values()
                if w.is_available and (capability is None or w.supports(capability))
            ]
        if key is not None:
            workers.sort(key=key)
        return workers

    def get(self, worker_id: str) -> Worker:
        with self._lock:
            return self._get(worker_id)

    def position(self, worker_id: str) -> int:
        """Registration index of a worker."""
        with self._lock:
            self._get(worker_id)
            return list(self._workers).index(worker_id)

    def snapshot(self) -> list[Worker]:
        """Copies of all workers, in registration order."""
        with self._lock:
            return [w.model_copy(deep=True) for w in self._workers.values()]

    def __len__(self) -> int:
        return len(self._workers)

    def __iter__(self) -> Iterator[Worker]:
        return iter(self.snapshot())

    def __contains__(self, worker_id: object) -> bool:
        return worker_id in self._workers

    def _get(self, worker_id: str) -> Worker:
        try:
            return self._workers[worker_id]
        except KeyError:
            raise UnknownWorkerError(f"no worker named {worker_id!r}") from None


def _combine(
    held: ResourceRequirement, change: ResourceRequirement, sign: int,
) -> ResourceRequirement:
    return ResourceRequirement(
        cpu=max(0.0, held.cpu + sign * change.cpu),
        memory_mb=max(0.0, held.memory_mb + sign * change.memory_mb),
        disk_mb=max(0.0, held.disk_mb + sign * change.disk_mb),
    )


def _check_slots(slots: int) -> None:
    if slots < 1:
        raise ValueError(f"slot count must be at least 1, got {slots}")
