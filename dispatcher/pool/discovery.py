"""Worker discovery: turns declared worker specs into registry entries."""

import logging
from typing import Callable, Optional

from dispatcher.config import DispatcherConfig, ProcessingMode, WorkerSpec
from dispatcher.models.worker import Worker, WorkerAvailability, WorkerCapacity, WorkerKind

logger = logging.getLogger(__name__)

LOCALHOST_ID = "localhost"


def worker_from_spec(spec: WorkerSpec) -> Worker:
    """Build a Worker; local ones start available, remote ones unknown."""
    return Worker(
        id=spec.id,
        kind=spec.kind,
        address=spec.address,
        port=spec.port,
        user=spec.user,
        capacity=WorkerCapacity(
            max_concurrent=spec.max_concurrent,
            cpu=spec.cpu,
            memory_mb=spec.memory_mb,
            disk_mb=spec.disk_mb,
        ),
        capabilities=list(spec.capabilities),
        availability=(
            WorkerAvailability.AVAILABLE if spec.kind == WorkerKind.LOCAL
            else WorkerAvailability.UNKNOWN
        ),
    )


def discover_workers(
    config: DispatcherConfig,
    probe: Optional[Callable[[Worker], bool]] = None,
) -> list[Worker]:
    """Select the workers taking part in a run, according to ``config.mode``.

    local:  declared local workers, or an implicit ``localhost`` worker
    remote: declared remote workers
    hybrid: both
    auto:   local workers plus the remote workers that answer ``probe``
    """
    local = [worker_from_spec(s) for s in config.workers if s.kind == WorkerKind.LOCAL]
    remote = [worker_from_spec(s) for s in config.workers if s.kind == WorkerKind.REMOTE]

    if not local and config.mode != ProcessingMode.REMOTE:
        local = [Worker(
            id=LOCALHOST_ID,
            kind=WorkerKind.LOCAL,
            capacity=WorkerCapacity(max_concurrent=config.local_capacity),
            availability=WorkerAvailability.AVAILABLE,
        )]

    match config.mode:
        case ProcessingMode.LOCAL:
            workers = local
        case ProcessingMode.REMOTE:
            workers = remote
        case ProcessingMode.HYBRID:
            workers = local + remote
        case ProcessingMode.AUTO:
            reachable = []
            for worker in remote:
                if probe is not None and probe(worker):
                    worker.availability = WorkerAvailability.AVAILABLE
                    reachable.append(worker)
                else:
                    logger.info("Remote worker %s unreachable; skipped in auto mode", worker.id)
            workers = local + reachable

    if config.max_workers is not None and len(workers) > config.max_workers:
        logger.info("Using %d of %d workers (max_workers)", config.max_workers, len(workers))
        workers = workers[:config.max_workers]

    logger.info(
        "Discovered %d worker(s) in %s mode: %s",
        len(workers), config.mode.value, ", ".join(w.id for w in workers) or "none",
    )
    return workers
