"""Result Aggregator: summarizes terminal task outcomes for reporting."""

from dataclasses import asdict, dataclass, field

import numpy as np

from dispatcher.models.task import Task, TaskStatus


@dataclass(frozen=True)
class WorkerStats:
    """Per-worker outcome counts and busy time."""
    worker_id: str
    assigned: int = 0
    succeeded: int = 0
    failed: int = 0
    busy_time: float = 0.0
    mean_concurrency: float = 0.0  # busy_time / run wall time


@dataclass(frozen=True)
class FailureRecord:
    """Why one task failed."""
    task_id: str
    kind: str
    message: str
    exit_code: int | None = None


@dataclass(frozen=True)
class Summary:
    """Aggregate view of a run. Accounts for every submitted task."""
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    unfinished: int = 0
    total_duration: float = 0.0
    wall_time: float = 0.0
    duration_p50: float = 0.0
    duration_p95: float = 0.0
    per_worker: dict[str, WorkerStats] = field(default_factory=dict)
    failures: tuple[FailureRecord, ...] = ()

    @property
    def exit_code(self) -> int:
        """Process exit status: 0 only if every task succeeded."""
        return 0 if self.total == self.succeeded else 1

    def to_dict(self) -> dict:
        """Plain-data form for report sinks."""
        data = asdict(self)
        data["failures"] = list(data["failures"])
        data["exit_code"] = self.exit_code
        return data


def summarize(tasks: list[Task]) -> Summary:
    """Build a Summary from task state. Pure: never mutates ``tasks``."""
    ordered = sorted(tasks, key=lambda t: t.id)

    succeeded = [t for t in ordered if t.status == TaskStatus.SUCCEEDED]
    failed = [t for t in ordered if t.status == TaskStatus.FAILED]
    unfinished = len(ordered) - len(succeeded) - len(failed)

    durations = [t.duration for t in ordered if t.is_terminal and t.duration is not None]
    total_duration = float(sum(durations))
    p50 = p95 = 0.0
    if durations:
        p50, p95 = (float(v) for v in np.percentile(np.array(durations), [50, 95]))

    starts = [t.start_time for t in ordered if t.start_time is not None]
    ends = [t.end_time for t in ordered if t.start_time is not None and t.end_time is not None]
    wall_time = (max(ends) - min(starts)).total_seconds() if starts and ends else 0.0

    per_worker: dict[str, WorkerStats] = {}
    for worker_id in sorted({t.assigned_worker for t in ordered if t.assigned_worker}):
        worker_tasks = [t for t in ordered if t.assigned_worker == worker_id]
        busy = float(sum(t.duration or 0.0 for t in worker_tasks if t.is_terminal))
        per_worker[worker_id] = WorkerStats(
            worker_id=worker_id,
            assigned=len(worker_tasks),
            succeeded=sum(1 for t in worker_tasks if t.status == TaskStatus.SUCCEEDED),
            failed=sum(1 for t in worker_tasks if t.status == TaskStatus.FAILED),
            busy_time=busy,
            mean_concurrency=busy / wall_time if wall_time > 0 else 0.0,
        )

    failures = tuple(
        FailureRecord(
            task_id=t.id,
            kind=t.error.kind if t.error else "UnknownError",
            message=t.error.message if t.error else "failed without error detail",
            exit_code=t.error.exit_code if t.error else None,
        )
        for t in failed
    )

    return Summary(
        total=len(ordered),
        succeeded=len(succeeded),
        failed=len(failed),
        unfinished=unfinished,
        total_duration=total_duration,
        wall_time=wall_time,
        duration_p50=p50,
        duration_p95=p95,
        per_worker=per_worker,
        failures=failures,
    )
