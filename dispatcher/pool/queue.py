"""Task Queue: pending work, released in dependency and priority order."""

import logging
import time
from typing import Iterator, Optional

from dispatcher.errors import (
    DependencyFailedError,
    InvalidTaskError,
    TaskCancelledError,
    TaskFailure,
)
from dispatcher.models.task import Task, TaskStatus

logger = logging.getLogger(__name__)


class TaskQueue:
    """Holds every submitted task; the pending subset is the ready pool.

    Only PENDING tasks live in the pool. Ordering is priority descending,
    then insertion order, so a round over a fixed pool is deterministic.
    """

    def __init__(self):
        self._tasks: dict[str, Task] = {}
        self._sequence: dict[str, int] = {}
        self._pending: set[str] = set()

    def enqueue(self, task: Task) -> None:
        """Add a PENDING task."""
        if task.id in self._tasks:
            raise InvalidTaskError(f"task {task.id!r} is already queued")
        if task.status != TaskStatus.PENDING:
            raise InvalidTaskError(f"task {task.id!r} is {task.status.value}, expected pending")
        if not task.requirement.is_valid:
            raise InvalidTaskError(
                f"task {task.id!r} needs a positive cpu requirement and non-negative "
                f"memory/disk, got {task.requirement!r}"
            )
        if task.estimated_duration is not None and task.estimated_duration <= 0:
            raise InvalidTaskError(f"task {task.id!r} has a non-positive estimated duration")

        self._sequence[task.id] = len(self._sequence)
        self._tasks[task.id] = task
        self._pending.add(task.id)
        logger.debug("Enqueued %r", task)

    def next_ready(self, now: Optional[float] = None) -> Iterator[Task]:
        """Lazily yield pending tasks whose dependencies have all succeeded.

        Each call starts a fresh pass. Tasks waiting on a retry back-off are
        skipped until ``now`` reaches their gate.
        """
        now = time.monotonic() if now is None else now
        for task_id in self._ordered(self._pending):
            task = self._tasks[task_id]
            if task_id not in self._pending or task.status != TaskStatus.PENDING:
                continue
            if task.not_before > now:
                continue
            if all(self._succeeded(dep) for dep in task.dependencies):
                yield task

    def mark_assigned(self, task_id: str) -> None:
        """Take a task out of the ready pool."""
        if task_id not in self._pending:
            raise InvalidTaskError(f"task {task_id!r} is not pending in the queue")
        self._pending.discard(task_id)

    def requeue(self, task: Task) -> None:
        """Put a task reset for retry back into the pool at its original position."""
        if task.id not in self._tasks:
            raise InvalidTaskError(f"task {task.id!r} was never enqueued")
        if task.status != TaskStatus.PENDING:
            raise InvalidTaskError(f"task {task.id!r} is {task.status.value}, expected pending")
        self._pending.add(task.id)

    def cancel(self, task_id: str) -> bool:
        """Cancel a task that has not been assigned yet."""
        if task_id not in self._pending:
            return False
        self._pending.discard(task_id)
        self._tasks[task_id].fail(TaskCancelledError(f"task {task_id} cancelled before start"))
        logger.info("Cancelled pending task %s", task_id)
        return True

    # ── Dependency bookkeeping ────────────────────────────────────────

    def validate_dependencies(self) -> None:
        """Reject unknown dependency ids and dependency cycles."""
        for task in self._tasks.values():
            missing = [d for d in task.dependencies if d not in self._tasks]
            if missing:
                raise InvalidTaskError(
                    f"task {task.id!r} depends on unknown task(s): {', '.join(missing)}"
                )

        # Kahn's algorithm: tasks left over sit on or behind a cycle
        remaining = {t.id: len(set(t.dependencies)) for t in self._tasks.values()}
        dependents: dict[str, list[str]] = {}
        for task in self._tasks.values():
            for dep in set(task.dependencies):
                dependents.setdefault(dep, []).append(task.id)

        frontier = [task_id for task_id, count in remaining.items() if count == 0]
        while frontier:
            task_id = frontier.pop()
            del remaining[task_id]
            for child in dependents.get(task_id, []):
                remaining[child] -= 1
                if remaining[child] == 0:
                    frontier.append(child)

        if remaining:
            raise InvalidTaskError(
                f"dependency cycle among tasks: {', '.join(self._ordered(remaining))}"
            )

    def fail_blocked(self) -> list[Task]:
        """Fail pending tasks that depend on a failed task, transitively."""
        blocked: list[Task] = []
        changed = True
        while changed:
            changed = False
            for task_id in self._ordered(self._pending):
                task = self._tasks[task_id]
                failed = [d for d in task.dependencies if self._failed(d)]
                if not failed:
                    continue
                self._pending.discard(task_id)
                task.fail(DependencyFailedError(
                    f"blocked by failed dependency: {', '.join(failed)}"
                ))
                blocked.append(task)
                changed = True
        for task in blocked:
            logger.warning("Task %s blocked: %s", task.id, task.error.message)
        return blocked

    def fail_ready(self, error: TaskFailure) -> list[Task]:
        """Fail every ready task with ``error``, ignoring retry back-off gates."""
        ready = list(self.next_ready(now=float("inf")))
        for task in ready:
            self._pending.discard(task.id)
            task.fail(error)
        return ready

    def waiting_for_retry(self, now: Optional[float] = None) -> bool:
        """True if some pending task is held back by a retry gate."""
        now = time.monotonic() if now is None else now
        return any(self._tasks[i].not_before > now for i in self._pending)

    def fail_remaining(self, error: TaskFailure) -> list[Task]:
        """Fail every task still in the pool with ``error``."""
        remaining = [self._tasks[i] for i in self._ordered(self._pending)]
        for task in remaining:
            task.fail(error)
        self._pending.clear()
        return remaining

    # ── Queries ───────────────────────────────────────────────────────

    @property
    def tasks(self) -> list[Task]:
        """All tasks ever enqueued, in insertion order."""
        return list(self._tasks.values())

    def pending(self) -> list[Task]:
        return [self._tasks[i] for i in self._ordered(self._pending)]

    def get(self, task_id: str) -> Task:
        try:
            return self._tasks[task_id]
        except KeyError:
            raise InvalidTaskError(f"unknown task {task_id!r}") from None

    def __len__(self) -> int:
        return len(self._pending)

    def _ordered(self, task_ids) -> list[str]:
        return sorted(task_ids, key=lambda i: (-self._tasks[i].priority, self._sequence[i]))

    def _succeeded(self, task_id: str) -> bool:
        task = self._tasks.get(task_id)
        return task is not None and task.status == TaskStatus.SUCCEEDED

    def _failed(self, task_id: str) -> bool:
        task = self._tasks.get(task_id)
        return task is not None and task.status == TaskStatus.FAILED
