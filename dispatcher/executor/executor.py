"""Executor: runs an assigned task on its worker and records the outcome."""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

from dispatcher.config import DispatcherConfig
from dispatcher.errors import (
    ExecutionError,
    TaskCancelledError,
    TaskFailure,
    TaskTimeoutError,
    TransportError,
)
from dispatcher.executor.transport import CommandResult, Transport
from dispatcher.models.task import Task, TaskError, TaskStatus
from dispatcher.models.worker import Worker, WorkerKind
from dispatcher.pool.registry import WorkerRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaskResult:
    """Outcome of one execution attempt."""
    task_id: str
    worker_id: str
    status: TaskStatus
    attempt: int
    duration: Optional[float] = None
    exit_code: Optional[int] = None
    error: Optional[TaskError] = None
    retrying: bool = False

    @property
    def succeeded(self) -> bool:
        return self.status == TaskStatus.SUCCEEDED


class Executor:
    """Runs tasks through the transport of their assigned worker.

    Local and remote execution share this code path; only the Transport
    differs. Whatever happens, the worker capacity reserved by the scheduler
    is released exactly once per execution.
    """

    def __init__(
        self,
        config: DispatcherConfig,
        registry: WorkerRegistry,
        transports: Mapping[str, Transport],
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.registry = registry
        self.transports = transports
        self._clock = clock
        self._cancel_events: dict[str, threading.Event] = {}
        self._lock = threading.Lock()

    def timeout_for(self, task: Task) -> float:
        return self.config.timeout_for(task.estimated_duration)

    def execute(self, task: Task, worker: Worker) -> TaskResult:
        """Run ``task`` on ``worker``; the task must already be ASSIGNED."""
        transport = self.transports[worker.id]
        timeout = self.timeout_for(task)
        cancel_event = self._cancel_event(task.id)
        result: Optional[CommandResult] = None
        retrying = False

        try:
            task.mark_running()
            logger.info(
                "Running %s on %s (attempt %d, timeout %.1fs)",
                task.id, worker.id, task.attempts, timeout,
            )
            try:
                if cancel_event.is_set():
                    raise TaskCancelledError(f"task {task.id} cancelled before start")
                result = transport.submit(task.command, timeout, cancelled=cancel_event.is_set)
                self._check(task, result, timeout)
            except TaskFailure as failure:
                retrying = self._record_failure(task, failure)
            except Exception as error:
                logger.exception("Unexpected error running %s on %s", task.id, worker.id)
                retrying = self._record_failure(task, _as_failure(error, worker))
            else:
                task.succeed(result.stdout)
                logger.info("Task %s succeeded on %s in %.2fs", task.id, worker.id, result.duration)
        finally:
            self.registry.release(worker.id, resources=task.requirement)
            with self._lock:
                self._cancel_events.pop(task.id, None)

        return TaskResult(
            task_id=task.id,
            worker_id=worker.id,
            status=task.status,
            attempt=task.attempts,
            duration=result.duration if result is not None else None,
            exit_code=result.exit_code if result is not None else None,
            error=task.error,
            retrying=retrying,
        )

    def cancel(self, task: Task) -> bool:
        """Ask an assigned or running task to stop.

        Returns False if the task is in any other state; nothing is recorded
        for it then.
        """
        with self._lock:
            if task.status not in (TaskStatus.ASSIGNED, TaskStatus.RUNNING):
                return False
            self._cancel_events.setdefault(task.id, threading.Event()).set()
        logger.info("Cancellation requested for %s", task.id)
        return True

    # ── Internals ─────────────────────────────────────────────────────

    def _cancel_event(self, task_id: str) -> threading.Event:
        with self._lock:
            return self._cancel_events.setdefault(task_id, threading.Event())

    def _check(self, task: Task, result: CommandResult, timeout: float) -> None:
        """Raise the failure matching a non-successful command result."""
        if result.cancelled:
            raise TaskCancelledError(
                f"task {task.id} cancelled while running",
                exit_code=result.exit_code,
                output=result.stderr,
            )
        if result.timed_out:
            raise TaskTimeoutError(
                f"task {task.id} timed out after {timeout:.1f}s",
                exit_code=result.exit_code,
                output=result.stderr or result.stdout,
            )
        if result.exit_code != 0:
            raise ExecutionError(
                f"task {task.id} exited with code {result.exit_code}",
                exit_code=result.exit_code,
                output=result.stderr or result.stdout,
            )

    def _record_failure(self, task: Task, failure: TaskFailure) -> bool:
        """Retry transient failures while attempts remain; otherwise fail the task."""
        if failure.retryable and task.attempts <= self.config.max_retries:
            delay = min(
                self.config.retry_backoff_max,
                self.config.retry_backoff * (2 ** max(task.attempts - 1, 0)),
            )
            task.reset_for_retry(failure, not_before=self._clock() + delay)
            logger.warning(
                "Task %s failed (%s); retry %d/%d in %.1fs",
                task.id, failure, task.attempts, self.config.max_retries, delay,
            )
            return True

        task.fail(failure)
        logger.warning("Task %s failed: %s", task.id, failure)
        return False


def _as_failure(error: Exception, worker: Worker) -> TaskFailure:
    """Wrap an exception a transport did not classify itself."""
    message = f"{type(error).__name__}: {error}"
    if worker.kind == WorkerKind.REMOTE:
        return TransportError(message)
    return ExecutionError(message)
