"""Task model: one schedulable unit of work wrapping a command."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from dispatcher.errors import InvalidTransitionError, TaskFailure


class TaskKind(str, Enum):
    """Task categories; workers declare which ones they can run."""
    COMPUTATION = "computation"
    IO = "io"
    NETWORK = "network"


class TaskStatus(str, Enum):
    """Lifecycle states: PENDING → ASSIGNED → RUNNING → SUCCEEDED | FAILED"""
    PENDING = "pending"
    ASSIGNED = "assigned"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.SUCCEEDED, TaskStatus.FAILED)


class ResourceRequirement(BaseModel):
    """Resources a task expects to consume while running."""

    cpu: float = Field(default=1.0, description="CPU units")
    memory_mb: float = Field(default=0.0)
    disk_mb: float = Field(default=0.0)

    @property
    def is_valid(self) -> bool:
        return self.cpu > 0 and self.memory_mb >= 0 and self.disk_mb >= 0


class TaskError(BaseModel):
    """Error detail recorded on a failed task."""

    kind: str = Field(description="Exception class name, e.g. TaskTimeoutError")
    message: str
    exit_code: Optional[int] = None
    output: str = Field(default="", description="Captured stderr/stdout, if any")

    @classmethod
    def from_exception(cls, error: Exception) -> "TaskError":
        if isinstance(error, TaskFailure):
            return cls(
                kind=type(error).__name__,
                message=str(error),
                exit_code=error.exit_code,
                output=error.output,
            )
        return cls(kind=type(error).__name__, message=str(error))


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Task(BaseModel):
    """A command to run on some worker, with its requirements and outcome."""

    id: str = Field(min_length=1, description="Unique task identifier")
    kind: TaskKind = Field(default=TaskKind.COMPUTATION)
    command: str = Field(min_length=1, description="Command line, split with shell rules")
    requirement: ResourceRequirement = Field(default_factory=ResourceRequirement)
    estimated_duration: Optional[float] = Field(default=None, description="Expected seconds")
    priority: int = Field(default=5, ge=1, le=10, description="Scheduling priority (1=low, 10=high)")
    dependencies: list[str] = Field(default_factory=list, description="Task IDs that must succeed first")
    status: TaskStatus = Field(default=TaskStatus.PENDING)
    assigned_worker: Optional[str] = Field(default=None)
    start_time: Optional[datetime] = Field(default=None)
    end_time: Optional[datetime] = Field(default=None)
    attempts: int = Field(default=0, ge=0, description="Executions started so far")
    not_before: float = Field(default=0.0, description="Monotonic time before which a retry may not start")
    result: Optional[str] = Field(default=None, description="Captured stdout on success")
    error: Optional[TaskError] = Field(default=None)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def duration(self) -> Optional[float]:
        """Seconds between start and end, once both are known."""
        if self.start_time is not None and self.end_time is not None:
            return (self.end_time - self.start_time).total_seconds()
        return None

    # ── Transitions ───────────────────────────────────────────────────

    def _advance(self, target: TaskStatus, *sources: TaskStatus) -> None:
        if self.status.is_terminal:
            raise InvalidTransitionError(
                f"task {self.id} is {self.status.value}; cannot move to {target.value}"
            )
        if self.status not in sources:
            raise InvalidTransitionError(
                f"task {self.id} cannot move from {self.status.value} to {target.value}"
            )
        self.status = target

    def mark_assigned(self, worker_id: str) -> None:
        self._advance(TaskStatus.ASSIGNED, TaskStatus.PENDING)
        self.assigned_worker = worker_id

    def mark_running(self) -> None:
        self._advance(TaskStatus.RUNNING, TaskStatus.ASSIGNED)
        self.attempts += 1
        self.start_time = _now()
        self.end_time = None

    def succeed(self, output: str) -> None:
        self._advance(TaskStatus.SUCCEEDED, TaskStatus.RUNNING)
        self.end_time = _now()
        self.result = output
        self.error = None

    def fail(self, error: Exception) -> None:
        """Record a terminal failure. Allowed from any non-terminal state."""
        self._advance(
            TaskStatus.FAILED, TaskStatus.PENDING, TaskStatus.ASSIGNED, TaskStatus.RUNNING,
        )
        self.end_time = _now()
        self.error = TaskError.from_exception(error)

    def reset_for_retry(self, error: Exception, not_before: float = 0.0) -> None:
        """Send a running task back to PENDING for another attempt."""
        if self.status != TaskStatus.RUNNING:
            raise InvalidTransitionError(
                f"task {self.id} can only be retried while running, not {self.status.value}"
            )
        self.status = TaskStatus.PENDING
        self.assigned_worker = None
        self.end_time = _now()
        self.error = TaskError.from_exception(error)
        self.not_before = not_before

    def __repr__(self) -> str:
        return (
            f"Task(id={self.id!r}, kind={self.kind.value}, priority={self.priority}, "
            f"status={self.status.value})"
        )
