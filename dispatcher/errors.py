"""Error taxonomy for the dispatcher.

Registry, queue and configuration errors are programmer errors and propagate
to the caller. Execution-time errors are recorded on the Task and never abort
the scheduling loop.
"""

from typing import Optional


class DispatchError(Exception):
    """Base class for all dispatcher errors."""


# ── Programmer / configuration errors ─────────────────────────────────

class ConfigError(DispatchError):
    """Configuration file is missing, unreadable or invalid."""


class DuplicateWorkerError(DispatchError):
    """A worker with the same id is already registered."""


class UnknownWorkerError(DispatchError):
    """Operation referenced a worker id the registry does not know."""


class CapacityExceededError(DispatchError):
    """Reserving would push a worker's load past its declared capacity."""


class InvalidTaskError(DispatchError):
    """Task is malformed or not in a state the queue accepts."""


class InvalidTransitionError(DispatchError):
    """Task status change would move backwards or leave a terminal state."""


# ── Execution-time errors (recorded on the Task) ──────────────────────

class TaskFailure(DispatchError):
    """Base for failures that end up on a Task's error detail."""

    retryable = False

    def __init__(self, message: str, exit_code: Optional[int] = None, output: str = ""):
        super().__init__(message)
        self.exit_code = exit_code
        self.output = output


class TaskTimeoutError(TaskFailure, TimeoutError):
    """Command exceeded its hard timeout and was killed."""

    retryable = True


class ExecutionError(TaskFailure):
    """Command exited non-zero."""


class TransportError(TaskFailure):
    """Remote channel failed independently of the task itself."""

    retryable = True


class TaskCancelledError(TaskFailure):
    """Task was cancelled before or during execution."""


class DependencyFailedError(TaskFailure):
    """A dependency ended in failure, so the task can never run."""


class NoWorkerAvailableError(TaskFailure):
    """Starvation detection gave up on matching the task to a worker."""
