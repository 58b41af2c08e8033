"""Worker-pool task dispatcher: schedule commands onto local and remote workers."""

from dispatcher.config import DispatcherConfig, ProcessingMode, SchedulingPolicy, load_config
from dispatcher.engine import DispatchEngine
from dispatcher.metrics.aggregator import Summary, summarize
from dispatcher.models.task import Task, TaskKind, TaskStatus
from dispatcher.models.worker import Worker, WorkerKind

__version__ = "0.1.0"

__all__ = [
    "DispatcherConfig", "ProcessingMode", "SchedulingPolicy", "load_config",
    "DispatchEngine", "Summary", "summarize",
    "Task", "TaskKind", "TaskStatus", "Worker", "WorkerKind",
]
