from dispatcher.models.task import ResourceRequirement, Task, TaskError, TaskKind, TaskStatus
from dispatcher.models.worker import Worker, WorkerAvailability, WorkerCapacity, WorkerKind
from dispatcher.models.plan import ProcessingPlan

__all__ = [
    "ResourceRequirement", "Task", "TaskError", "TaskKind", "TaskStatus",
    "Worker", "WorkerAvailability", "WorkerCapacity", "WorkerKind",
    "ProcessingPlan",
]
