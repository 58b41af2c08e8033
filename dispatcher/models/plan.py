"""Processing plan: which worker ran which task under which policy."""

from dataclasses import dataclass, field

from dispatcher.models.task import Task


@dataclass
class ProcessingPlan:
    """Built once per run; assignments are appended as rounds assign tasks."""
    policy: str
    tasks: list[Task]
    assignments: dict[str, list[str]] = field(default_factory=dict)

    def record(self, worker_id: str, task_id: str) -> None:
        self.assignments.setdefault(worker_id, []).append(task_id)

