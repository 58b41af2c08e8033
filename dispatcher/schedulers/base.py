"""Selection policy: the contract every worker-selection strategy implements."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from dispatcher.models.task import Task
from dispatcher.models.worker import Worker


@dataclass(frozen=True)
class Assignment:
    """Immutable scheduling decision: run a task on a worker."""
    task_id: str
    worker_id: str
    round_number: int


class SelectionPolicy(ABC):
    """Picks one worker for a task out of pre-filtered candidates."""

    @abstractmethod
    def select_worker(self, task: Task, candidates: list[Worker]) -> Optional[Worker]:
        """Return the chosen worker, or None to leave the task pending."""
        ...

    @property
    def name(self) -> str:
        """Policy name as used in configuration and reports."""
        return self.__class__.__name__
