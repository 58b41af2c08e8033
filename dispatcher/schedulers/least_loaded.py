"""Least-loaded policy: lowest load/capacity ratio wins."""

from typing import Optional

from dispatcher.models.task import Task
from dispatcher.models.worker import Worker
from dispatcher.schedulers.base import SelectionPolicy


def least_loaded(candidates: list[Worker]) -> Optional[Worker]:
    """Worker with the lowest load ratio; ties go to the smallest id."""
    if not candidates:
        return None
    return min(candidates, key=lambda w: (w.load_ratio, w.id))


class LeastLoadedPolicy(SelectionPolicy):

    @property
    def name(self) -> str:
        return "least_loaded"

    def select_worker(self, task: Task, candidates: list[Worker]) -> Optional[Worker]:
        return least_loaded(candidates)
