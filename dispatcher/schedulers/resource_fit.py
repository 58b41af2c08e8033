"""Resource-fit policy: only workers with enough free budget qualify."""

from typing import Optional

from dispatcher.models.task import Task
from dispatcher.models.worker import Worker
from dispatcher.schedulers.base import SelectionPolicy
from dispatcher.schedulers.least_loaded import least_loaded


class ResourceFitPolicy(SelectionPolicy):
    """Filters on free CPU/memory/disk, then picks the least loaded survivor.

    Returns None when nothing fits; the task stays pending for a later round.
    """

    @property
    def name(self) -> str:
        return "resource_fit"

    def select_worker(self, task: Task, candidates: list[Worker]) -> Optional[Worker]:
        fitting = [w for w in candidates if w.fits(task.requirement)]
        return least_loaded(fitting)
