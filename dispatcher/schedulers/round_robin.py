"""Round-robin policy: cycles through workers regardless of load."""

from typing import Callable, Optional

from dispatcher.models.task import Task
from dispatcher.models.worker import Worker
from dispatcher.schedulers.base import SelectionPolicy


class RoundRobinPolicy(SelectionPolicy):
    """Hands tasks to workers in registration order, wrapping around.

    The cursor remembers the last worker chosen, so the next task goes to the
    first candidate registered after it.
    """

    def __init__(self, position: Callable[[str], int]):
        self._position = position
        self._last: Optional[int] = None

    @property
    def name(self) -> str:
        return "round_robin"

    def select_worker(self, task: Task, candidates: list[Worker]) -> Optional[Worker]:
        if not candidates:
            return None
        ordered = sorted(candidates, key=lambda w: self._position(w.id))
        chosen = ordered[0]
        if self._last is not None:
            for worker in ordered:
                if self._position(worker.id) > self._last:
                    chosen = worker
                    break
        self._last = self._position(chosen.id)
        return chosen
