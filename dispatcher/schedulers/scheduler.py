"""Scheduler: pairs ready tasks with workers under the configured policy."""

import logging
import threading
from typing import Optional

from dispatcher.config import SchedulingPolicy
from dispatcher.models.task import Task
from dispatcher.models.worker import Worker
from dispatcher.pool.queue import TaskQueue
from dispatcher.pool.registry import WorkerRegistry
from dispatcher.schedulers.base import Assignment, SelectionPolicy
from dispatcher.schedulers.least_loaded import LeastLoadedPolicy
from dispatcher.schedulers.resource_fit import ResourceFitPolicy
from dispatcher.schedulers.round_robin import RoundRobinPolicy

logger = logging.getLogger(__name__)


def build_policy(policy: SchedulingPolicy | str, registry: WorkerRegistry) -> SelectionPolicy:
    """Factory for selection policies by configured name."""
    match SchedulingPolicy(policy):
        case SchedulingPolicy.ROUND_ROBIN:
            return RoundRobinPolicy(position=registry.position)
        case SchedulingPolicy.LEAST_LOADED:
            return LeastLoadedPolicy()
        case SchedulingPolicy.RESOURCE_FIT:
            return ResourceFitPolicy()


class Scheduler:
    """Runs scheduling rounds over a queue and a registry.

    A round reserves capacity and marks the task assigned as one step under a
    lock, so a worker can never be booked past its capacity even if rounds are
    triggered from more than one thread.
    """

    def __init__(self, queue: TaskQueue, registry: WorkerRegistry, policy: SelectionPolicy):
        self.queue = queue
        self.registry = registry
        self.policy = policy
        self.rounds = 0
        self.lock = threading.Lock()

    def schedule_round(self, now: Optional[float] = None) -> list[Assignment]:
        """Assign every ready task that the policy can place right now."""
        with self.lock:
            self.rounds += 1
            assignments: list[Assignment] = []

            for task in self.queue.next_ready(now):
                worker = self.policy.select_worker(task, self.candidates(task))
                if worker is None:
                    logger.debug("Round %d: no worker for %s", self.rounds, task.id)
                    continue

                self.registry.reserve(worker.id, resources=task.requirement)
                task.mark_assigned(worker.id)
                self.queue.mark_assigned(task.id)
                assignments.append(Assignment(
                    task_id=task.id,
                    worker_id=worker.id,
                    round_number=self.rounds,
                ))
                logger.debug("Round %d: %s -> %s", self.rounds, task.id, worker.id)

            return assignments

    def candidates(self, task: Task) -> list[Worker]:
        """Available workers declaring the task's kind with a free slot."""
        return [
            w for w in self.registry.list_available(task.kind)
            if w.free_slots > 0
        ]
