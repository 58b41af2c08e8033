"""Dispatch engine: the scheduling loop driving concurrent task execution."""

import logging
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Callable, Mapping, Optional

from dispatcher.config import DispatcherConfig
from dispatcher.errors import NoWorkerAvailableError
from dispatcher.executor.executor import Executor, TaskResult
from dispatcher.executor.transport import Transport, build_transport
from dispatcher.metrics.aggregator import Summary, summarize
from dispatcher.models.plan import ProcessingPlan
from dispatcher.models.task import Task
from dispatcher.models.worker import Worker, WorkerKind
from dispatcher.pool.discovery import discover_workers
from dispatcher.pool.queue import TaskQueue
from dispatcher.pool.registry import WorkerRegistry
from dispatcher.schedulers.base import Assignment
from dispatcher.schedulers.scheduler import Scheduler, build_policy

logger = logging.getLogger(__name__)

# Shortest wait for completions while work is in flight
_MIN_WAIT = 0.01


class DispatchEngine:
    """Drives scheduling rounds until every task is terminal.

    Scheduling runs on the calling thread and never blocks on a task; task
    executions and remote probes run on a thread pool and are observed
    between rounds. Rounds with nothing in flight and nothing assigned count
    toward starvation detection.
    """

    def __init__(
        self,
        config: DispatcherConfig,
        registry: WorkerRegistry,
        queue: TaskQueue,
        scheduler: Scheduler,
        executor: Executor,
        transports: Mapping[str, Transport],
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.registry = registry
        self.queue = queue
        self.scheduler = scheduler
        self.executor = executor
        self.transports = transports
        self._clock = clock
        self.plan = ProcessingPlan(policy=scheduler.policy.name, tasks=queue.tasks)

        self._inflight: dict[Future, Task] = {}
        self._probes: dict[Future, str] = {}
        self._last_probe: Optional[float] = None

    @classmethod
    def from_config(
        cls,
        config: DispatcherConfig,
        tasks: list[Task],
        transports: Optional[Mapping[str, Transport]] = None,
    ) -> "DispatchEngine":
        """Wire registry, queue, scheduler and executor from a config."""
        transports = dict(transports or {})

        def transport_for(worker: Worker) -> Transport:
            return transports.setdefault(worker.id, build_transport(worker, config.remote))

        def probe(worker: Worker) -> bool:
            return transport_for(worker).probe(config.remote.probe_timeout)

        registry = WorkerRegistry(heartbeat_timeout=config.heartbeat_timeout)
        for worker in discover_workers(config, probe=probe):
            transport_for(worker)
            registry.register(worker)
            if worker.is_available:
                registry.heartbeat(worker.id)

        queue = TaskQueue()
        for task in tasks:
            queue.enqueue(task)

        scheduler = Scheduler(queue, registry, build_policy(config.policy, registry))
        executor = Executor(config, registry, transports)
        return cls(config, registry, queue, scheduler, executor, transports)

    # ── Main loop ─────────────────────────────────────────────────────

    def run(self) -> Summary:
        """Schedule and execute every task; returns the run summary."""
        self.queue.validate_dependencies()
        workers = self.registry.snapshot()
        logger.info(
            "Dispatching %d task(s) to %d worker(s) with policy %s",
            len(self.queue), len(workers), self.plan.policy,
        )

        pool_size = max(1, sum(w.capacity.max_concurrent for w in workers) + len(workers))
        idle_rounds = 0
        with ThreadPoolExecutor(max_workers=pool_size, thread_name_prefix="dispatch") as pool:
            while len(self.queue) or self._inflight:
                self._refresh_liveness(pool)

                assignments = self.scheduler.schedule_round()
                for assignment in assignments:
                    self._launch(pool, assignment)

                finished = self._collect()
                with self.scheduler.lock:
                    blocked = self.queue.fail_blocked()
                    waiting = self.queue.waiting_for_retry(self._clock())

                if assignments or finished or blocked or self._inflight or self._probes:
                    idle_rounds = 0
                    continue
                if waiting:
                    idle_rounds = 0
                    time.sleep(max(self.config.round_interval, _MIN_WAIT))
                    continue

                idle_rounds += 1
                if idle_rounds >= self.config.starvation_rounds:
                    self._starve(idle_rounds)
                    break
                time.sleep(self.config.round_interval)

        summary = summarize(self.queue.tasks)
        logger.info(
            "Run finished after %d round(s): %d succeeded, %d failed",
            self.scheduler.rounds, summary.succeeded, summary.failed,
        )
        return summary

    def cancel(self, task_id: str) -> bool:
        """Cancel a task that is pending, assigned or running.

        Returns False if the task already reached a terminal state, or sits
        between a failed attempt and its retry.
        """
        with self.scheduler.lock:
            task = self.queue.get(task_id)
            if task.is_terminal:
                return False
            if self.queue.cancel(task_id):
                return True
            return self.executor.cancel(task)

    # ── Internals ─────────────────────────────────────────────────────

    def _launch(self, pool: ThreadPoolExecutor, assignment: Assignment) -> None:
        task = self.queue.get(assignment.task_id)
        worker = self.registry.get(assignment.worker_id)
        self.plan.record(worker.id, task.id)
        future = pool.submit(self.executor.execute, task, worker)
        self._inflight[future] = task

    def _collect(self) -> list[TaskResult]:
        """Wait briefly for executions or probes to finish and apply their results."""
        pending = list(self._inflight) + list(self._probes)
        if not pending:
            return []

        done, _ = wait(
            pending,
            timeout=max(self.config.round_interval, _MIN_WAIT),
            return_when=FIRST_COMPLETED,
        )
        results: list[TaskResult] = []
        for future in done:
            if future in self._probes:
                self._apply_probe(self._probes.pop(future), future.result())
                continue
            self._inflight.pop(future)
            result = future.result()
            self._apply_result(result)
            results.append(result)
        return results

    def _apply_result(self, result: TaskResult) -> None:
        task = self.queue.get(result.task_id)
        worker = self.registry.get(result.worker_id)
        if result.error is not None and result.error.kind == "TransportError":
            self.registry.mark_unavailable(worker.id)
        elif worker.kind == WorkerKind.REMOTE:
            self.registry.heartbeat(worker.id)
        if result.retrying:
            with self.scheduler.lock:
                self.queue.requeue(task)

    def _apply_probe(self, worker_id: str, reachable: bool) -> None:
        if reachable:
            self.registry.heartbeat(worker_id)
        else:
            self.registry.mark_unavailable(worker_id)

    def _refresh_liveness(self, pool: ThreadPoolExecutor) -> None:
        """Heartbeat local workers, probe remote ones periodically, expire the silent."""
        now = self._clock()
        workers = self.registry.snapshot()
        for worker in workers:
            if worker.kind == WorkerKind.LOCAL:
                self.registry.heartbeat(worker.id, now)

        due = self._last_probe is None or now - self._last_probe >= self.config.heartbeat_interval
        if due:
            self._last_probe = now
            probing = set(self._probes.values())
            for worker in workers:
                if worker.kind == WorkerKind.REMOTE and worker.id not in probing:
                    transport = self.transports[worker.id]
                    future = pool.submit(transport.probe, self.config.remote.probe_timeout)
                    self._probes[future] = worker.id

        self.registry.expire_stale(now)

    def _starve(self, rounds: int) -> None:
        """Give up on tasks no worker could take; their dependents become blocked."""
        error = NoWorkerAvailableError(f"no worker could take the task after {rounds} idle rounds")
        with self.scheduler.lock:
            starved = self.queue.fail_ready(error)
            self.queue.fail_blocked()
            starved += self.queue.fail_remaining(error)
        logger.error(
            "No worker available for %d task(s): %s",
            len(starved), ", ".join(t.id for t in starved),
        )
