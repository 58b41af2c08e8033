"""
Tests for the Dispatch Engine.

These tests verify:
    1. A run executes every task and summarizes all of them
    2. Failed dependencies block dependents (not reported as starvation)
    3. Starvation terminates the loop when no worker can take the work
    4. Worker load never exceeds capacity during a run
    5. Remote workers are probed and their transport failures handled
    6. Cancellation of pending and running tasks
    7. Errors raised during one execution never abort the run
"""

import os
import threading
import time

import pytest

from dispatcher.config import DispatcherConfig, ProcessingMode, SchedulingPolicy, WorkerSpec
from dispatcher.engine import DispatchEngine
from dispatcher.errors import TransportError
from dispatcher.executor.transport import CommandResult, LocalTransport, Transport
from dispatcher.models.task import Task, TaskKind, TaskStatus
from dispatcher.models.worker import WorkerKind


class FakeRemote(Transport):
    """Remote channel stand-in: reachable or not, commands always succeed."""

    def __init__(self, reachable: bool = True, fail_submit: bool = False):
        self.reachable = reachable
        self.fail_submit = fail_submit
        self.submitted: list[str] = []

    def submit(self, command, timeout, cancelled=None):
        self.submitted.append(command)
        if self.fail_submit:
            raise TransportError("connection reset")
        return CommandResult(exit_code=0, stdout="remote ok")

    def probe(self, timeout):
        return self.reachable


class LoadWatchingTransport(LocalTransport):
    """Local transport that records the worker's load while each command runs."""

    def __init__(self, engine_ref: dict, worker_id: str):
        super().__init__(poll_interval=0.01)
        self.engine_ref = engine_ref
        self.worker_id = worker_id
        self.loads: list[int] = []
        self._lock = threading.Lock()

    def submit(self, command, timeout, cancelled=None):
        worker = self.engine_ref["engine"].registry.get(self.worker_id)
        with self._lock:
            self.loads.append(worker.current_load)
        return super().submit(command, timeout, cancelled)


def _config(**overrides) -> DispatcherConfig:
    values = dict(
        mode=ProcessingMode.LOCAL,
        policy=SchedulingPolicy.LEAST_LOADED,
        workers=[WorkerSpec(id="local", max_concurrent=2)],
        round_interval=0.01,
        starvation_rounds=3,
        default_estimated_duration=10.0,
        retry_backoff=0.0,
    )
    values.update(overrides)
    return DispatcherConfig(**values)


class TestDispatchEngine:
    """End-to-end runs with real local child processes."""

    def test_all_tasks_succeed(self, py):
        tasks = [Task(id=f"t{i}", command=py(f"print({i})")) for i in range(4)]
        engine = DispatchEngine.from_config(_config(), tasks)

        summary = engine.run()

        assert summary.total == 4
        assert summary.succeeded == 4
        assert summary.exit_code == 0
        assert {t.result.strip() for t in engine.queue.tasks} == {"0", "1", "2", "3"}
        assert sum(len(ids) for ids in engine.plan.assignments.values()) == 4
        assert engine.plan.policy == "least_loaded"
        assert engine.registry.get("local").current_load == 0

    def test_dependency_order_respected(self, py, tmp_path):
        marker = tmp_path / "a.done"
        tasks = [
            Task(id="b", command=py(f"import os, sys; sys.exit(0 if os.path.exists({str(marker)!r}) else 9)"),
                 dependencies=["a"], priority=10),
            Task(id="a", command=py(f"open({str(marker)!r}, 'w').close()"), priority=1),
        ]
        summary = DispatchEngine.from_config(_config(), tasks).run()
        assert summary.succeeded == 2

    def test_failed_dependency_blocks_dependent(self, py):
        tasks = [
            Task(id="a", command=py("import sys; sys.exit(1)")),
            Task(id="b", command=py("print('never')"), dependencies=["a"]),
        ]
        engine = DispatchEngine.from_config(_config(), tasks)
        summary = engine.run()

        a, b = engine.queue.get("a"), engine.queue.get("b")
        assert a.error.kind == "ExecutionError"
        assert b.status == TaskStatus.FAILED
        assert b.error.kind == "DependencyFailedError"
        assert b.assigned_worker is None
        assert summary.exit_code == 1
        assert [f.task_id for f in summary.failures] == ["a", "b"]

    def test_starvation_without_workers(self):
        config = _config(
            mode=ProcessingMode.REMOTE,
            workers=[WorkerSpec(id="far", kind=WorkerKind.REMOTE, address="far.example")],
            heartbeat_interval=3600,
        )
        tasks = [
            Task(id="a", command="true"),
            Task(id="b", command="true"),
            Task(id="c", command="true", dependencies=["a"]),
        ]
        engine = DispatchEngine.from_config(config, tasks, transports={"far": FakeRemote(reachable=False)})

        summary = engine.run()

        assert summary.failed == 3
        kinds = {t.id: t.error.kind for t in engine.queue.tasks}
        assert kinds == {
            "a": "NoWorkerAvailableError",
            "b": "NoWorkerAvailableError",
            "c": "DependencyFailedError",
        }
        assert 3 <= engine.scheduler.rounds < 50

    def test_starvation_when_no_capable_worker(self):
        config = _config(workers=[WorkerSpec(id="io", capabilities=[TaskKind.IO])])
        engine = DispatchEngine.from_config(config, [Task(id="n", kind=TaskKind.NETWORK, command="true")])
        summary = engine.run()
        assert summary.failures[0].kind == "NoWorkerAvailableError"

    def test_load_never_exceeds_capacity(self, py):
        ref: dict = {}
        transport = LoadWatchingTransport(ref, "local")
        tasks = [Task(id=f"t{i}", command=py("import time; time.sleep(0.05)")) for i in range(6)]
        engine = DispatchEngine.from_config(_config(), tasks, transports={"local": transport})
        ref["engine"] = engine

        summary = engine.run()

        assert summary.succeeded == 6
        assert len(transport.loads) == 6
        assert max(transport.loads) <= 2

    def test_hybrid_runs_on_remote_worker(self):
        remote = FakeRemote()
        config = _config(
            mode=ProcessingMode.HYBRID,
            policy=SchedulingPolicy.ROUND_ROBIN,
            workers=[
                WorkerSpec(id="local", max_concurrent=1, capabilities=[TaskKind.IO]),
                WorkerSpec(id="far", kind=WorkerKind.REMOTE, address="far.example",
                           capabilities=[TaskKind.NETWORK]),
            ],
        )
        tasks = [Task(id="fetch", kind=TaskKind.NETWORK, command="curl example.org")]
        engine = DispatchEngine.from_config(config, tasks, transports={"far": remote})

        summary = engine.run()

        assert summary.succeeded == 1
        assert remote.submitted == ["curl example.org"]
        assert engine.plan.assignments == {"far": ["fetch"]}

    def test_transport_failure_marks_worker_unavailable(self):
        remote = FakeRemote(fail_submit=True)
        config = _config(
            mode=ProcessingMode.REMOTE,
            workers=[WorkerSpec(id="far", kind=WorkerKind.REMOTE, address="far.example")],
            heartbeat_interval=3600,
        )
        engine = DispatchEngine.from_config(config, [Task(id="t", command="true")], transports={"far": remote})

        summary = engine.run()

        assert summary.failures[0].kind == "TransportError"
        assert not engine.registry.get("far").is_available

    def test_cancel_pending_task(self, py):
        tasks = [Task(id="keep", command=py("pass")), Task(id="drop", command=py("pass"))]
        engine = DispatchEngine.from_config(_config(), tasks)

        assert engine.cancel("drop")
        summary = engine.run()

        assert summary.succeeded == 1
        assert engine.queue.get("drop").error.kind == "TaskCancelledError"
        assert not engine.cancel("drop")

    def test_cancel_running_task(self, py):
        tasks = [Task(id="sleeper", command=py("import time; time.sleep(60)"), estimated_duration=30)]
        engine = DispatchEngine.from_config(_config(), tasks)
        sleeper = engine.queue.get("sleeper")
        outcome: dict = {}

        def cancel_once_running():
            deadline = time.monotonic() + 10
            while sleeper.status != TaskStatus.RUNNING and time.monotonic() < deadline:
                time.sleep(0.01)
            outcome["cancelled"] = engine.cancel("sleeper")

        canceller = threading.Thread(target=cancel_once_running)
        started = time.monotonic()
        canceller.start()
        summary = engine.run()
        elapsed = time.monotonic() - started
        canceller.join()

        assert outcome["cancelled"]
        assert elapsed < 10
        assert summary.failed == 1
        assert sleeper.error.kind == "TaskCancelledError"
        assert sleeper.attempts == 1
        assert engine.registry.get("local").current_load == 0

    def test_unstartable_command_does_not_abort_run(self, py):
        tasks = [Task(id="bad", command="echo a\x00b"), Task(id="good", command=py("print('ok')"))]
        engine = DispatchEngine.from_config(_config(), tasks)

        summary = engine.run()

        assert summary.total == 2
        assert summary.succeeded == 1
        assert engine.queue.get("bad").error.kind == "ExecutionError"
        assert engine.queue.get("good").status == TaskStatus.SUCCEEDED
        assert engine.registry.get("local").current_load == 0

    def test_crashing_transport_does_not_abort_run(self, py):
        class CrashingTransport(Transport):
            def submit(self, command, timeout, cancelled=None):
                raise RuntimeError("driver bug")

        config = _config(
            mode=ProcessingMode.HYBRID,
            policy=SchedulingPolicy.RESOURCE_FIT,
            workers=[
                WorkerSpec(id="local", capabilities=[TaskKind.IO]),
                WorkerSpec(id="far", kind=WorkerKind.REMOTE, address="far.example",
                           capabilities=[TaskKind.NETWORK]),
            ],
            heartbeat_interval=3600,
        )
        tasks = [
            Task(id="fetch", kind=TaskKind.NETWORK, command="curl example.org"),
            Task(id="copy", kind=TaskKind.IO, command=py("print('copied')")),
        ]
        engine = DispatchEngine.from_config(config, tasks, transports={"far": CrashingTransport()})

        summary = engine.run()

        assert engine.queue.get("fetch").error.kind == "TransportError"
        assert engine.queue.get("copy").status == TaskStatus.SUCCEEDED
        assert summary.total == 2

    @pytest.mark.skipif(os.name != "posix", reason="process groups are POSIX-only")
    def test_timeout_reaches_grandchild_processes(self):
        config = _config(timeout_safety_factor=2.0)
        tasks = [Task(id="shell", command="sh -c 'sleep 20; echo done'", estimated_duration=0.25)]
        engine = DispatchEngine.from_config(config, tasks)

        started = time.monotonic()
        summary = engine.run()
        elapsed = time.monotonic() - started

        assert elapsed < 3.5
        assert summary.failures[0].kind == "TaskTimeoutError"
        assert engine.registry.get("local").current_load == 0

    def test_cancel_from_another_thread_during_run(self, py):
        tasks = [Task(id=f"t{i:02d}", command=py("pass")) for i in range(20)]
        engine = DispatchEngine.from_config(_config(), tasks)
        cancelled: list[str] = []

        def cancel_half():
            for i in range(10, 20):
                if engine.cancel(f"t{i:02d}"):
                    cancelled.append(f"t{i:02d}")

        canceller = threading.Thread(target=cancel_half)
        canceller.start()
        summary = engine.run()
        canceller.join()

        assert summary.total == 20
        assert summary.unfinished == 0
        for task in engine.queue.tasks:
            if task.id in cancelled:
                # a cancel can race with a command that is already exiting
                assert task.status == TaskStatus.SUCCEEDED or task.error.kind == "TaskCancelledError"
            else:
                assert task.status == TaskStatus.SUCCEEDED
        assert engine.registry.get("local").current_load == 0
