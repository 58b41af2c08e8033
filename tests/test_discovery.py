"""
Tests for worker discovery across processing modes.
"""

from dispatcher.config import DispatcherConfig, ProcessingMode, WorkerSpec
from dispatcher.models.worker import WorkerAvailability, WorkerKind
from dispatcher.pool.discovery import LOCALHOST_ID, discover_workers


def _config(mode: ProcessingMode, **kwargs) -> DispatcherConfig:
    workers = kwargs.pop("workers", [
        WorkerSpec(id="box", max_concurrent=3),
        WorkerSpec(id="far-1", kind=WorkerKind.REMOTE, address="far-1.example"),
        WorkerSpec(id="far-2", kind=WorkerKind.REMOTE, address="far-2.example"),
    ])
    return DispatcherConfig(mode=mode, workers=workers, **kwargs)


class TestDiscoverWorkers:

    def test_local_mode(self):
        workers = discover_workers(_config(ProcessingMode.LOCAL))
        assert [w.id for w in workers] == ["box"]
        assert workers[0].availability == WorkerAvailability.AVAILABLE
        assert workers[0].capacity.max_concurrent == 3

    def test_implicit_localhost(self):
        workers = discover_workers(_config(ProcessingMode.LOCAL, workers=[], local_capacity=6))
        assert [w.id for w in workers] == [LOCALHOST_ID]
        assert workers[0].capacity.max_concurrent == 6

    def test_remote_mode(self):
        workers = discover_workers(_config(ProcessingMode.REMOTE))
        assert [w.id for w in workers] == ["far-1", "far-2"]
        assert all(w.availability == WorkerAvailability.UNKNOWN for w in workers)
        assert workers[0].address == "far-1.example"

    def test_hybrid_mode(self):
        workers = discover_workers(_config(ProcessingMode.HYBRID))
        assert [w.id for w in workers] == ["box", "far-1", "far-2"]

    def test_auto_mode_keeps_reachable_remotes(self):
        workers = discover_workers(
            _config(ProcessingMode.AUTO),
            probe=lambda w: w.id == "far-2",
        )
        assert [w.id for w in workers] == ["box", "far-2"]
        assert workers[1].availability == WorkerAvailability.AVAILABLE

    def test_auto_mode_without_probe_is_local_only(self):
        workers = discover_workers(_config(ProcessingMode.AUTO))
        assert [w.id for w in workers] == ["box"]

    def test_max_workers(self):
        workers = discover_workers(_config(ProcessingMode.HYBRID, max_workers=2))
        assert [w.id for w in workers] == ["box", "far-1"]
