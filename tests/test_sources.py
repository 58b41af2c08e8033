"""
Tests for task sources: manifests and script directories.
"""

import shlex
import sys

import pytest

from dispatcher.errors import ConfigError, InvalidTaskError
from dispatcher.models.task import TaskKind
from dispatcher.sources import load_tasks


class TestLoadTasks:

    def test_yaml_manifest(self, tmp_path):
        manifest = tmp_path / "tasks.yaml"
        manifest.write_text(
            "tasks:\n"
            "  - id: build\n"
            "    command: make build\n"
            "    estimated_duration: 120\n"
            "    requirement: {cpu: 2, memory_mb: 1024}\n"
            "  - id: upload\n"
            "    kind: network\n"
            "    command: ./upload.sh\n"
            "    priority: 8\n"
            "    dependencies: [build]\n",
            encoding="utf-8",
        )
        tasks = load_tasks(manifest)
        assert [t.id for t in tasks] == ["build", "upload"]
        assert tasks[0].requirement.memory_mb == 1024
        assert tasks[1].kind == TaskKind.NETWORK
        assert tasks[1].dependencies == ["build"]

    def test_json_manifest_as_list(self, tmp_path):
        manifest = tmp_path / "tasks.json"
        manifest.write_text('[{"id": "a", "command": "true"}]', encoding="utf-8")
        assert [t.id for t in load_tasks(manifest)] == ["a"]

    def test_invalid_record(self, tmp_path):
        manifest = tmp_path / "tasks.yaml"
        manifest.write_text("tasks:\n  - id: a\n", encoding="utf-8")
        with pytest.raises(InvalidTaskError, match="#0"):
            load_tasks(manifest)

    def test_missing_manifest(self, tmp_path):
        with pytest.raises(ConfigError):
            load_tasks(tmp_path / "missing.yaml")

    def test_directory_scan(self, tmp_path):
        (tmp_path / "b_cleanup.sh").write_text("echo cleanup\n")
        (tmp_path / "a_report.py").write_text("print('report')\n")
        (tmp_path / "c_inventory.ps1").write_text("Get-Process\n")
        (tmp_path / "notes.txt").write_text("ignored\n")
        (tmp_path / "sub.py").mkdir()

        tasks = load_tasks(tmp_path)

        assert [t.id for t in tasks] == ["a_report", "b_cleanup", "c_inventory"]
        assert shlex.split(tasks[0].command)[0] == sys.executable
        assert tasks[1].command.startswith("bash ")
        assert tasks[2].command.startswith("pwsh -NoProfile -File ")
        assert all(t.kind == TaskKind.COMPUTATION for t in tasks)
