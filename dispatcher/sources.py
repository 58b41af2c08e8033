"""Task source: loads task records from a manifest or a script directory."""

import logging
import shlex
import sys
from pathlib import Path

import yaml
from pydantic import ValidationError

from dispatcher.errors import ConfigError, InvalidTaskError
from dispatcher.models.task import Task, TaskKind

logger = logging.getLogger(__name__)

# Interpreter prefix per script suffix
SCRIPT_RUNNERS: dict[str, list[str]] = {
    ".sh": ["bash"],
    ".py": [sys.executable],
    ".ps1": ["pwsh", "-NoProfile", "-File"],
}


def load_tasks(path: str | Path) -> list[Task]:
    """Tasks from a YAML/JSON manifest file, or from scripts in a directory."""
    path = Path(path)
    if path.is_dir():
        return scan_directory(path)
    return load_manifest(path)


def load_manifest(path: Path) -> list[Task]:
    """Read ``tasks: [...]`` records (YAML is a superset of JSON)."""
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as error:
        raise ConfigError(f"cannot read task manifest {path}: {error}") from error
    except yaml.YAMLError as error:
        raise ConfigError(f"task manifest {path} is not valid YAML: {error}") from error

    records = raw.get("tasks", []) if isinstance(raw, dict) else raw
    if not isinstance(records, list):
        raise ConfigError(f"task manifest {path} must hold a list of tasks")

    tasks: list[Task] = []
    for index, record in enumerate(records):
        try:
            tasks.append(Task.model_validate(record))
        except ValidationError as error:
            raise InvalidTaskError(f"task #{index} in {path} is invalid:\n{error}") from error
    logger.info("Loaded %d task(s) from %s", len(tasks), path)
    return tasks


def scan_directory(directory: Path, kind: TaskKind = TaskKind.COMPUTATION) -> list[Task]:
    """One task per runnable script, named after the file stem."""
    tasks: list[Task] = []
    for script in sorted(directory.iterdir()):
        runner = SCRIPT_RUNNERS.get(script.suffix.lower())
        if runner is None or not script.is_file():
            continue
        command = " ".join(shlex.quote(part) for part in [*runner, str(script)])
        tasks.append(Task(id=script.stem, kind=kind, command=command))
    logger.info("Found %d script(s) in %s", len(tasks), directory)
    return tasks
