"""Typed, immutable dispatcher configuration."""

import os
from enum import Enum
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from dispatcher.errors import ConfigError
from dispatcher.models.task import TaskKind
from dispatcher.models.worker import WorkerKind


class SchedulingPolicy(str, Enum):
    """Worker selection policies, chosen once per run."""
    ROUND_ROBIN = "round_robin"
    LEAST_LOADED = "least_loaded"
    RESOURCE_FIT = "resource_fit"


class ProcessingMode(str, Enum):
    """Which workers take part in a run."""
    LOCAL = "local"
    REMOTE = "remote"
    HYBRID = "hybrid"
    AUTO = "auto"


class WorkerSpec(BaseModel):
    """Declared worker, as written in the config file."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1, description="Unique worker identifier")
    kind: WorkerKind = Field(default=WorkerKind.LOCAL)
    address: Optional[str] = Field(default=None, description="Host name for remote workers")
    port: Optional[int] = Field(default=None, gt=0, le=65535)
    user: Optional[str] = Field(default=None)
    max_concurrent: int = Field(default=1, ge=1, description="Task slots")
    cpu: Optional[float] = Field(default=None, gt=0, description="CPU budget, None = unlimited")
    memory_mb: Optional[float] = Field(default=None, gt=0)
    disk_mb: Optional[float] = Field(default=None, gt=0)
    capabilities: list[TaskKind] = Field(default_factory=lambda: list(TaskKind))

    @model_validator(mode="after")
    def _remote_needs_address(self) -> "WorkerSpec":
        if self.kind == WorkerKind.REMOTE and not self.address:
            raise ValueError(f"remote worker {self.id!r} needs an address")
        return self


class RemoteChannelConfig(BaseModel):
    """Options for the SSH remote-execution channel."""

    model_config = ConfigDict(frozen=True)

    ssh_binary: str = Field(default="ssh")
    connect_timeout: int = Field(default=10, ge=1, description="Seconds to establish a session")
    probe_timeout: float = Field(default=15.0, gt=0)
    options: list[str] = Field(default_factory=list, description="Extra -o KEY=VALUE options")


class DispatcherConfig(BaseModel):
    """Everything a dispatch run needs, validated at startup."""

    model_config = ConfigDict(frozen=True)

    mode: ProcessingMode = Field(default=ProcessingMode.LOCAL)
    policy: SchedulingPolicy = Field(default=SchedulingPolicy.LEAST_LOADED)
    workers: list[WorkerSpec] = Field(default_factory=list)
    max_workers: Optional[int] = Field(default=None, ge=1, description="Cap on workers used")
    local_capacity: int = Field(
        default_factory=lambda: os.cpu_count() or 1, ge=1,
        description="Slots of the implicit localhost worker",
    )
    task_timeout: Optional[float] = Field(default=None, gt=0, description="Upper bound on any timeout")
    timeout_safety_factor: float = Field(default=2.0, ge=1.0)
    default_estimated_duration: float = Field(default=60.0, gt=0)
    max_retries: int = Field(default=0, ge=0)
    retry_backoff: float = Field(default=1.0, ge=0)
    retry_backoff_max: float = Field(default=30.0, ge=0)
    starvation_rounds: int = Field(default=5, ge=1)
    round_interval: float = Field(default=0.05, ge=0)
    heartbeat_timeout: float = Field(default=30.0, gt=0)
    heartbeat_interval: float = Field(default=10.0, gt=0)
    remote: RemoteChannelConfig = Field(default_factory=RemoteChannelConfig)

    @model_validator(mode="after")
    def _check_workers(self) -> "DispatcherConfig":
        ids = [w.id for w in self.workers]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ValueError(f"duplicate worker ids: {', '.join(duplicates)}")
        if self.mode == ProcessingMode.REMOTE and not any(
            w.kind == WorkerKind.REMOTE for w in self.workers
        ):
            raise ValueError("remote mode needs at least one remote worker")
        return self

    def timeout_for(self, estimated_duration: Optional[float]) -> float:
        """Hard timeout for a task with the given duration estimate."""
        timeout = (estimated_duration or self.default_estimated_duration) * self.timeout_safety_factor
        if self.task_timeout is not None:
            timeout = min(timeout, self.task_timeout)
        return timeout


def load_config(path: str | Path) -> DispatcherConfig:
    """Read a YAML config file into a validated DispatcherConfig."""
    path = Path(path)
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as error:
        raise ConfigError(f"cannot read config {path}: {error}") from error
    except yaml.YAMLError as error:
        raise ConfigError(f"config {path} is not valid YAML: {error}") from error

    try:
        return DispatcherConfig.model_validate(raw or {})
    except ValidationError as error:
        raise ConfigError(f"invalid config {path}:\n{error}") from error
