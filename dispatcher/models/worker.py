"""Worker model: an execution endpoint with a declared capacity."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from dispatcher.models.task import ResourceRequirement, TaskKind


class WorkerKind(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"


class WorkerAvailability(str, Enum):
    """Liveness as seen by the registry: UNKNOWN → AVAILABLE ↔ UNAVAILABLE"""
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"
    UNKNOWN = "unknown"


class WorkerCapacity(BaseModel):
    """Declared limits. Resource budgets left as None are unlimited."""

    max_concurrent: int = Field(default=1, ge=1, description="Max in-flight tasks")
    cpu: Optional[float] = Field(default=None, gt=0)
    memory_mb: Optional[float] = Field(default=None, gt=0)
    disk_mb: Optional[float] = Field(default=None, gt=0)


class Worker(BaseModel):
    """A local process host or a remote machine that runs tasks."""

    id: str = Field(min_length=1, description="Unique worker identifier")
    kind: WorkerKind = Field(default=WorkerKind.LOCAL)
    address: Optional[str] = Field(default=None, description="Host for remote workers")
    port: Optional[int] = Field(default=None)
    user: Optional[str] = Field(default=None)
    capacity: WorkerCapacity = Field(default_factory=WorkerCapacity)
    capabilities: list[TaskKind] = Field(default_factory=lambda: list(TaskKind))
    current_load: int = Field(default=0, ge=0, description="Tasks currently in flight")
    reserved: ResourceRequirement = Field(
        default_factory=lambda: ResourceRequirement(cpu=0.0),
        description="Resources held by in-flight tasks",
    )
    availability: WorkerAvailability = Field(default=WorkerAvailability.UNKNOWN)
    last_heartbeat: Optional[float] = Field(default=None, description="Monotonic seconds")

    @property
    def free_slots(self) -> int:
        return self.capacity.max_concurrent - self.current_load

    @property
    def load_ratio(self) -> float:
        return self.current_load / self.capacity.max_concurrent

    @property
    def is_available(self) -> bool:
        return self.availability == WorkerAvailability.AVAILABLE

    def supports(self, kind: TaskKind) -> bool:
        return kind in self.capabilities

    def fits(self, requirement: ResourceRequirement) -> bool:
        """True if the unreserved budget covers the requirement."""
        budgets = (
            (self.capacity.cpu, self.reserved.cpu, requirement.cpu),
            (self.capacity.memory_mb, self.reserved.memory_mb, requirement.memory_mb),
            (self.capacity.disk_mb, self.reserved.disk_mb, requirement.disk_mb),
        )
        return all(
            budget is None or budget - held >= wanted
            for budget, held, wanted in budgets
        )

    def __repr__(self) -> str:
        return (
            f"Worker(id={self.id!r}, kind={self.kind.value}, "
            f"load={self.current_load}/{self.capacity.max_concurrent}, "
            f"availability={self.availability.value})"
        )
