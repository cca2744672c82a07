"""Core domain models (business logic)."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from orchestration_engine.core.errors import OrchestratorValidationError


class ModuleLifecycleState(Enum):
    """Module lifecycle state machine."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    PAUSED = "paused"
    ERROR = "error"


# Defaults used when a module's config does not declare its capacity needs
DEFAULT_MIN_CAPACITY = 4.0
DEFAULT_MAX_CAPACITY = 256.0


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp written by ``isoformat()``; None when absent."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class ProcessHandle:
    """Opaque reference to a launched module process."""

    node_id: str
    pid: int

    def to_dict(self) -> Dict[str, Any]:
        return {"node_id": self.node_id, "pid": self.pid}

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "ProcessHandle":
        return ProcessHandle(node_id=str(data["node_id"]), pid=int(data["pid"]))

    def __str__(self) -> str:
        return f"{self.node_id}:{self.pid}"


@dataclass
class CapacityUsage:
    """Capacity bookkeeping for one module."""

    requested: float = 0.0
    allocated: float = 0.0
    actual: float = 0.0


@dataclass
class RegisteredModule:
    """A unit of managed work known to the registry."""

    name: str
    executable_path: str
    priority: int
    control_channel_id: int
    status_channel_id: int

    config: Dict[str, Any] = field(default_factory=dict)
    lifecycle_state: ModuleLifecycleState = ModuleLifecycleState.STOPPED
    process_handle: Optional[ProcessHandle] = None
    last_status_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    capacity: CapacityUsage = field(default_factory=CapacityUsage)

    @property
    def enabled(self) -> bool:
        return bool(self.config.get("enabled", True))

    @property
    def min_capacity(self) -> float:
        return float(self.config.get("min_capacity", DEFAULT_MIN_CAPACITY))

    @property
    def max_capacity(self) -> float:
        # Never below the floor; a large min alone raises the ceiling with it
        return max(self.min_capacity, float(self.config.get("max_capacity", DEFAULT_MAX_CAPACITY)))

    def default_request(self) -> "ResourceRequest":
        """Build a request from the registered capacity defaults."""
        return ResourceRequest(
            module_name=self.name,
            priority=self.priority,
            min_capacity=self.min_capacity,
            max_capacity=self.max_capacity,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "executable_path": self.executable_path,
            "config": self.config,
            "priority": self.priority,
            "lifecycle_state": self.lifecycle_state.value,
            "process_handle": self.process_handle.to_dict() if self.process_handle else None,
            "control_channel_id": self.control_channel_id,
            "status_channel_id": self.status_channel_id,
            "last_status_at": self.last_status_at.isoformat(),
            "capacity": {
                "requested": self.capacity.requested,
                "allocated": self.capacity.allocated,
                "actual": self.capacity.actual,
            },
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "RegisteredModule":
        handle = data.get("process_handle")
        capacity = data.get("capacity") or {}
        return RegisteredModule(
            name=data["name"],
            executable_path=data["executable_path"],
            config=dict(data.get("config") or {}),
            priority=int(data["priority"]),
            lifecycle_state=ModuleLifecycleState(data["lifecycle_state"]),
            process_handle=ProcessHandle.from_dict(handle) if handle else None,
            control_channel_id=int(data["control_channel_id"]),
            status_channel_id=int(data["status_channel_id"]),
            last_status_at=parse_timestamp(data.get("last_status_at")) or datetime.now(timezone.utc),
            capacity=CapacityUsage(
                requested=float(capacity.get("requested", 0.0)),
                allocated=float(capacity.get("allocated", 0.0)),
                actual=float(capacity.get("actual", 0.0)),
            ),
        )


@dataclass
class ResourceRequest:
    """A module's declared capacity need."""

    module_name: str
    priority: int
    min_capacity: float
    max_capacity: float
    preferred_node_ids: Optional[List[str]] = None

    def __post_init__(self):
        if not self.module_name:
            raise OrchestratorValidationError("module_name is required")
        if self.min_capacity < 0:
            raise OrchestratorValidationError("min_capacity must be >= 0")
        if self.min_capacity > self.max_capacity:
            raise OrchestratorValidationError(
                f"min_capacity ({self.min_capacity}) exceeds max_capacity ({self.max_capacity})"
            )


@dataclass
class CapacityAllocation:
    """Allocator output for one module."""

    module_name: str
    allocated_total: float
    per_node_allocation: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "module_name": self.module_name,
            "allocated_total": self.allocated_total,
            "per_node_allocation": dict(self.per_node_allocation),
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "CapacityAllocation":
        return CapacityAllocation(
            module_name=data["module_name"],
            allocated_total=float(data["allocated_total"]),
            per_node_allocation={
                str(node_id): float(amount)
                for node_id, amount in (data.get("per_node_allocation") or {}).items()
            },
        )


@dataclass
class ComputeNode:
    """One admitted machine in the pool, rebuilt on every scan."""

    node_id: str
    total_capacity: float
    used_capacity: float = 0.0
    is_primary: bool = False
    is_elastic: bool = False
    reserved_capacity: float = 0.0

    def __post_init__(self):
        if self.total_capacity < 0:
            raise OrchestratorValidationError(f"Node {self.node_id}: total_capacity must be >= 0")
        if not 0 <= self.used_capacity <= self.total_capacity:
            raise OrchestratorValidationError(
                f"Node {self.node_id}: used_capacity {self.used_capacity} "
                f"outside [0, {self.total_capacity}]"
            )

    @property
    def available_capacity(self) -> float:
        return max(0.0, self.total_capacity - self.used_capacity - self.reserved_capacity)
