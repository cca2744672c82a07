"""
Typed mailbox protocol.

Control messages flow daemon -> module, status messages module -> daemon.
Both are closed tagged unions keyed on ``type``.
"""

from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, model_validator

from orchestration_engine.core.models import CapacityAllocation, ResourceRequest


# ============================================
# PAYLOADS
# ============================================

class AllocationPayload(BaseModel):
    module_name: str
    allocated_total: float = Field(ge=0)
    per_node_allocation: Dict[str, float] = Field(default_factory=dict)

    @classmethod
    def from_domain(cls, allocation: CapacityAllocation) -> "AllocationPayload":
        return cls(
            module_name=allocation.module_name,
            allocated_total=allocation.allocated_total,
            per_node_allocation=dict(allocation.per_node_allocation),
        )

    def to_domain(self) -> CapacityAllocation:
        return CapacityAllocation(
            module_name=self.module_name,
            allocated_total=self.allocated_total,
            per_node_allocation=dict(self.per_node_allocation),
        )


class ResourceRequestPayload(BaseModel):
    module_name: str = Field(min_length=1)
    priority: int
    min_capacity: float = Field(ge=0)
    max_capacity: float
    preferred_node_ids: Optional[List[str]] = None

    @model_validator(mode="after")
    def check_bounds(self):
        if self.min_capacity > self.max_capacity:
            raise ValueError("min_capacity must not exceed max_capacity")
        return self

    def to_domain(self) -> ResourceRequest:
        return ResourceRequest(
            module_name=self.module_name,
            priority=self.priority,
            min_capacity=self.min_capacity,
            max_capacity=self.max_capacity,
            preferred_node_ids=list(self.preferred_node_ids) if self.preferred_node_ids else None,
        )


# ============================================
# CONTROL (daemon -> module)
# ============================================

class StartMessage(BaseModel):
    type: Literal["start"] = "start"
    config: Dict[str, Any] = Field(default_factory=dict)


class StopMessage(BaseModel):
    type: Literal["stop"] = "stop"


class PauseMessage(BaseModel):
    type: Literal["pause"] = "pause"


class ResumeMessage(BaseModel):
    type: Literal["resume"] = "resume"


class ConfigUpdateMessage(BaseModel):
    type: Literal["config_update"] = "config_update"
    config: Dict[str, Any] = Field(default_factory=dict)


class ResourceAllocationMessage(BaseModel):
    type: Literal["resource_allocation"] = "resource_allocation"
    allocation: AllocationPayload


ControlMessage = Annotated[
    Union[
        StartMessage,
        StopMessage,
        PauseMessage,
        ResumeMessage,
        ConfigUpdateMessage,
        ResourceAllocationMessage,
    ],
    Field(discriminator="type"),
]

control_message_adapter = TypeAdapter(ControlMessage)


# ============================================
# STATUS (module -> daemon)
# ============================================

class ModuleStatistics(BaseModel):
    module_name: str = ""
    uptime: float = 0.0
    operation_count: int = 0
    success_rate: float = 0.0
    custom_metrics: Dict[str, float] = Field(default_factory=dict)


class StatusData(BaseModel):
    is_active: bool
    is_healthy: bool = True
    capacity_usage: float = Field(default=0.0, ge=0)
    statistics: ModuleStatistics = Field(default_factory=ModuleStatistics)
    resource_request: Optional[ResourceRequestPayload] = None
    errors: Optional[List[str]] = None


class StatusUpdateMessage(BaseModel):
    type: Literal["status_update"] = "status_update"
    module_name: str = Field(min_length=1)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    data: StatusData


# Single variant today; kept as a named alias so receivers match on ``type``.
StatusMessage = StatusUpdateMessage

status_message_adapter = TypeAdapter(StatusMessage)
