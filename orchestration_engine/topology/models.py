"""Topology models."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from orchestration_engine.core.models import parse_timestamp


@dataclass(frozen=True)
class TopologySnapshot:
    """Discovered graph state at one point in time. Never mutated."""

    all_node_ids: Tuple[str, ...]
    admitted_node_ids: Tuple[str, ...]
    eligible_targets: Tuple[str, ...]
    elastic_node_ids: Tuple[str, ...]
    total_capacity: float
    total_available_capacity: float
    scanned_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "all_node_ids": list(self.all_node_ids),
            "admitted_node_ids": list(self.admitted_node_ids),
            "eligible_targets": list(self.eligible_targets),
            "elastic_node_ids": list(self.elastic_node_ids),
            "total_capacity": self.total_capacity,
            "total_available_capacity": self.total_available_capacity,
            "scanned_at": self.scanned_at.isoformat(),
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "TopologySnapshot":
        return TopologySnapshot(
            all_node_ids=tuple(data["all_node_ids"]),
            admitted_node_ids=tuple(data["admitted_node_ids"]),
            eligible_targets=tuple(data["eligible_targets"]),
            elastic_node_ids=tuple(data["elastic_node_ids"]),
            total_capacity=float(data.get("total_capacity", 0.0)),
            total_available_capacity=float(data.get("total_available_capacity", 0.0)),
            scanned_at=parse_timestamp(data["scanned_at"]),
        )


@dataclass(frozen=True)
class ChangeSet:
    """Difference between two consecutive snapshots."""

    new_nodes: Tuple[str, ...] = field(default_factory=tuple)
    newly_admitted: Tuple[str, ...] = field(default_factory=tuple)
    newly_elastic: Tuple[str, ...] = field(default_factory=tuple)
    newly_eligible: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def total_changes(self) -> int:
        return (
            len(self.new_nodes)
            + len(self.newly_admitted)
            + len(self.newly_elastic)
            + len(self.newly_eligible)
        )

    @staticmethod
    def between(
        previous: Optional[TopologySnapshot],
        current: TopologySnapshot,
    ) -> "ChangeSet":
        """Diff current against previous; no previous means everything is new."""
        if previous is None:
            return ChangeSet(
                new_nodes=current.all_node_ids,
                newly_admitted=current.admitted_node_ids,
                newly_elastic=current.elastic_node_ids,
                newly_eligible=current.eligible_targets,
            )

        def added(now: Tuple[str, ...], before: Tuple[str, ...]) -> Tuple[str, ...]:
            seen = set(before)
            return tuple(node_id for node_id in now if node_id not in seen)

        return ChangeSet(
            new_nodes=added(current.all_node_ids, previous.all_node_ids),
            newly_admitted=added(current.admitted_node_ids, previous.admitted_node_ids),
            newly_elastic=added(current.elastic_node_ids, previous.elastic_node_ids),
            newly_eligible=added(current.eligible_targets, previous.eligible_targets),
        )
