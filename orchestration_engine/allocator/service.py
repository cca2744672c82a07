"""Allocation service - builds the pool, allocates and persists the result."""

import logging
from dataclasses import dataclass
from typing import Dict, List, Sequence

from orchestration_engine.allocator.allocator import (
    DEFAULT_PRIMARY_RESERVATION,
    allocate,
    build_capacity_pool,
    pool_stats,
)
from orchestration_engine.core.errors import OrchestratorValidationError
from orchestration_engine.core.models import CapacityAllocation, ComputeNode, ResourceRequest
from orchestration_engine.core.repository import StateStore
from orchestration_engine.core.validation import validate_allocation_document
from orchestration_engine.topology.graph import NodeGraph

logger = logging.getLogger(__name__)

ALLOCATION_KEY = "resource-allocation"


@dataclass
class AllocationResult:
    allocations: List[CapacityAllocation]
    pool: List[ComputeNode]
    stats: Dict[str, float]


class AllocationService:
    """Runs one allocation pass against the live topology."""

    def __init__(self, graph: NodeGraph, store: StateStore, *, root_node_id: str):
        self._graph = graph
        self._store = store
        self.root_node_id = root_node_id

    def perform(
        self,
        requests: Sequence[ResourceRequest],
        reserve_on_primary: float = DEFAULT_PRIMARY_RESERVATION,
    ) -> AllocationResult:
        """Build the pool, allocate, persist, and return the outcome."""
        pool = build_capacity_pool(self._graph, self.root_node_id, reserve_on_primary)
        allocations = allocate(pool, requests)

        if not self.save(allocations):
            logger.error("[allocator] Failed to persist allocation state")

        stats = pool_stats(pool)
        logger.debug(
            f"[allocator] {len(allocations)}/{len(requests)} request(s) satisfied "
            f"across {stats['total_nodes']} node(s)"
        )
        return AllocationResult(allocations=allocations, pool=pool, stats=stats)

    def load(self) -> List[CapacityAllocation]:
        """Last persisted allocations; malformed state reads as empty."""
        document = self._store.read(ALLOCATION_KEY, [])
        try:
            validate_allocation_document(document)
            return [CapacityAllocation.from_dict(entry) for entry in document]
        except (OrchestratorValidationError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"[allocator] Failed to load allocation state: {e}")
            return []

    def save(self, allocations: Sequence[CapacityAllocation]) -> bool:
        return self._store.write(ALLOCATION_KEY, [a.to_dict() for a in allocations])
