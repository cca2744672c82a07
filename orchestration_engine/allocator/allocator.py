"""
Resource allocator - priority-ordered, floor-or-nothing capacity assignment.

Requests are served strictly by priority. Each one consumes from a single
working copy of the pool, so capacity taken by a higher-priority request is
gone for every lower-priority request in the same pass. A request that cannot
reach its minimum gets nothing and its partial take is returned to the pool.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from orchestration_engine.core.models import CapacityAllocation, ComputeNode, ResourceRequest
from orchestration_engine.topology.graph import NodeGraph, breadth_first

logger = logging.getLogger(__name__)

DEFAULT_PRIMARY_RESERVATION = 32.0


# ============================================
# POOL CONSTRUCTION
# ============================================

def build_capacity_pool(
    graph: NodeGraph,
    root_node_id: str,
    reserve_on_primary: float = DEFAULT_PRIMARY_RESERVATION,
) -> List[ComputeNode]:
    """
    Collect admitted nodes with capacity, largest available first.

    The primary node keeps reserve_on_primary for the orchestrator itself.
    """
    pool: List[ComputeNode] = []

    for node_id in breadth_first(graph, root_node_id):
        if not graph.is_admitted(node_id):
            continue

        total, used = graph.capacity(node_id)
        total = max(0.0, float(total))
        if total <= 0:
            continue
        used = min(max(0.0, float(used)), total)

        is_primary = graph.is_primary(node_id)
        pool.append(ComputeNode(
            node_id=node_id,
            total_capacity=total,
            used_capacity=used,
            is_primary=is_primary,
            is_elastic=graph.is_elastic(node_id),
            reserved_capacity=reserve_on_primary if is_primary else 0.0,
        ))

    pool.sort(key=lambda n: n.available_capacity, reverse=True)
    return pool


# ============================================
# WORKING POOL
# ============================================

@dataclass
class PoolEntry:
    """Mutable remaining capacity of one node during an allocation pass."""
    node: ComputeNode
    remaining: float

    @property
    def node_id(self) -> str:
        return self.node.node_id


class WorkingPool:
    """Shared, mutated copy of the pool for one allocation pass."""

    def __init__(self, pool: Iterable[ComputeNode]):
        self._entries = [PoolEntry(node=node, remaining=node.available_capacity) for node in pool]
        self._by_id = {entry.node_id: entry for entry in self._entries}

    def available(self, node_id: str) -> float:
        return self._by_id[node_id].remaining

    def ordering(self, preferred_node_ids: Optional[Sequence[str]] = None) -> List[PoolEntry]:
        """
        Node order for one request.

        Preferred nodes first (when given), then non-primary before primary,
        then most remaining capacity first. Ties keep pool order.
        """
        preferred = set(preferred_node_ids or ())
        return sorted(
            self._entries,
            key=lambda e: (
                e.node_id not in preferred,
                e.node.is_primary,
                -e.remaining,
            ),
        )

    def take(self, node_id: str, amount: float) -> None:
        self._by_id[node_id].remaining -= amount

    def give_back(self, node_id: str, amount: float) -> None:
        self._by_id[node_id].remaining += amount


# ============================================
# ALLOCATION
# ============================================

def allocate(
    pool: Sequence[ComputeNode],
    requests: Iterable[ResourceRequest],
) -> List[CapacityAllocation]:
    """Allocate capacity to requests by priority (stable on ties)."""
    working = WorkingPool(pool)
    ordered = sorted(requests, key=lambda r: r.priority, reverse=True)

    allocations: List[CapacityAllocation] = []
    for request in ordered:
        allocation = allocate_to_module(request, working)
        if allocation is not None:
            allocations.append(allocation)

    return allocations


def allocate_to_module(
    request: ResourceRequest,
    working: WorkingPool,
) -> Optional[CapacityAllocation]:
    """
    Greedily take up to max_capacity from the working pool.

    Returns None (and restores the working pool) if the minimum is not met.
    """
    per_node: Dict[str, float] = {}
    total = 0.0
    target = request.max_capacity

    for entry in working.ordering(request.preferred_node_ids):
        if total >= target:
            break
        if entry.remaining <= 0:
            continue

        amount = min(target - total, entry.remaining)
        if amount > 0:
            per_node[entry.node_id] = amount
            working.take(entry.node_id, amount)
            total += amount

    if total < request.min_capacity:
        for node_id, amount in per_node.items():
            working.give_back(node_id, amount)
        logger.debug(
            f"[allocator] {request.module_name}: only {total:.2f} available, "
            f"needs {request.min_capacity:.2f} - no allocation"
        )
        return None

    return CapacityAllocation(
        module_name=request.module_name,
        allocated_total=total,
        per_node_allocation=per_node,
    )


# ============================================
# STATISTICS
# ============================================

def total_allocated(allocations: Iterable[CapacityAllocation]) -> float:
    return sum(a.allocated_total for a in allocations)


def pool_stats(pool: Sequence[ComputeNode]) -> Dict[str, float]:
    """Aggregate pool figures. An empty pool reports 0% utilization."""
    total_capacity = sum(n.total_capacity for n in pool)
    used_capacity = sum(n.used_capacity for n in pool)
    available_capacity = sum(n.available_capacity for n in pool)
    utilization = (used_capacity / total_capacity) * 100 if total_capacity > 0 else 0.0

    return {
        "total_nodes": len(pool),
        "total_capacity": total_capacity,
        "used_capacity": used_capacity,
        "available_capacity": available_capacity,
        "utilization_percent": utilization,
    }
