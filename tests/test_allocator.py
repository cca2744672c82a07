"""Test the priority floor-or-nothing allocator."""

import pytest

from orchestration_engine.allocator.allocator import (
    WorkingPool,
    allocate,
    allocate_to_module,
    build_capacity_pool,
    pool_stats,
    total_allocated,
)
from orchestration_engine.allocator.service import ALLOCATION_KEY, AllocationService
from orchestration_engine.core.errors import OrchestratorValidationError
from orchestration_engine.core.models import ComputeNode, ResourceRequest


def _request(name, priority, minimum, maximum, preferred=None):
    return ResourceRequest(
        module_name=name,
        priority=priority,
        min_capacity=minimum,
        max_capacity=maximum,
        preferred_node_ids=preferred,
    )


class TestAllocate:
    """Test allocate() over a fixed pool."""

    def test_exact_allocation_prefers_non_primary(self):
        """Test non-primary nodes are drained before the primary."""
        pool = [
            ComputeNode(node_id="home", total_capacity=100, is_primary=True),
            ComputeNode(node_id="n1", total_capacity=50),
        ]

        allocations = allocate(pool, [_request("m1", 10, 40, 120)])

        assert len(allocations) == 1
        assert allocations[0].module_name == "m1"
        assert allocations[0].per_node_allocation == {"n1": 50, "home": 70}
        assert allocations[0].allocated_total == 120

    def test_rollback_restores_working_pool(self):
        """Test a request below its floor gets nothing and returns capacity."""
        working = WorkingPool([ComputeNode(node_id="n1", total_capacity=10)])

        allocation = allocate_to_module(_request("m1", 1, 20, 50), working)

        assert allocation is None
        assert working.available("n1") == 10

    def test_rollback_yields_empty_result(self):
        pool = [ComputeNode(node_id="n1", total_capacity=10)]
        assert allocate(pool, [_request("m1", 1, 20, 50)]) == []

    def test_priority_respected(self):
        """Test higher priority gets its full max before lower priority gets anything."""
        pool = [ComputeNode(node_id="n1", total_capacity=60)]
        requests = [
            _request("low", 1, 10, 60),
            _request("high", 9, 10, 50),
        ]

        allocations = {a.module_name: a for a in allocate(pool, requests)}

        assert allocations["high"].allocated_total == 50
        assert allocations["low"].allocated_total == 10

    def test_lower_priority_dropped_when_floor_unreachable(self):
        pool = [ComputeNode(node_id="n1", total_capacity=60)]
        requests = [
            _request("high", 9, 10, 55),
            _request("low", 1, 10, 60),
        ]

        allocations = allocate(pool, requests)

        assert [a.module_name for a in allocations] == ["high"]

    def test_rollback_frees_capacity_for_smaller_request(self):
        """Test a rejected request does not starve later ones."""
        pool = [ComputeNode(node_id="n1", total_capacity=30)]
        requests = [
            _request("big", 9, 40, 100),
            _request("small", 1, 10, 20),
        ]

        allocations = allocate(pool, requests)

        assert len(allocations) == 1
        assert allocations[0].module_name == "small"
        assert allocations[0].allocated_total == 20

    def test_equal_priority_keeps_input_order(self):
        pool = [ComputeNode(node_id="n1", total_capacity=10)]
        requests = [
            _request("first", 5, 10, 10),
            _request("second", 5, 10, 10),
        ]

        allocations = allocate(pool, requests)

        assert [a.module_name for a in allocations] == ["first"]

    def test_no_over_commitment(self):
        """Test per-node sums never exceed available capacity."""
        pool = [
            ComputeNode(node_id="home", total_capacity=64, used_capacity=10, is_primary=True, reserved_capacity=8),
            ComputeNode(node_id="n1", total_capacity=32, used_capacity=2),
            ComputeNode(node_id="n2", total_capacity=16),
        ]
        requests = [
            _request("a", 5, 1, 40),
            _request("b", 4, 1, 40),
            _request("c", 3, 1, 40),
        ]

        allocations = allocate(pool, requests)

        for node in pool:
            used = sum(a.per_node_allocation.get(node.node_id, 0) for a in allocations)
            assert used <= node.available_capacity

    def test_floor_or_nothing(self):
        pool = [ComputeNode(node_id="n1", total_capacity=25)]
        requests = [_request(f"m{i}", 10 - i, 8, 12) for i in range(4)]

        for allocation in allocate(pool, requests):
            request = next(r for r in requests if r.module_name == allocation.module_name)
            assert request.min_capacity <= allocation.allocated_total <= request.max_capacity

    def test_allocated_total_matches_per_node_sum(self):
        pool = [
            ComputeNode(node_id="n1", total_capacity=7.5),
            ComputeNode(node_id="n2", total_capacity=2.25),
        ]

        allocation = allocate(pool, [_request("m1", 1, 1, 100)])[0]

        assert allocation.allocated_total == sum(allocation.per_node_allocation.values())
        assert allocation.allocated_total == 9.75

    def test_preferred_nodes_first(self):
        pool = [
            ComputeNode(node_id="n1", total_capacity=50),
            ComputeNode(node_id="n2", total_capacity=20),
        ]

        allocation = allocate(pool, [_request("m1", 1, 10, 30, preferred=["n2"])])[0]

        assert list(allocation.per_node_allocation) == ["n2", "n1"]
        assert allocation.per_node_allocation == {"n2": 20, "n1": 10}

    def test_empty_pool_zero_floor(self):
        """A zero minimum is already met, so the module gets an empty grant."""
        allocations = allocate([], [_request("m1", 1, 0, 10)])

        assert len(allocations) == 1
        assert allocations[0].allocated_total == 0
        assert allocations[0].per_node_allocation == {}

    def test_empty_pool_positive_floor(self):
        assert allocate([], [_request("m1", 1, 5, 10)]) == []

    def test_total_allocated(self):
        pool = [ComputeNode(node_id="n1", total_capacity=100)]
        allocations = allocate(pool, [_request("a", 2, 10, 30), _request("b", 1, 10, 30)])
        assert total_allocated(allocations) == 60


class TestResourceRequest:
    """Test request validation."""

    def test_min_above_max_rejected(self):
        with pytest.raises(OrchestratorValidationError):
            _request("m1", 1, 50, 10)

    def test_negative_min_rejected(self):
        with pytest.raises(OrchestratorValidationError):
            _request("m1", 1, -1, 10)


class TestCapacityPool:
    """Test pool construction from the topology."""

    def test_pool_contains_admitted_nodes_only(self, graph):
        pool = build_capacity_pool(graph, "home", reserve_on_primary=32)
        assert {n.node_id for n in pool} == {"home", "n1"}

    def test_primary_reservation(self, graph):
        pool = {n.node_id: n for n in build_capacity_pool(graph, "home", reserve_on_primary=32)}

        assert pool["home"].available_capacity == 96
        assert pool["n1"].available_capacity == 60

    def test_reservation_floors_at_zero(self, graph):
        pool = {n.node_id: n for n in build_capacity_pool(graph, "home", reserve_on_primary=500)}
        assert pool["home"].available_capacity == 0

    def test_sorted_by_available_descending(self, graph):
        pool = build_capacity_pool(graph, "home", reserve_on_primary=0)
        available = [n.available_capacity for n in pool]
        assert available == sorted(available, reverse=True)


class TestPoolStats:
    """Test pool aggregation."""

    def test_empty_pool_reports_zero_utilization(self):
        stats = pool_stats([])
        assert stats["total_nodes"] == 0
        assert stats["utilization_percent"] == 0.0

    def test_zero_capacity_pool(self):
        stats = pool_stats([ComputeNode(node_id="n1", total_capacity=0)])
        assert stats["utilization_percent"] == 0.0

    def test_utilization(self):
        stats = pool_stats([
            ComputeNode(node_id="n1", total_capacity=100, used_capacity=25),
            ComputeNode(node_id="n2", total_capacity=100, used_capacity=25),
        ])
        assert stats["total_capacity"] == 200
        assert stats["used_capacity"] == 50
        assert stats["available_capacity"] == 150
        assert stats["utilization_percent"] == 25.0


class TestAllocationService:
    """Test the allocate-and-persist service."""

    def test_perform_persists_allocations(self, graph, store):
        service = AllocationService(graph, store, root_node_id="home")

        result = service.perform([_request("m1", 5, 10, 100)], reserve_on_primary=32)

        assert result.allocations[0].allocated_total == 100
        assert result.allocations[0].per_node_allocation == {"n1": 60, "home": 40}
        assert service.load()[0].per_node_allocation == {"n1": 60, "home": 40}

    def test_load_malformed_state_returns_empty(self, graph, store):
        store.write(ALLOCATION_KEY, {"not": "a list"})
        service = AllocationService(graph, store, root_node_id="home")

        assert service.load() == []
