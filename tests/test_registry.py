#tests\test_registry.py

"""Test the module registry."""

import pytest

from orchestration_engine.core.models import ModuleLifecycleState, ProcessHandle
from orchestration_engine.registry.service import REGISTRY_KEY, ModuleRegistry


@pytest.fixture
def registry(store, clock):
    return ModuleRegistry(store, clock=clock)


def _register(registry, name, priority=50, config=None, control=10, status=30):
    return registry.register(name, f"/modules/{name}.py", config or {}, priority, control, status)


class TestRegistration:
    """Test register / unregister."""

    def test_register_new_module_starts_stopped(self, registry):
        assert _register(registry, "farmer", config={"min_capacity": 8, "max_capacity": 64})

        module = registry.get("farmer")
        assert module is not None
        assert module.lifecycle_state == ModuleLifecycleState.STOPPED
        assert module.process_handle is None
        assert module.capacity.requested == 64

    def test_register_twice_updates_in_place(self, registry):
        """Test re-registration never duplicates a record."""
        _register(registry, "farmer", priority=10, config={"mode": "a"})
        _register(registry, "farmer", priority=90, config={"mode": "b"})

        modules = registry.list_all()
        assert len(modules) == 1
        assert modules[0].priority == 90
        assert modules[0].config == {"mode": "b"}

    def test_reregister_keeps_runtime_fields(self, registry):
        _register(registry, "farmer")
        handle = ProcessHandle(node_id="home", pid=42)
        registry.set_process_handle("farmer", handle)
        registry.set_lifecycle_state("farmer", ModuleLifecycleState.STARTING)
        registry.set_allocation("farmer", allocated=64)

        _register(registry, "farmer", priority=70)

        module = registry.get("farmer")
        assert module.process_handle == handle
        assert module.lifecycle_state == ModuleLifecycleState.STARTING
        assert module.capacity.allocated == 64

    def test_unregister(self, registry):
        _register(registry, "farmer")

        assert registry.unregister("farmer")
        assert not registry.is_registered("farmer")

    def test_unregister_unknown_module(self, registry):
        assert registry.unregister("ghost") is False

    def test_requested_defaults_to_ceiling(self, registry):
        _register(registry, "farmer")
        _register(registry, "big", config={"min_capacity": 300})

        assert registry.get("farmer").capacity.requested == 256
        assert registry.get("big").capacity.requested == 300

    @pytest.mark.parametrize("control, status", [(0, 30), (10, 65), (100, 101)])
    def test_out_of_range_channels_rejected(self, registry, control, status):
        assert _register(registry, "ext", control=control, status=status) is False
        assert not registry.is_registered("ext")

    @pytest.mark.parametrize("config", [{"min_capacity": -1}, {"max_capacity": "lots"}])
    def test_malformed_capacity_config_rejected(self, registry, config):
        assert _register(registry, "farmer", config=config) is False
        assert not registry.is_registered("farmer")

    def test_clear(self, registry):
        _register(registry, "a")
        _register(registry, "b")

        assert registry.clear()
        assert registry.list_all() == []


class TestPartialUpdates:
    """Test set_* operations."""

    def test_updates_fail_for_unregistered_module(self, registry):
        assert registry.set_lifecycle_state("ghost", ModuleLifecycleState.STARTING) is False
        assert registry.set_process_handle("ghost", None) is False
        assert registry.set_channels("ghost", 11, 31) is False
        assert registry.set_allocation("ghost", allocated=1) is False

    def test_valid_transition(self, registry):
        _register(registry, "farmer")

        assert registry.set_lifecycle_state("farmer", ModuleLifecycleState.STARTING)
        assert registry.set_lifecycle_state("farmer", ModuleLifecycleState.RUNNING)
        assert registry.get("farmer").lifecycle_state == ModuleLifecycleState.RUNNING

    def test_invalid_transition_rejected(self, registry):
        _register(registry, "farmer")

        assert registry.set_lifecycle_state("farmer", ModuleLifecycleState.RUNNING) is False
        assert registry.get("farmer").lifecycle_state == ModuleLifecycleState.STOPPED

    def test_updates_stamp_last_status(self, registry, clock):
        _register(registry, "farmer")
        clock.advance(60)

        registry.set_channels("farmer", 11, 31)

        module = registry.get("farmer")
        assert module.last_status_at == clock()
        assert (module.control_channel_id, module.status_channel_id) == (11, 31)

    def test_out_of_range_channels_not_stored(self, registry):
        _register(registry, "farmer")

        assert registry.set_channels("farmer", 11, 99) is False

        module = registry.get("farmer")
        assert (module.control_channel_id, module.status_channel_id) == (10, 30)

    def test_set_allocation_updates_only_given_fields(self, registry):
        _register(registry, "farmer", config={"min_capacity": 4, "max_capacity": 48})

        registry.set_allocation("farmer", allocated=32)
        registry.set_allocation("farmer", actual=12.5)

        capacity = registry.get("farmer").capacity
        assert capacity.requested == 48
        assert capacity.allocated == 32
        assert capacity.actual == 12.5


class TestQueries:
    """Test list / find operations."""

    def test_list_by_priority_is_stable(self, registry):
        _register(registry, "a", priority=10)
        _register(registry, "b", priority=50)
        _register(registry, "c", priority=10)
        _register(registry, "d", priority=50)

        assert [m.name for m in registry.list_by_priority()] == ["b", "d", "a", "c"]

    def test_list_by_state(self, registry):
        _register(registry, "a")
        _register(registry, "b")
        registry.set_lifecycle_state("b", ModuleLifecycleState.ERROR)

        assert [m.name for m in registry.list_by_state(ModuleLifecycleState.ERROR)] == ["b"]

    def test_list_running_requires_handle(self, registry):
        _register(registry, "with_handle")
        _register(registry, "without_handle")
        for name in ("with_handle", "without_handle"):
            registry.set_lifecycle_state(name, ModuleLifecycleState.STARTING)
            registry.set_lifecycle_state(name, ModuleLifecycleState.RUNNING)
        registry.set_process_handle("with_handle", ProcessHandle(node_id="home", pid=7))

        assert [m.name for m in registry.list_running()] == ["with_handle"]

    def test_find_by_process_handle(self, registry):
        _register(registry, "farmer")
        handle = ProcessHandle(node_id="home", pid=99)
        registry.set_process_handle("farmer", handle)

        assert registry.find_by_process_handle(handle).name == "farmer"
        assert registry.find_by_process_handle(ProcessHandle(node_id="home", pid=1)) is None

    def test_stats(self, registry):
        _register(registry, "a", config={"max_capacity": 4})
        _register(registry, "b", config={"max_capacity": 6})
        registry.set_lifecycle_state("b", ModuleLifecycleState.STARTING)

        stats = registry.stats()

        assert stats["total"] == 2
        assert stats["by_state"]["stopped"] == 1
        assert stats["by_state"]["starting"] == 1
        assert stats["total_requested"] == 10


class TestFailureHandling:
    """Test the registry never raises on bad state."""

    def test_malformed_registry_reads_as_empty(self, registry, store):
        store.write(REGISTRY_KEY, {"modules": ["not", "a", "dict"]})

        assert registry.list_all() == []
        assert registry.get("anything") is None

    def test_store_write_failure_reported(self, registry, store, monkeypatch):
        monkeypatch.setattr(store, "write", lambda key, value: False)

        assert _register(registry, "farmer") is False
