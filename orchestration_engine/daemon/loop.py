# orchestration_engine/daemon/loop.py
"""
Orchestrator daemon - the single control loop.

Each iteration:
1. Rescans the topology when the snapshot is stale
2. Collects module status updates and detects timeouts
3. Restarts failed modules (auto-recovery)
4. Allocates capacity and pushes allocations to modules
5. Updates and persists aggregate statistics
"""

import logging
import signal
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence

from orchestration_engine.allocator.allocator import total_allocated
from orchestration_engine.allocator.service import AllocationService
from orchestration_engine.core.errors import OrchestratorValidationError
from orchestration_engine.core.models import ModuleLifecycleState, RegisteredModule, ResourceRequest
from orchestration_engine.core.repository import StateStore
from orchestration_engine.daemon.builtin import BuiltinModule
from orchestration_engine.daemon.config import DaemonConfig, load_daemon_config
from orchestration_engine.daemon.lifecycle import ModuleLifecycleManager
from orchestration_engine.daemon.state import DaemonState, initialize_daemon_state, persist_daemon_state
from orchestration_engine.launcher.base import ProcessLauncher
from orchestration_engine.mailbox.base import Mailbox
from orchestration_engine.mailbox.messages import StatusMessage, StatusUpdateMessage
from orchestration_engine.mailbox.protocol import drain_status
from orchestration_engine.registry.service import ModuleRegistry
from orchestration_engine.topology.discovery import TopologyDiscovery
from orchestration_engine.topology.graph import NodeGraph
from orchestration_engine.topology.models import TopologySnapshot

logger = logging.getLogger(__name__)

STATUS_LOG_EVERY = 10

# States whose live resource requests are honoured
_ALLOCATABLE_STATES = (
    ModuleLifecycleState.STARTING,
    ModuleLifecycleState.RUNNING,
    ModuleLifecycleState.PAUSED,
)


class DaemonPhase(Enum):
    INITIALIZING = "initializing"
    RUNNING = "running"


@dataclass
class IterationContext:
    """Per-daemon scratch state carried between iterations."""

    iteration: int = 0
    request_cache: Dict[str, ResourceRequest] = field(default_factory=dict)
    # When each module was last heard from over its status channel
    last_heard: Dict[str, datetime] = field(default_factory=dict)


class OrchestratorDaemon:
    """Supervises modules and hands out node capacity."""

    def __init__(
        self,
        store: StateStore,
        mailbox: Mailbox,
        launcher: ProcessLauncher,
        graph: NodeGraph,
        *,
        root_node_id: str,
        primary_node_id: str,
        payloads: Sequence[str] = (),
        builtin_modules: Sequence[BuiltinModule] = (),
        config_defaults: DaemonConfig = DaemonConfig(),
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.store = store
        self.mailbox = mailbox
        self.launcher = launcher
        self.builtin_modules = list(builtin_modules)
        self.config_defaults = config_defaults
        self.primary_node_id = primary_node_id

        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._sleep = sleep or time.sleep

        self.registry = ModuleRegistry(store, clock=self._clock)
        self.discovery = TopologyDiscovery(
            graph, store, root_node_id=root_node_id, payloads=payloads, clock=self._clock,
        )
        self.allocation = AllocationService(graph, store, root_node_id=root_node_id)

        self.config = config_defaults
        self.lifecycle = ModuleLifecycleManager(
            self.registry, mailbox, launcher,
            node_id=primary_node_id, config=self.config, sleep=self._sleep,
        )

        self.phase = DaemonPhase.INITIALIZING
        self.state: Optional[DaemonState] = None
        self.snapshot: Optional[TopologySnapshot] = None
        self.context = IterationContext()
        self._stop_requested = False

    # ============================================
    # INITIALIZATION
    # ============================================

    def initialize(self) -> None:
        logger.info("[daemon] Loading daemon configuration")
        self.config = load_daemon_config(self.store, self.config_defaults)
        self.lifecycle.config = self.config
        logger.info(f"[daemon] Config loaded: {self.config.to_dict()}")

        self.state = initialize_daemon_state(self.store, self._clock())
        logger.info("[daemon] Daemon state initialized")

        self.refresh_topology()
        self.register_builtin_modules()
        self.start_initial_modules()

        self.phase = DaemonPhase.RUNNING
        logger.info("[daemon] Entering main loop")

    def register_builtin_modules(self) -> None:
        for builtin in self.builtin_modules:
            if not self.registry.is_registered(builtin.name):
                success = self.registry.register(
                    builtin.name,
                    builtin.executable_path,
                    builtin.config,
                    builtin.priority,
                    builtin.control_channel_id,
                    builtin.status_channel_id,
                )
                if not success:
                    logger.error(f"[daemon] Failed to register module: {builtin.name}")
            else:
                logger.info(f"[daemon] Module already registered: {builtin.name}")

            # Channel assignments always follow the manifest
            self.registry.set_channels(
                builtin.name, builtin.control_channel_id, builtin.status_channel_id,
            )

    def start_initial_modules(self) -> None:
        logger.info("[daemon] Starting initial modules")
        for module in self.registry.list_by_priority():
            if not module.enabled:
                continue
            self.start_module(module.name)
            self._sleep(self.config.start_stagger)

    def start_module(self, name: str) -> bool:
        started = self.lifecycle.start_module(name)
        if started:
            self.context.last_heard[name] = self._clock()
            self.context.request_cache.pop(name, None)
        return started

    # ============================================
    # MAIN LOOP
    # ============================================

    def run_iteration(self) -> None:
        """One control tick (steps 1-5)."""
        if self.state is None:
            raise RuntimeError("initialize() must be called before run_iteration()")

        self.context.iteration += 1

        if self.discovery.needs_rescan(self.config.network_scan_interval):
            self.refresh_topology()

        self.collect_module_statuses()

        if self.config.enable_auto_recovery:
            self.recover_failed_modules()

        self.perform_resource_allocation()

        self.update_statistics()
        persist_daemon_state(self.store, self.state, self._clock())

        if self.context.iteration % STATUS_LOG_EVERY == 0:
            stats = self.state.statistics
            logger.info(
                f"[daemon] Status: uptime {stats.uptime:.0f}s, modules {stats.modules_managed}, "
                f"capacity {stats.network_resources:.2f}, util {stats.utilization:.1f}%"
            )

    def run_forever(self, max_iterations: Optional[int] = None) -> None:
        """Tick until stop() is called (or max_iterations is reached)."""
        if self.phase is DaemonPhase.INITIALIZING:
            self.initialize()

        completed = 0
        while not self._stop_requested:
            try:
                self.run_iteration()
            except Exception as e:
                logger.error(f"[daemon] Error in main loop: {e}", exc_info=True)

            completed += 1
            if max_iterations is not None and completed >= max_iterations:
                break
            if not self._stop_requested:
                self._sleep(self.config.update_interval)

        self.shutdown()

    def stop(self) -> None:
        self._stop_requested = True

    def shutdown(self) -> None:
        """Mark the run as finished. Module processes are left running."""
        if self.state is None:
            return
        self.state.is_active = False
        persist_daemon_state(self.store, self.state, self._clock())
        logger.info("[daemon] Daemon stopped")

    def install_signal_handlers(self) -> None:
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    def _signal_handler(self, signum, frame):
        logger.info(f"[daemon] Received signal {signum}, stopping...")
        self.stop()

    # ============================================
    # STEP 1: TOPOLOGY
    # ============================================

    def refresh_topology(self) -> None:
        result = self.discovery.scan()
        self.snapshot = result.snapshot
        if self.state is not None:
            self.state.last_network_scan = result.snapshot.scanned_at
            self.state.statistics.network_resources = result.snapshot.total_capacity
        logger.info(
            f"[daemon] Network discovered: {len(result.snapshot.all_node_ids)} nodes, "
            f"{len(result.snapshot.admitted_node_ids)} admitted, "
            f"{result.snapshot.total_capacity:.2f} total capacity, "
            f"payloads on {result.provisioned_nodes} node(s)"
        )

    # ============================================
    # STEP 2: STATUS COLLECTION
    # ============================================

    def collect_module_statuses(self) -> None:
        for module in self.registry.list_all():
            try:
                for message in drain_status(self.mailbox, module.status_channel_id):
                    self._handle_status(module, message)
                self._check_timeout(module.name)
            except Exception as e:
                logger.error(f"[daemon] Error collecting status from {module.name}: {e}", exc_info=True)

    def _handle_status(self, module: RegisteredModule, message: StatusMessage) -> None:
        if isinstance(message, StatusUpdateMessage):
            self._apply_status_update(module, message)
        else:
            logger.warning(f"[daemon] Unhandled status message from {module.name}: {message!r}")

    def _apply_status_update(self, module: RegisteredModule, message: StatusUpdateMessage) -> None:
        name = module.name
        if message.module_name != name:
            logger.warning(
                f"[daemon] Status on {name}'s channel claims to be from {message.module_name}, ignoring"
            )
            return

        current = self.registry.get(name)
        if current is None:
            return

        if current.lifecycle_state == ModuleLifecycleState.STOPPED:
            logger.debug(f"[daemon] Ignoring status from stopped module {name}")
            return

        if current.lifecycle_state == ModuleLifecycleState.ERROR:
            # Process came back after a timeout
            self.registry.set_lifecycle_state(name, ModuleLifecycleState.STARTING)

        data = message.data
        new_state = ModuleLifecycleState.RUNNING if data.is_active else ModuleLifecycleState.PAUSED
        self.registry.set_lifecycle_state(name, new_state)
        self.registry.set_allocation(name, actual=data.capacity_usage)
        self.context.last_heard[name] = self._clock()

        if data.resource_request is not None:
            request = data.resource_request.to_domain()
            if request.module_name != name:
                request = replace(request, module_name=name)
            self.context.request_cache[name] = request

        if data.errors:
            logger.warning(f"[daemon] {name} reported errors: {data.errors}")

        logger.debug(f"[daemon] Received status update from {name}: {new_state.value}")

    def _check_timeout(self, name: str) -> None:
        module = self.registry.get(name)
        if module is None:
            return
        if module.lifecycle_state in (ModuleLifecycleState.STOPPED, ModuleLifecycleState.ERROR):
            return

        last_heard = self.context.last_heard.setdefault(name, module.last_status_at)
        elapsed = (self._clock() - last_heard).total_seconds()
        if elapsed > self.config.module_status_timeout:
            logger.warning(f"[daemon] Module {name} timed out ({int(elapsed)}s since last update)")
            self.registry.set_lifecycle_state(name, ModuleLifecycleState.ERROR)

    # ============================================
    # STEP 3: AUTO-RECOVERY
    # ============================================

    def recover_failed_modules(self) -> None:
        for module in self.registry.list_by_state(ModuleLifecycleState.ERROR):
            if not module.enabled:
                continue

            handle = module.process_handle
            if handle is not None and self.launcher.is_running(handle):
                continue

            logger.warning(f"[daemon] Module {module.name} is not running. Attempting recovery...")
            if self.start_module(module.name):
                self.state.statistics.module_restarts += 1
                logger.info(f"[daemon] Successfully recovered module: {module.name}")
            else:
                logger.error(f"[daemon] Failed to recover module: {module.name}")

            self._sleep(self.config.start_stagger)

    # ============================================
    # STEP 4: ALLOCATION
    # ============================================

    def gather_resource_requests(self) -> List[ResourceRequest]:
        """
        Live requests reported by modules; registry defaults only when no
        module has reported one.
        """
        modules = {m.name: m for m in self.registry.list_all()}

        for name in list(self.context.request_cache):
            if name not in modules:
                del self.context.request_cache[name]

        requests = [
            request for name, request in self.context.request_cache.items()
            if modules[name].lifecycle_state in _ALLOCATABLE_STATES
        ]
        if requests:
            return requests

        defaults = []
        for module in modules.values():
            if module.lifecycle_state not in (ModuleLifecycleState.RUNNING, ModuleLifecycleState.STARTING):
                continue
            try:
                defaults.append(module.default_request())
            except (OrchestratorValidationError, TypeError, ValueError) as e:
                logger.error(f"[daemon] Skipping {module.name} in allocation: {e}")
        return defaults

    def perform_resource_allocation(self) -> None:
        try:
            requests = self.gather_resource_requests()
            if not requests:
                logger.debug("[daemon] No resource requests to allocate")
                return

            result = self.allocation.perform(requests, self.config.primary_reservation)
            granted = {a.module_name: a for a in result.allocations}

            for allocation in result.allocations:
                self.lifecycle.send_allocation(allocation)

            for request in requests:
                allocation = granted.get(request.module_name)
                self.registry.set_allocation(
                    request.module_name,
                    requested=request.max_capacity,
                    allocated=allocation.allocated_total if allocation else 0.0,
                )

            logger.debug(
                f"[daemon] Allocated {total_allocated(result.allocations):.2f} of "
                f"{result.stats['available_capacity']:.2f} available "
                f"({result.stats['utilization_percent']:.1f}% node utilization)"
            )
        except Exception as e:
            logger.error(f"[daemon] Error in resource allocation: {e}", exc_info=True)

    # ============================================
    # STEP 5: STATISTICS
    # ============================================

    def update_statistics(self) -> None:
        stats = self.state.statistics
        now = self._clock()

        stats.uptime = (now - self.state.started_at).total_seconds()
        stats.modules_managed = len(self.registry.list_all())
        stats.total_operations += 1

        snapshot = self.discovery.load_snapshot() or self.snapshot
        if snapshot is not None:
            stats.network_resources = snapshot.total_capacity
            stats.available_resources = snapshot.total_available_capacity

        allocated = total_allocated(self.allocation.load())
        stats.utilization = (
            allocated / stats.network_resources * 100 if stats.network_resources > 0 else 0.0
        )
