"""Module registry service."""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from orchestration_engine.core.errors import InvalidStateTransition, OrchestratorValidationError
from orchestration_engine.core.models import (
    CapacityUsage,
    ModuleLifecycleState,
    ProcessHandle,
    RegisteredModule,
)
from orchestration_engine.core.repository import StateStore
from orchestration_engine.core.state_machine import ModuleStateMachine
from orchestration_engine.core.validation import validate_registry_document
from orchestration_engine.mailbox.base import validate_channel_id

logger = logging.getLogger(__name__)

REGISTRY_KEY = "module-registry"


class ModuleRegistry:
    """
    Authoritative table of known modules.

    Every operation loads the full table, mutates it and saves it back.
    Failures are logged and reported as False / None / [] so the caller
    (the daemon loop) never has to handle exceptions from here.
    """

    def __init__(
        self,
        store: StateStore,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._store = store
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # ============================================
    # TABLE I/O
    # ============================================

    def _load(self) -> Dict[str, RegisteredModule]:
        document = self._store.read(REGISTRY_KEY, None)
        if document is None:
            return {}

        try:
            validate_registry_document(document)
            return {
                name: RegisteredModule.from_dict(record)
                for name, record in document["modules"].items()
            }
        except (OrchestratorValidationError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"[registry] Ignoring malformed registry state: {e}")
            return {}

    def _save(self, modules: Dict[str, RegisteredModule]) -> bool:
        document = {
            "modules": {name: module.to_dict() for name, module in modules.items()},
            "last_update": self._clock().isoformat(),
        }
        return self._store.write(REGISTRY_KEY, document)

    def _mutate(
        self,
        name: str,
        operation: str,
        apply: Callable[[RegisteredModule], bool],
    ) -> bool:
        """Load, apply a change to one record, stamp it and save."""
        try:
            modules = self._load()
            module = modules.get(name)
            if module is None:
                logger.error(f"[registry] Cannot {operation} for '{name}' - module not registered")
                return False

            if not apply(module):
                return False

            module.last_status_at = self._clock()
            success = self._save(modules)
            if not success:
                logger.error(f"[registry] Failed to save registry after {operation} for '{name}'")
            return success
        except Exception as e:
            logger.error(f"[registry] Failed to {operation} for '{name}': {e}", exc_info=True)
            return False

    # ============================================
    # REGISTRATION
    # ============================================

    def register(
        self,
        name: str,
        executable_path: str,
        config: Dict[str, Any],
        priority: int,
        control_channel_id: int,
        status_channel_id: int,
    ) -> bool:
        """
        Register a module, or update its definition if already present.

        Re-registration keeps the runtime fields (lifecycle state, process
        handle, allocated/actual capacity) and replaces the definition.
        """
        try:
            validate_channel_id(control_channel_id)
            validate_channel_id(status_channel_id)
            # Requested capacity is the ceiling; malformed capacity config is rejected here
            requested = RegisteredModule(
                name=name,
                executable_path=executable_path,
                priority=priority,
                control_channel_id=control_channel_id,
                status_channel_id=status_channel_id,
                config=dict(config),
            ).default_request().max_capacity
        except (OrchestratorValidationError, TypeError, ValueError) as e:
            logger.error(f"[registry] Rejected registration for '{name}': {e}")
            return False

        try:
            modules = self._load()
            now = self._clock()

            existing = modules.get(name)
            if existing is not None:
                logger.warning(f"[registry] Module '{name}' is already registered. Updating registration.")
                existing.executable_path = executable_path
                existing.config = dict(config)
                existing.priority = priority
                existing.control_channel_id = control_channel_id
                existing.status_channel_id = status_channel_id
                existing.capacity.requested = requested
                existing.last_status_at = now
            else:
                modules[name] = RegisteredModule(
                    name=name,
                    executable_path=executable_path,
                    config=dict(config),
                    priority=priority,
                    control_channel_id=control_channel_id,
                    status_channel_id=status_channel_id,
                    lifecycle_state=ModuleLifecycleState.STOPPED,
                    last_status_at=now,
                    capacity=CapacityUsage(requested=requested),
                )

            success = self._save(modules)
            if success:
                logger.info(f"[registry] Registered module '{name}' (priority={priority})")
            else:
                logger.error(f"[registry] Failed to save registry after registering '{name}'")
            return success
        except Exception as e:
            logger.error(f"[registry] Failed to register module '{name}': {e}", exc_info=True)
            return False

    def unregister(self, name: str) -> bool:
        """Remove a module record. Returns False if it was not registered."""
        try:
            modules = self._load()
            if name not in modules:
                logger.warning(f"[registry] Cannot unregister '{name}' - module not found in registry")
                return False

            del modules[name]

            success = self._save(modules)
            if success:
                logger.info(f"[registry] Unregistered module '{name}'")
            return success
        except Exception as e:
            logger.error(f"[registry] Failed to unregister module '{name}': {e}", exc_info=True)
            return False

    def clear(self) -> bool:
        """Remove every module record."""
        try:
            return self._save({})
        except Exception as e:
            logger.error(f"[registry] Failed to clear registry: {e}", exc_info=True)
            return False

    # ============================================
    # PARTIAL UPDATES
    # ============================================

    def set_lifecycle_state(self, name: str, state: ModuleLifecycleState) -> bool:
        """Move a module along the lifecycle state machine."""

        def apply(module: RegisteredModule) -> bool:
            current = module.lifecycle_state
            try:
                module.lifecycle_state = ModuleStateMachine.transition(current, state)
            except InvalidStateTransition as e:
                logger.warning(f"[registry] Rejected transition for '{name}': {e}")
                return False
            if current != state:
                logger.info(f"[registry] '{name}' {current.value} -> {state.value}")
            return True

        return self._mutate(name, "update status", apply)

    def set_process_handle(self, name: str, handle: Optional[ProcessHandle]) -> bool:
        def apply(module: RegisteredModule) -> bool:
            module.process_handle = handle
            logger.debug(f"[registry] Updated process handle for '{name}' to {handle}")
            return True

        return self._mutate(name, "update process handle", apply)

    def set_channels(self, name: str, control_channel_id: int, status_channel_id: int) -> bool:
        try:
            validate_channel_id(control_channel_id)
            validate_channel_id(status_channel_id)
        except ValueError as e:
            logger.error(f"[registry] Rejected channels for '{name}': {e}")
            return False

        def apply(module: RegisteredModule) -> bool:
            module.control_channel_id = control_channel_id
            module.status_channel_id = status_channel_id
            return True

        return self._mutate(name, "update channels", apply)

    def set_allocation(
        self,
        name: str,
        *,
        requested: Optional[float] = None,
        allocated: Optional[float] = None,
        actual: Optional[float] = None,
    ) -> bool:
        """Update only the provided capacity fields."""

        def apply(module: RegisteredModule) -> bool:
            if requested is not None:
                module.capacity.requested = requested
            if allocated is not None:
                module.capacity.allocated = allocated
            if actual is not None:
                module.capacity.actual = actual
            logger.debug(
                f"[registry] Allocation for '{name}': req={module.capacity.requested}, "
                f"alloc={module.capacity.allocated}, actual={module.capacity.actual}"
            )
            return True

        return self._mutate(name, "update allocation", apply)

    # ============================================
    # QUERIES
    # ============================================

    def get(self, name: str) -> Optional[RegisteredModule]:
        try:
            return self._load().get(name)
        except Exception as e:
            logger.error(f"[registry] Failed to get module '{name}': {e}", exc_info=True)
            return None

    def is_registered(self, name: str) -> bool:
        return self.get(name) is not None

    def list_all(self) -> List[RegisteredModule]:
        try:
            return list(self._load().values())
        except Exception as e:
            logger.error(f"[registry] Failed to list modules: {e}", exc_info=True)
            return []

    def list_by_priority(self) -> List[RegisteredModule]:
        """All modules, highest priority first; ties keep registration order."""
        return sorted(self.list_all(), key=lambda m: m.priority, reverse=True)

    def list_by_state(self, state: ModuleLifecycleState) -> List[RegisteredModule]:
        return [m for m in self.list_all() if m.lifecycle_state == state]

    def list_running(self) -> List[RegisteredModule]:
        return [
            m for m in self.list_all()
            if m.lifecycle_state == ModuleLifecycleState.RUNNING and m.process_handle is not None
        ]

    def find_by_process_handle(self, handle: ProcessHandle) -> Optional[RegisteredModule]:
        for module in self.list_all():
            if module.process_handle == handle:
                return module
        return None

    def stats(self) -> Dict[str, Any]:
        """Counts per lifecycle state and capacity totals."""
        modules = self.list_all()
        by_state = {state.value: 0 for state in ModuleLifecycleState}
        for module in modules:
            by_state[module.lifecycle_state.value] += 1

        return {
            "total": len(modules),
            "by_state": by_state,
            "total_requested": sum(m.capacity.requested for m in modules),
            "total_allocated": sum(m.capacity.allocated for m in modules),
            "total_actual": sum(m.capacity.actual for m in modules),
        }
