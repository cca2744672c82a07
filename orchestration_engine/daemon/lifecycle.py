"""Module lifecycle operations driven by the daemon."""

import json
import logging
import time
from typing import Any, Callable, Dict, Optional

from orchestration_engine.core.errors import LaunchError, ModuleNotRegistered
from orchestration_engine.core.models import (
    CapacityAllocation,
    ModuleLifecycleState,
    ProcessHandle,
    RegisteredModule,
)
from orchestration_engine.core.state_machine import ModuleStateMachine
from orchestration_engine.daemon.config import DaemonConfig
from orchestration_engine.launcher.base import ProcessLauncher
from orchestration_engine.mailbox.base import Mailbox, validate_channel_id
from orchestration_engine.mailbox.messages import (
    AllocationPayload,
    ConfigUpdateMessage,
    PauseMessage,
    ResourceAllocationMessage,
    ResumeMessage,
    StartMessage,
    StopMessage,
)
from orchestration_engine.mailbox.protocol import send_message
from orchestration_engine.module_runtime.harness import DAEMON_MODE_FLAG
from orchestration_engine.registry.service import ModuleRegistry

logger = logging.getLogger(__name__)


class ModuleLifecycleManager:
    """
    Start / stop / pause / resume for registered modules.

    Modules are launched on the primary node. Stopping is cooperative:
    a stop message is sent, the manager waits, then terminates the process.
    """

    def __init__(
        self,
        registry: ModuleRegistry,
        mailbox: Mailbox,
        launcher: ProcessLauncher,
        *,
        node_id: str,
        config: DaemonConfig,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.registry = registry
        self.mailbox = mailbox
        self.launcher = launcher
        self.node_id = node_id
        self.config = config
        self._sleep = sleep or time.sleep

    def _require_module(self, name: str) -> RegisteredModule:
        module = self.registry.get(name)
        if module is None:
            raise ModuleNotRegistered(f"Module not registered: {name}")
        return module

    def _has_valid_channels(self, module: RegisteredModule) -> bool:
        try:
            validate_channel_id(module.control_channel_id)
            validate_channel_id(module.status_channel_id)
        except ValueError as e:
            logger.error(f"[daemon] Module {module.name} has unusable channels: {e}")
            return False
        return True

    @staticmethod
    def daemon_mode_config(module: RegisteredModule) -> Dict[str, Any]:
        """Config handed to the module process on launch."""
        return {
            **module.config,
            "module_name": module.name,
            "priority": module.priority,
            "control_channel_id": module.control_channel_id,
            "status_channel_id": module.status_channel_id,
        }

    def _launch(self, module: RegisteredModule, config: Dict[str, Any]) -> ProcessHandle:
        handle = self.launcher.start(
            module.executable_path,
            self.node_id,
            1,
            DAEMON_MODE_FLAG,
            json.dumps(config),
        )
        if handle is None:
            raise LaunchError(f"Launcher refused {module.executable_path} on {self.node_id}")
        return handle

    # ============================================
    # LIFECYCLE
    # ============================================

    def start_module(self, name: str) -> bool:
        """Launch (or relaunch) a module and send it the start message."""
        logger.info(f"[daemon] Starting module: {name}")
        try:
            module = self._require_module(name)
        except ModuleNotRegistered as e:
            logger.error(f"[daemon] {e}")
            return False

        if module.process_handle is not None:
            logger.info(f"[daemon] Killing existing process for {name}: {module.process_handle}")
            self.launcher.terminate(module.process_handle)
            self.registry.set_process_handle(name, None)

        if module.lifecycle_state not in (ModuleLifecycleState.STOPPED, ModuleLifecycleState.ERROR):
            self.registry.set_lifecycle_state(name, ModuleLifecycleState.STOPPED)

        if not self._has_valid_channels(module):
            self.registry.set_lifecycle_state(name, ModuleLifecycleState.ERROR)
            return False

        config = self.daemon_mode_config(module)
        try:
            handle = self._launch(module, config)
        except LaunchError as e:
            logger.error(f"[daemon] Failed to start module {name}: {e}")
            self.registry.set_lifecycle_state(name, ModuleLifecycleState.ERROR)
            return False

        self.registry.set_process_handle(name, handle)
        self.registry.set_lifecycle_state(name, ModuleLifecycleState.STARTING)

        # Give the module time to open its control channel
        self._sleep(self.config.start_handshake_delay)
        send_message(self.mailbox, module.control_channel_id, StartMessage(config=config))

        logger.info(f"[daemon] Started module {name} as {handle}")
        return True

    def stop_module(self, name: str) -> bool:
        logger.info(f"[daemon] Stopping module: {name}")
        try:
            module = self._require_module(name)
        except ModuleNotRegistered as e:
            logger.error(f"[daemon] {e}")
            return False

        if self._has_valid_channels(module):
            send_message(self.mailbox, module.control_channel_id, StopMessage())
            self._sleep(self.config.stop_wait)

        if module.process_handle is not None:
            self.launcher.terminate(module.process_handle)
            self.registry.set_process_handle(name, None)

        self.registry.set_lifecycle_state(name, ModuleLifecycleState.STOPPED)
        logger.info(f"[daemon] Stopped module: {name}")
        return True

    def _signal_and_transition(self, name: str, message, target: ModuleLifecycleState) -> bool:
        try:
            module = self._require_module(name)
        except ModuleNotRegistered as e:
            logger.error(f"[daemon] {e}")
            return False

        if not ModuleStateMachine.can_transition(module.lifecycle_state, target):
            logger.warning(
                f"[daemon] Cannot move {name} from {module.lifecycle_state.value} to {target.value}"
            )
            return False
        if not self._has_valid_channels(module):
            return False

        send_message(self.mailbox, module.control_channel_id, message)
        return self.registry.set_lifecycle_state(name, target)

    def pause_module(self, name: str) -> bool:
        success = self._signal_and_transition(name, PauseMessage(), ModuleLifecycleState.PAUSED)
        if success:
            logger.info(f"[daemon] Paused module: {name}")
        return success

    def resume_module(self, name: str) -> bool:
        success = self._signal_and_transition(name, ResumeMessage(), ModuleLifecycleState.RUNNING)
        if success:
            logger.info(f"[daemon] Resumed module: {name}")
        return success

    # ============================================
    # MESSAGES
    # ============================================

    def send_config_update(self, name: str, config: Dict[str, Any]) -> bool:
        try:
            module = self._require_module(name)
        except ModuleNotRegistered as e:
            logger.error(f"[daemon] {e}")
            return False
        if not self._has_valid_channels(module):
            return False
        return send_message(self.mailbox, module.control_channel_id, ConfigUpdateMessage(config=config))

    def send_allocation(self, allocation: CapacityAllocation) -> bool:
        module = self.registry.get(allocation.module_name)
        if module is None or not self._has_valid_channels(module):
            return False

        message = ResourceAllocationMessage(allocation=AllocationPayload.from_domain(allocation))
        sent = send_message(self.mailbox, module.control_channel_id, message)
        if sent:
            logger.debug(
                f"[daemon] Sent allocation to {allocation.module_name}: {allocation.allocated_total:.2f}"
            )
        return sent
