# orchestration_engine/module_runtime/harness.py
"""
Module-side runtime.

A managed module is launched as ``<executable> daemon-mode '<json config>'``.
The harness drains the module's control channel, dispatches control
messages to overridable hooks and reports status back to the daemon.
Modules never write registry or allocation records themselves.
"""

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from orchestration_engine.core.errors import OrchestratorValidationError
from orchestration_engine.core.models import (
    DEFAULT_MAX_CAPACITY,
    DEFAULT_MIN_CAPACITY,
    CapacityAllocation,
)
from orchestration_engine.mailbox.base import Mailbox
from orchestration_engine.mailbox.messages import (
    ConfigUpdateMessage,
    ControlMessage,
    ModuleStatistics,
    PauseMessage,
    ResourceAllocationMessage,
    ResourceRequestPayload,
    ResumeMessage,
    StartMessage,
    StatusData,
    StatusUpdateMessage,
    StopMessage,
)
from orchestration_engine.mailbox.protocol import drain_control, send_message

logger = logging.getLogger(__name__)

DAEMON_MODE_FLAG = "daemon-mode"
MAX_REPORTED_ERRORS = 10


class ExecutionMode(Enum):
    STANDALONE = "standalone"
    DAEMON_MANAGED = "daemon-managed"


@dataclass
class ExecutionContext:
    mode: ExecutionMode
    config: Dict[str, Any] = field(default_factory=dict)
    control_channel_id: Optional[int] = None
    status_channel_id: Optional[int] = None

    @property
    def is_managed(self) -> bool:
        return self.mode is ExecutionMode.DAEMON_MANAGED


def parse_execution_context(argv: Sequence[str]) -> ExecutionContext:
    """
    Recognise ``daemon-mode <json>``; anything else is standalone.

    Raises OrchestratorValidationError if the daemon-mode config is not a
    JSON object.
    """
    if len(argv) >= 2 and argv[0] == DAEMON_MODE_FLAG:
        try:
            config = json.loads(argv[1])
        except json.JSONDecodeError as e:
            raise OrchestratorValidationError(f"Invalid daemon-mode config: {e}") from e
        if not isinstance(config, dict):
            raise OrchestratorValidationError("daemon-mode config must be a JSON object")

        return ExecutionContext(
            mode=ExecutionMode.DAEMON_MANAGED,
            config=config,
            control_channel_id=config.get("control_channel_id"),
            status_channel_id=config.get("status_channel_id"),
        )

    return ExecutionContext(mode=ExecutionMode.STANDALONE)


class ModuleHarness:
    """
    Base class for daemon-managed modules.

    Subclasses implement ``tick()`` and override the ``on_*`` hooks they
    care about.
    """

    def __init__(
        self,
        name: str,
        context: ExecutionContext,
        mailbox: Optional[Mailbox] = None,
        *,
        priority: int = 50,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        if context.is_managed and mailbox is None:
            raise OrchestratorValidationError("A daemon-managed module needs a mailbox")

        self.name = name
        self.context = context
        self.mailbox = mailbox
        self.priority = int(context.config.get("priority", priority))
        self.config: Dict[str, Any] = dict(context.config)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        # Standalone modules run immediately; managed ones wait for "start"
        self.is_active = not context.is_managed
        self.is_healthy = True
        self.should_exit = False
        self.allocation: Optional[CapacityAllocation] = None

        self.started_at = self._clock()
        self.operation_count = 0
        self.failure_count = 0
        self.errors: List[str] = []

    # ============================================
    # HOOKS
    # ============================================

    def tick(self) -> None:
        """One unit of work while active."""
        raise NotImplementedError

    def on_start(self) -> None:
        pass

    def on_stop(self) -> None:
        pass

    def on_pause(self) -> None:
        pass

    def on_resume(self) -> None:
        pass

    def on_config_update(self, config: Dict[str, Any]) -> None:
        pass

    def on_allocation(self, allocation: CapacityAllocation) -> None:
        pass

    # ============================================
    # CONTROL
    # ============================================

    def poll_control(self) -> int:
        """Drain and dispatch pending control messages. Returns how many were handled."""
        if not self.context.is_managed:
            return 0

        messages = drain_control(self.mailbox, self.context.control_channel_id)
        for message in messages:
            self.dispatch(message)
        return len(messages)

    def dispatch(self, message: ControlMessage) -> None:
        if isinstance(message, StartMessage):
            self.config.update(message.config)
            self.is_active = True
            logger.info(f"[{self.name}] Start received")
            self.on_start()
        elif isinstance(message, StopMessage):
            self.is_active = False
            self.should_exit = True
            logger.info(f"[{self.name}] Stop received")
            self.on_stop()
        elif isinstance(message, PauseMessage):
            self.is_active = False
            logger.info(f"[{self.name}] Paused")
            self.on_pause()
        elif isinstance(message, ResumeMessage):
            self.is_active = True
            logger.info(f"[{self.name}] Resumed")
            self.on_resume()
        elif isinstance(message, ConfigUpdateMessage):
            self.config.update(message.config)
            logger.info(f"[{self.name}] Config updated: {sorted(message.config)}")
            self.on_config_update(message.config)
        elif isinstance(message, ResourceAllocationMessage):
            self.allocation = message.allocation.to_domain()
            logger.debug(f"[{self.name}] Allocated {self.allocation.allocated_total:.2f}")
            self.on_allocation(self.allocation)
        else:
            raise OrchestratorValidationError(f"Unknown control message: {message!r}")

    # ============================================
    # STATUS
    # ============================================

    def resource_request(self) -> Optional[ResourceRequestPayload]:
        """Capacity this module wants; defaults come from its config."""
        minimum = float(self.config.get("min_capacity", DEFAULT_MIN_CAPACITY))
        maximum = float(self.config.get("max_capacity", DEFAULT_MAX_CAPACITY))
        return ResourceRequestPayload(
            module_name=self.name,
            priority=self.priority,
            min_capacity=minimum,
            max_capacity=max(minimum, maximum),
        )

    def capacity_usage(self) -> float:
        if not self.is_active or self.allocation is None:
            return 0.0
        return self.allocation.allocated_total

    def statistics(self) -> ModuleStatistics:
        total = self.operation_count + self.failure_count
        return ModuleStatistics(
            module_name=self.name,
            uptime=(self._clock() - self.started_at).total_seconds(),
            operation_count=self.operation_count,
            success_rate=(self.operation_count / total * 100) if total else 100.0,
        )

    def build_status(self) -> StatusUpdateMessage:
        return StatusUpdateMessage(
            module_name=self.name,
            timestamp=self._clock(),
            data=StatusData(
                is_active=self.is_active,
                is_healthy=self.is_healthy,
                capacity_usage=self.capacity_usage(),
                statistics=self.statistics(),
                resource_request=self.resource_request(),
                errors=list(self.errors) or None,
            ),
        )

    def report_status(self) -> bool:
        if not self.context.is_managed:
            return False
        return send_message(self.mailbox, self.context.status_channel_id, self.build_status())

    # ============================================
    # RUN LOOP
    # ============================================

    def run_once(self) -> None:
        self.poll_control()
        if self.should_exit:
            return

        if self.is_active:
            try:
                self.tick()
                self.operation_count += 1
                self.is_healthy = True
            except Exception as e:
                self.failure_count += 1
                self.is_healthy = False
                self.errors = (self.errors + [str(e)])[-MAX_REPORTED_ERRORS:]
                logger.error(f"[{self.name}] Tick failed: {e}", exc_info=True)

        self.report_status()

    def run(self, interval: float, sleep: Optional[Callable[[float], None]] = None) -> None:
        sleep = sleep or time.sleep
        logger.info(f"[{self.name}] Running in {self.context.mode.value} mode")

        while not self.should_exit:
            self.run_once()
            if not self.should_exit:
                sleep(interval)

        logger.info(f"[{self.name}] Exiting")
