"""Daemon runtime state and aggregate statistics."""

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from orchestration_engine.core.errors import OrchestratorValidationError
from orchestration_engine.core.models import parse_timestamp
from orchestration_engine.core.repository import StateStore
from orchestration_engine.core.validation import validate_daemon_state_document

logger = logging.getLogger(__name__)

DAEMON_STATE_KEY = "daemon-state"


@dataclass
class DaemonStatistics:
    uptime: float = 0.0
    modules_managed: int = 0
    total_operations: int = 0
    network_resources: float = 0.0
    available_resources: float = 0.0
    utilization: float = 0.0
    module_restarts: int = 0

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "DaemonStatistics":
        return DaemonStatistics(
            uptime=float(data.get("uptime", 0.0)),
            modules_managed=int(data.get("modules_managed", 0)),
            total_operations=int(data.get("total_operations", 0)),
            network_resources=float(data.get("network_resources", 0.0)),
            available_resources=float(data.get("available_resources", 0.0)),
            utilization=float(data.get("utilization", 0.0)),
            module_restarts=int(data.get("module_restarts", 0)),
        )


@dataclass
class DaemonState:
    started_at: datetime
    last_update: datetime
    is_active: bool = True
    last_network_scan: Optional[datetime] = None
    statistics: DaemonStatistics = field(default_factory=DaemonStatistics)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_active": self.is_active,
            "started_at": self.started_at.isoformat(),
            "last_update": self.last_update.isoformat(),
            "last_network_scan": self.last_network_scan.isoformat() if self.last_network_scan else None,
            "statistics": asdict(self.statistics),
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "DaemonState":
        started_at = parse_timestamp(data["started_at"])
        return DaemonState(
            is_active=bool(data.get("is_active", False)),
            started_at=started_at,
            last_update=parse_timestamp(data.get("last_update")) or started_at,
            last_network_scan=parse_timestamp(data.get("last_network_scan")),
            statistics=DaemonStatistics.from_dict(data["statistics"]),
        )


def initialize_daemon_state(store: StateStore, now: datetime) -> DaemonState:
    """
    Restore the previous state if the last run was still active,
    otherwise start fresh.
    """
    document = store.read(DAEMON_STATE_KEY, None)
    if document is not None:
        try:
            validate_daemon_state_document(document)
            previous = DaemonState.from_dict(document)
            if previous.is_active:
                logger.info("[daemon] Restoring previous daemon state")
                previous.last_update = now
                return previous
        except (OrchestratorValidationError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"[daemon] Ignoring malformed daemon state: {e}")

    return DaemonState(started_at=now, last_update=now)


def persist_daemon_state(store: StateStore, state: DaemonState, now: datetime) -> bool:
    state.last_update = now
    success = store.write(DAEMON_STATE_KEY, state.to_dict())
    if not success:
        logger.error("[daemon] Failed to persist daemon state")
    return success
