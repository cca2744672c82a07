"""Daemon tuning knobs, persisted alongside the rest of the orchestrator state."""

import logging
from dataclasses import asdict, dataclass, fields, replace
from typing import Any, Mapping

from orchestration_engine.core.repository import StateStore

logger = logging.getLogger(__name__)

DAEMON_CONFIG_KEY = "daemon-config"


@dataclass(frozen=True)
class DaemonConfig:
    """All durations are in seconds."""

    update_interval: float = 10.0
    network_scan_interval: float = 60.0
    module_status_timeout: float = 30.0
    enable_auto_recovery: bool = True
    primary_reservation: float = 32.0
    start_stagger: float = 2.0
    start_handshake_delay: float = 1.0
    stop_wait: float = 1.0
    log_level: str = "INFO"

    def to_dict(self) -> dict:
        return asdict(self)


def _accepts(expected: Any, value: Any) -> bool:
    if expected is bool:
        return isinstance(value, bool)
    if expected is float:
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    return isinstance(value, expected)


def merge_config(defaults: DaemonConfig, overrides: Mapping[str, Any]) -> DaemonConfig:
    """
    Apply overrides field by field.

    Unknown keys and values of the wrong type are ignored.
    """
    changes = {}
    known = {f.name: f for f in fields(DaemonConfig)}

    for key, value in overrides.items():
        field_def = known.get(key)
        if field_def is None:
            logger.debug(f"[config] Ignoring unknown daemon config key '{key}'")
            continue

        expected = field_def.type
        if not _accepts(expected, value):
            logger.warning(
                f"[config] Ignoring daemon config '{key}': expected {expected.__name__}, "
                f"got {type(value).__name__}"
            )
            continue

        changes[key] = float(value) if expected is float else value

    return replace(defaults, **changes)


def load_daemon_config(store: StateStore, defaults: DaemonConfig = DaemonConfig()) -> DaemonConfig:
    """Merge persisted overrides over defaults and write the result back."""
    persisted = store.read(DAEMON_CONFIG_KEY, None)
    if isinstance(persisted, dict):
        config = merge_config(defaults, persisted)
    else:
        if persisted is not None:
            logger.warning("[config] Persisted daemon config is not a mapping, using defaults")
        config = defaults

    if not store.write(DAEMON_CONFIG_KEY, config.to_dict()):
        logger.error("[config] Failed to persist daemon config")
    return config
