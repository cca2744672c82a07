"""Built-in module manifest."""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from orchestration_engine.core.errors import OrchestratorValidationError
from orchestration_engine.mailbox.base import channels_for_slot, validate_channel_id

logger = logging.getLogger(__name__)


@dataclass
class BuiltinModule:
    """A module the daemon registers and starts on its own."""

    name: str
    executable_path: str
    priority: int
    control_channel_id: int
    status_channel_id: int
    config: Dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def from_dict(data: Dict[str, Any], slot: int) -> "BuiltinModule":
        """
        Channels default to the pair reserved for the module's slot
        (its position in the manifest).
        """
        if not data.get("name"):
            raise OrchestratorValidationError("module entry requires 'name'")
        if not data.get("executable_path"):
            raise OrchestratorValidationError(f"module '{data['name']}' requires 'executable_path'")

        control, status = channels_for_slot(slot)
        control = validate_channel_id(int(data.get("control_channel_id", control)))
        status = validate_channel_id(int(data.get("status_channel_id", status)))
        if control == status:
            raise OrchestratorValidationError(
                f"module '{data['name']}' uses channel {control} for both control and status"
            )

        config = dict(data.get("config") or {})
        config.setdefault("enabled", bool(data.get("enabled", True)))

        return BuiltinModule(
            name=str(data["name"]),
            executable_path=str(data["executable_path"]),
            priority=int(data.get("priority", 50)),
            control_channel_id=control,
            status_channel_id=status,
            config=config,
        )


def parse_manifest(document: Any) -> List[BuiltinModule]:
    """Parse {"modules": [...]} into BuiltinModule records."""
    if not isinstance(document, dict) or not isinstance(document.get("modules"), list):
        raise OrchestratorValidationError("manifest must be an object with a 'modules' list")

    modules = [BuiltinModule.from_dict(entry, slot) for slot, entry in enumerate(document["modules"])]

    names = [m.name for m in modules]
    if len(names) != len(set(names)):
        raise OrchestratorValidationError("manifest contains duplicate module names")
    return modules


def load_manifest(path: Optional[str]) -> List[BuiltinModule]:
    if not path:
        return []

    with open(path, "r", encoding="utf-8") as f:
        modules = parse_manifest(json.load(f))

    logger.info(f"[daemon] Loaded {len(modules)} built-in module(s) from {path}")
    return modules
