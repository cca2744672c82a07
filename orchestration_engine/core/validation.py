#orchestration_engine\core\validation.py
from typing import Any, Dict, List

from orchestration_engine.core.errors import OrchestratorValidationError
from orchestration_engine.core.models import ModuleLifecycleState


_MODULE_FIELDS = (
    "name",
    "executable_path",
    "priority",
    "lifecycle_state",
    "control_channel_id",
    "status_channel_id",
)

_SNAPSHOT_LIST_FIELDS = (
    "all_node_ids",
    "admitted_node_ids",
    "eligible_targets",
    "elastic_node_ids",
)

_STATE_LIFECYCLE_VALUES = {state.value for state in ModuleLifecycleState}


def validate_registry_document(document: Any) -> Dict[str, Any]:
    # -------------------------
    # Envelope
    # -------------------------
    if not isinstance(document, dict):
        raise OrchestratorValidationError("registry must be a dict")

    modules = document.get("modules")
    if not isinstance(modules, dict):
        raise OrchestratorValidationError("registry.modules must be a dict")

    # -------------------------
    # Records
    # -------------------------
    for name, record in modules.items():
        if not isinstance(record, dict):
            raise OrchestratorValidationError(f"module '{name}' must be a dict")

        missing = [f for f in _MODULE_FIELDS if f not in record]
        if missing:
            raise OrchestratorValidationError(
                f"module '{name}' missing fields: {', '.join(missing)}"
            )

        if record["name"] != name:
            raise OrchestratorValidationError(
                f"module key '{name}' does not match record name '{record['name']}'"
            )

        if record["lifecycle_state"] not in _STATE_LIFECYCLE_VALUES:
            raise OrchestratorValidationError(
                f"module '{name}' has unknown state '{record['lifecycle_state']}'"
            )

    return document


def validate_snapshot_document(document: Any) -> Dict[str, Any]:
    if not isinstance(document, dict):
        raise OrchestratorValidationError("snapshot must be a dict")

    for field_name in _SNAPSHOT_LIST_FIELDS:
        if not isinstance(document.get(field_name), list):
            raise OrchestratorValidationError(f"snapshot.{field_name} must be a list")

    if not set(document["admitted_node_ids"]) <= set(document["all_node_ids"]):
        raise OrchestratorValidationError("snapshot admits nodes it never saw")

    if not isinstance(document.get("scanned_at"), str):
        raise OrchestratorValidationError("snapshot.scanned_at must be an ISO timestamp")

    return document


def validate_allocation_document(document: Any) -> List[Dict[str, Any]]:
    if not isinstance(document, list):
        raise OrchestratorValidationError("allocation state must be a list")

    for entry in document:
        if not isinstance(entry, dict):
            raise OrchestratorValidationError("allocation entry must be a dict")
        if "module_name" not in entry or "allocated_total" not in entry:
            raise OrchestratorValidationError("allocation entry missing fields")
        if not isinstance(entry.get("per_node_allocation", {}), dict):
            raise OrchestratorValidationError("per_node_allocation must be a dict")

    return document


def validate_daemon_state_document(document: Any) -> Dict[str, Any]:
    if not isinstance(document, dict):
        raise OrchestratorValidationError("daemon state must be a dict")

    if not isinstance(document.get("statistics"), dict):
        raise OrchestratorValidationError("daemon state.statistics must be a dict")

    if not isinstance(document.get("started_at"), str):
        raise OrchestratorValidationError("daemon state.started_at must be an ISO timestamp")

    return document
