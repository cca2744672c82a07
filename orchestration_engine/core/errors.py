# orchestration_engine/core/errors.py

# -----------------------------
# Base Errors
# -----------------------------

class OrchestratorError(Exception):
    """Base class for all orchestrator errors."""
    pass


# -----------------------------
# Validation / Domain Errors
# -----------------------------

class OrchestratorValidationError(OrchestratorError):
    """Invalid input or malformed record."""
    pass


class InvalidStateTransition(OrchestratorError):
    """Illegal module lifecycle transition attempted."""
    pass


# -----------------------------
# Registry Errors
# -----------------------------

class ModuleNotRegistered(OrchestratorError):
    pass


# -----------------------------
# Process Errors
# -----------------------------

class LaunchError(OrchestratorError):
    """Executable could not be started on the requested node."""
    pass
