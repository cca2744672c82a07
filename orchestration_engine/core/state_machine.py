#orchestration_engine\core\state_machine.py

from orchestration_engine.core.errors import InvalidStateTransition
from orchestration_engine.core.models import ModuleLifecycleState


ALLOWED_TRANSITIONS = {
    ModuleLifecycleState.STOPPED: {
        ModuleLifecycleState.STARTING,
        ModuleLifecycleState.ERROR,
    },
    ModuleLifecycleState.STARTING: {
        ModuleLifecycleState.RUNNING,
        ModuleLifecycleState.PAUSED,
        ModuleLifecycleState.STOPPED,
        ModuleLifecycleState.ERROR,
    },
    ModuleLifecycleState.RUNNING: {
        ModuleLifecycleState.PAUSED,
        ModuleLifecycleState.STOPPED,
        ModuleLifecycleState.ERROR,
    },
    ModuleLifecycleState.PAUSED: {
        ModuleLifecycleState.RUNNING,
        ModuleLifecycleState.STOPPED,
        ModuleLifecycleState.ERROR,
    },
    ModuleLifecycleState.ERROR: {
        ModuleLifecycleState.STARTING,
        ModuleLifecycleState.STOPPED,
    },
}


class ModuleStateMachine:
    @staticmethod
    def can_transition(
        current: ModuleLifecycleState,
        new_state: ModuleLifecycleState,
    ) -> bool:
        if current == new_state:
            return True
        return new_state in ALLOWED_TRANSITIONS.get(current, set())

    @staticmethod
    def transition(
        current: ModuleLifecycleState,
        new_state: ModuleLifecycleState,
    ) -> ModuleLifecycleState:
        if not ModuleStateMachine.can_transition(current, new_state):
            raise InvalidStateTransition(
                f"Cannot transition from {current.value} to {new_state.value}"
            )
        return new_state
