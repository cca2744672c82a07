"""Process launcher contract."""

from abc import ABC, abstractmethod
from typing import Optional

from orchestration_engine.core.models import ProcessHandle

__all__ = ["ProcessHandle", "ProcessLauncher"]


class ProcessLauncher(ABC):
    """
    Starts, probes and stops module executables on a node.

    The orchestrator treats the returned handle as opaque.
    """

    @abstractmethod
    def start(
        self,
        executable_path: str,
        node_id: str,
        thread_count: int,
        *args: str,
    ) -> Optional[ProcessHandle]:
        """Launch an executable. Returns None when the launch failed."""
        raise NotImplementedError

    @abstractmethod
    def is_running(self, handle: ProcessHandle) -> bool:
        raise NotImplementedError

    @abstractmethod
    def terminate(self, handle: ProcessHandle) -> bool:
        """Forcefully stop the process. True if it is gone afterwards."""
        raise NotImplementedError
