# orchestration_engine/core/repository.py

from abc import ABC, abstractmethod
from typing import Any, Dict


class StateStore(ABC):
    """
    Persistence contract for orchestrator state.

    A namespaced key -> JSON document store. Implementations catch their own
    I/O errors and report them through the return value.
    """

    @abstractmethod
    def read(self, key: str, default: Any = None) -> Any:
        """
        Fetch the document stored under key.
        Returns default if the key is absent or unreadable.
        """
        raise NotImplementedError

    @abstractmethod
    def write(self, key: str, value: Any) -> bool:
        """
        Replace the document stored under key.
        Returns True on success.
        """
        raise NotImplementedError

    def update(self, key: str, partial: Dict[str, Any]) -> bool:
        """
        Shallow-merge partial into the document stored under key.
        A missing or non-dict document is treated as empty.
        """
        current = self.read(key, {})
        if not isinstance(current, dict):
            current = {}
        return self.write(key, {**current, **partial})
