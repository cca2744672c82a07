# orchestration_engine/infrastructure/memory/repository.py

import copy
import json
from threading import Lock
from typing import Any

from orchestration_engine.core.repository import StateStore


class InMemoryStateStore(StateStore):
    """Dict-backed store. Values round-trip through JSON like the SQL store."""

    def __init__(self):
        self._store: dict[str, str] = {}
        self._lock = Lock()

    def read(self, key: str, default: Any = None) -> Any:
        with self._lock:
            raw = self._store.get(key)
        if raw is None:
            return copy.deepcopy(default)
        return json.loads(raw)

    def write(self, key: str, value: Any) -> bool:
        raw = json.dumps(value, default=str)
        with self._lock:
            self._store[key] = raw
        return True
