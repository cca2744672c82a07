#tests\conftest.py

"""Pytest configuration and fixtures."""

import itertools
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Set, Tuple

import pytest

from orchestration_engine.infrastructure.memory.repository import InMemoryStateStore
from orchestration_engine.infrastructure.sql.database import create_db_engine, drop_db, get_session_factory, init_db
from orchestration_engine.launcher.base import ProcessHandle, ProcessLauncher
from orchestration_engine.mailbox.memory import InMemoryMailbox
from orchestration_engine.topology.graph import StaticNodeGraph


# ============================================
# TEST DOUBLES
# ============================================

class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class RecordingSleep:
    """Sleep replacement: records durations and advances the clock."""

    def __init__(self, clock: ManualClock):
        self.clock = clock
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        self.clock.advance(seconds)


class FakeLauncher(ProcessLauncher):
    """In-memory launcher; processes live until terminated or crashed."""

    def __init__(self):
        self._pids = itertools.count(1000)
        self.running: Set[ProcessHandle] = set()
        self.launches: List[Tuple[str, str, int, tuple]] = []
        self.terminated: List[ProcessHandle] = []
        self.failing_paths: Set[str] = set()

    def start(self, executable_path, node_id, thread_count, *args):
        self.launches.append((executable_path, node_id, thread_count, args))
        if executable_path in self.failing_paths:
            return None
        handle = ProcessHandle(node_id=node_id, pid=next(self._pids))
        self.running.add(handle)
        return handle

    def is_running(self, handle):
        return handle in self.running

    def terminate(self, handle):
        self.terminated.append(handle)
        self.running.discard(handle)
        return True

    def crash(self, handle):
        self.running.discard(handle)


# ============================================
# FIXTURES
# ============================================

@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def sleeper(clock):
    return RecordingSleep(clock)


@pytest.fixture
def store():
    """Fresh in-memory state store."""
    return InMemoryStateStore()


@pytest.fixture
def mailbox():
    return InMemoryMailbox(capacity=50)


@pytest.fixture
def launcher():
    return FakeLauncher()


@pytest.fixture
def topology_document() -> Dict:
    """
    home (primary, 128) -- n1 (64) -- n2 (32, not yet admitted)
                        \\- n3 (16, cannot be admitted)
    """
    return {
        "nodes": {
            "home": {"total_capacity": 128, "admitted": True, "primary": True, "neighbors": ["n1", "n3"]},
            "n1": {"total_capacity": 64, "used_capacity": 4, "admitted": True, "neighbors": ["n2"]},
            "n2": {"total_capacity": 32, "admitted": False, "elastic": True},
            "n3": {"total_capacity": 16, "admitted": False, "admittable": False, "eligible": True},
        }
    }


@pytest.fixture
def graph(topology_document):
    return StaticNodeGraph.from_dict(topology_document)


@pytest.fixture
def sql_engine(tmp_path):
    """SQLite database file in a temp directory with all tables created."""
    engine = create_db_engine(f"sqlite:///{tmp_path / 'orchestrator-test.db'}")
    init_db(engine)

    yield engine

    drop_db(engine)
    engine.dispose()


@pytest.fixture
def sql_session_factory(sql_engine):
    return get_session_factory(sql_engine)
