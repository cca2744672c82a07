#tests\test_state_store.py

"""Test state store implementations."""

import pytest

from orchestration_engine.infrastructure.memory.repository import InMemoryStateStore
from orchestration_engine.infrastructure.sql.repository import SqlStateStore


@pytest.fixture(params=["memory", "sql"])
def any_store(request, sql_session_factory):
    if request.param == "memory":
        return InMemoryStateStore()
    return SqlStateStore(sql_session_factory)


class TestStateStore:
    """Test read / write / update on every backend."""

    def test_missing_key_returns_default(self, any_store):
        assert any_store.read("missing") is None
        assert any_store.read("missing", []) == []

    def test_write_then_read(self, any_store):
        document = {"modules": {"a": {"priority": 1}}, "last_update": "2025-01-01T00:00:00+00:00"}

        assert any_store.write("module-registry", document)
        assert any_store.read("module-registry") == document

    def test_overwrite(self, any_store):
        any_store.write("k", [1, 2])
        any_store.write("k", [3])

        assert any_store.read("k") == [3]

    def test_update_shallow_merges(self, any_store):
        any_store.write("cfg", {"a": 1, "nested": {"x": 1}})

        assert any_store.update("cfg", {"b": 2, "nested": {"y": 2}})

        assert any_store.read("cfg") == {"a": 1, "b": 2, "nested": {"y": 2}}

    def test_update_on_missing_key(self, any_store):
        any_store.update("fresh", {"a": 1})
        assert any_store.read("fresh") == {"a": 1}

    def test_returned_default_is_a_copy(self):
        store = InMemoryStateStore()
        default = {"a": []}

        store.read("missing", default)["a"].append(1)

        assert default == {"a": []}


class TestSqlStateStoreFailures:
    """Test SQL errors are reported, not raised."""

    def test_read_without_tables_returns_default(self, tmp_path):
        from orchestration_engine.infrastructure.sql.database import create_db_engine, get_session_factory

        engine = create_db_engine(f"sqlite:///{tmp_path / 'empty.db'}")
        store = SqlStateStore(get_session_factory(engine))

        assert store.read("anything", "fallback") == "fallback"
        assert store.write("anything", {"a": 1}) is False

        engine.dispose()
