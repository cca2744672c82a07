#tests\test_node_agent.py

"""Test the node agent API, its client and the agent-backed graph."""

import hashlib

import pytest
import requests
from fastapi.testclient import TestClient

from node_agent import client as client_module
from node_agent.client import NodeAgentClient
from node_agent.server import create_app
from node_agent.settings import AgentSettings
from orchestration_engine.allocator.allocator import build_capacity_pool
from orchestration_engine.topology.agent_graph import AgentNodeGraph
from orchestration_engine.topology.discovery import TopologyDiscovery


@pytest.fixture
def agent_settings(tmp_path):
    return AgentSettings(
        node_id="n1",
        total_capacity=64,
        used_capacity=4,
        neighbors=["n2"],
        admission_token="secret",
        payload_dir=str(tmp_path / "payloads"),
    )


@pytest.fixture
def api(agent_settings):
    return TestClient(create_app(agent_settings))


# ============================================
# SERVER
# ============================================

class TestAgentApi:
    """Test node agent endpoints."""

    def test_health(self, api):
        response = api.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "node_id": "n1"}

    def test_info(self, api):
        info = api.get("/info").json()

        assert info["node_id"] == "n1"
        assert info["total_capacity"] == 64
        assert info["used_capacity"] == 4
        assert info["admitted"] is False
        assert info["neighbors"] == ["n2"]
        assert info["payloads"] == []

    def test_admission_requires_token(self, api):
        assert api.post("/admission", json={"token": "wrong"}).status_code == 403
        assert api.get("/info").json()["admitted"] is False

        response = api.post("/admission", json={"token": "secret"})

        assert response.status_code == 200
        assert response.json() == {"node_id": "n1", "admitted": True}
        assert api.get("/info").json()["admitted"] is True

    def test_admission_without_configured_token(self, tmp_path):
        api = TestClient(create_app(AgentSettings(node_id="n2", payload_dir=str(tmp_path))))

        assert api.post("/admission", json={}).json()["admitted"] is True

    def test_payload_upload(self, api):
        response = api.put("/payloads/worker.py", json={"content": "print('hi')\n"})

        assert response.status_code == 200
        body = response.json()
        assert body["size"] == len("print('hi')\n")
        assert body["sha256"] == hashlib.sha256(b"print('hi')\n").hexdigest()

        assert api.get("/payloads/worker.py").status_code == 200
        assert api.get("/info").json()["payloads"] == ["worker.py"]

    def test_missing_payload(self, api):
        assert api.get("/payloads/nothing.py").status_code == 404

    def test_invalid_payload_name(self, api):
        assert api.put("/payloads/evil%5Cname.py", json={"content": "x"}).status_code == 400
        assert api.get("/payloads/evil%5Cname.py").status_code == 400


# ============================================
# CLIENT
# ============================================

class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload or {}

    def json(self):
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")


class TestNodeAgentClient:
    """Test the requests-based client with the transport stubbed out."""

    def test_get_node_info(self, monkeypatch):
        monkeypatch.setattr(
            client_module.requests, "get",
            lambda url, timeout: FakeResponse(200, {"node_id": "n1"}),
        )

        assert NodeAgentClient("http://n1:9000/").get_node_info() == {"node_id": "n1"}

    def test_unreachable_agent(self, monkeypatch):
        def refuse(*args, **kwargs):
            raise requests.exceptions.ConnectionError("refused")

        monkeypatch.setattr(client_module.requests, "get", refuse)
        client = NodeAgentClient("http://n1:9000")

        assert client.get_node_info() is None
        assert client.health_check() is False
        assert client.has_payload("worker.py") is False

    def test_admission_refused(self, monkeypatch):
        monkeypatch.setattr(client_module.requests, "post", lambda *a, **kw: FakeResponse(403))
        assert NodeAgentClient("http://n1:9000").request_admission("bad") is False

    def test_admission_unreachable_raises(self, monkeypatch):
        def timeout(*args, **kwargs):
            raise requests.exceptions.Timeout("slow")

        monkeypatch.setattr(client_module.requests, "post", timeout)
        with pytest.raises(RuntimeError):
            NodeAgentClient("http://n1:9000").request_admission()

    def test_admission_server_error_raises(self, monkeypatch):
        monkeypatch.setattr(client_module.requests, "post", lambda *a, **kw: FakeResponse(500))
        with pytest.raises(RuntimeError):
            NodeAgentClient("http://n1:9000").request_admission()

    def test_upload_failure(self, monkeypatch):
        monkeypatch.setattr(client_module.requests, "put", lambda *a, **kw: FakeResponse(500))
        assert NodeAgentClient("http://n1:9000").upload_payload("worker.py", "x") is False


# ============================================
# AGENT GRAPH
# ============================================

class FakeAgent:
    """Stands in for NodeAgentClient, backed by a dict. info=None means unreachable."""

    def __init__(self, info, token=None):
        self.info = info
        self.token = token
        self.payloads = {}
        self.info_calls = 0

    def get_node_info(self):
        self.info_calls += 1
        if self.info is None:
            return None
        return {**self.info, "payloads": sorted(self.payloads)}

    def request_admission(self, token=None):
        if self.info is None:
            raise RuntimeError("Cannot connect to node agent")
        if self.token is not None and token != self.token:
            return False
        self.info["admitted"] = True
        return True

    def has_payload(self, name):
        return name in self.payloads

    def upload_payload(self, name, content):
        self.payloads[name] = content
        return True


@pytest.fixture
def agents():
    return {
        "home": FakeAgent({"total_capacity": 128, "admitted": True, "is_primary": True, "neighbors": ["n1", "n9"]}),
        "n1": FakeAgent({"total_capacity": 64, "used_capacity": 4, "admitted": False}, token="secret"),
        "n9": FakeAgent(None),
    }


@pytest.fixture
def agent_graph(agents):
    urls = {node_id: f"http://{node_id}:9000" for node_id in agents}
    by_url = {url: agents[node_id] for node_id, url in urls.items()}
    return AgentNodeGraph(
        urls,
        admission_token="secret",
        client_factory=lambda url: by_url[url],
        monotonic=lambda: 0.0,
    )


class TestAgentNodeGraph:
    """Test the HTTP-backed graph with fake agent clients."""

    def test_node_info_cached(self, agent_graph, agents):
        agent_graph.capacity("home")
        agent_graph.is_primary("home")

        assert agents["home"].info_calls == 1

    def test_unreachable_node_looks_empty(self, agent_graph):
        assert agent_graph.capacity("n9") == (0.0, 0.0)
        assert agent_graph.neighbors("n9") == []
        assert not agent_graph.is_admitted("n9")

    def test_unknown_node(self, agent_graph):
        assert not agent_graph.attempt_admission("nowhere")
        assert agent_graph.neighbors("nowhere") == []

    def test_admission_invalidates_cache(self, agent_graph):
        assert not agent_graph.is_admitted("n1")

        assert agent_graph.attempt_admission("n1")

        assert agent_graph.is_admitted("n1")

    def test_scan_and_pool(self, agent_graph, store, clock, tmp_path):
        payload = tmp_path / "worker.py"
        payload.write_text("print('work')\n")
        discovery = TopologyDiscovery(
            agent_graph, store, root_node_id="home", payloads=[str(payload)], clock=clock,
        )

        result = discovery.scan()

        assert result.snapshot.all_node_ids == ("home", "n1", "n9")
        assert set(result.snapshot.admitted_node_ids) == {"home", "n1"}
        assert agent_graph.has_payload("n1", str(payload))

        pool = build_capacity_pool(agent_graph, "home", 32)
        assert {node.node_id: node.available_capacity for node in pool} == {"home": 96.0, "n1": 60.0}

    def test_missing_payload_file(self, agent_graph):
        assert not agent_graph.push_payload("n1", "/does/not/exist.py")
