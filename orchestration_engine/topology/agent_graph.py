# orchestration_engine/topology/agent_graph.py
"""Node graph backed by node agents over HTTP."""

import logging
import os
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from node_agent.client import NodeAgentClient
from orchestration_engine.topology.graph import NodeGraph

logger = logging.getLogger(__name__)


class AgentNodeGraph(NodeGraph):
    """
    Each node runs a node agent; agent_urls maps node_id -> base URL.

    Node info is cached for info_ttl seconds so one scan costs one /info
    call per node. Unreachable nodes look unadmitted with no capacity.
    """

    def __init__(
        self,
        agent_urls: Dict[str, str],
        *,
        admission_token: Optional[str] = None,
        info_ttl: float = 5.0,
        client_factory: Callable[[str], NodeAgentClient] = NodeAgentClient,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.agent_urls = dict(agent_urls)
        self.admission_token = admission_token
        self.info_ttl = info_ttl
        self._clients: Dict[str, NodeAgentClient] = {}
        self._client_factory = client_factory
        self._monotonic = monotonic
        self._cache: Dict[str, Tuple[float, Dict[str, Any]]] = {}

    def _get_client(self, node_id: str) -> Optional[NodeAgentClient]:
        """Get or create agent client for given node."""
        url = self.agent_urls.get(node_id)
        if url is None:
            return None
        if node_id not in self._clients:
            self._clients[node_id] = self._client_factory(url)
        return self._clients[node_id]

    def _info(self, node_id: str) -> Dict[str, Any]:
        cached = self._cache.get(node_id)
        now = self._monotonic()
        if cached is not None and now - cached[0] < self.info_ttl:
            return cached[1]

        client = self._get_client(node_id)
        info = client.get_node_info() if client is not None else None
        if info is None:
            info = {}
        self._cache[node_id] = (now, info)
        return info

    def invalidate(self, node_id: Optional[str] = None) -> None:
        if node_id is None:
            self._cache.clear()
        else:
            self._cache.pop(node_id, None)

    # ============================================
    # NodeGraph
    # ============================================

    def neighbors(self, node_id: str) -> List[str]:
        return list(self._info(node_id).get("neighbors", []))

    def is_admitted(self, node_id: str) -> bool:
        return bool(self._info(node_id).get("admitted", False))

    def attempt_admission(self, node_id: str) -> bool:
        client = self._get_client(node_id)
        if client is None:
            return False
        admitted = client.request_admission(self.admission_token)
        self.invalidate(node_id)
        return admitted

    def capacity(self, node_id: str) -> Tuple[float, float]:
        info = self._info(node_id)
        return float(info.get("total_capacity", 0.0)), float(info.get("used_capacity", 0.0))

    def is_primary(self, node_id: str) -> bool:
        return bool(self._info(node_id).get("is_primary", False))

    def is_elastic(self, node_id: str) -> bool:
        return bool(self._info(node_id).get("is_elastic", False))

    def is_eligible(self, node_id: str) -> bool:
        return bool(self._info(node_id).get("is_eligible", False))

    def has_payload(self, node_id: str, payload: str) -> bool:
        client = self._get_client(node_id)
        if client is None:
            return False
        return client.has_payload(os.path.basename(payload))

    def push_payload(self, node_id: str, payload: str) -> bool:
        """Upload a local payload file under its base name."""
        client = self._get_client(node_id)
        if client is None:
            return False

        try:
            with open(payload, "r", encoding="utf-8") as f:
                content = f.read()
        except OSError as e:
            logger.error(f"[topology] Cannot read payload {payload}: {e}")
            return False

        pushed = client.upload_payload(os.path.basename(payload), content)
        if pushed:
            self.invalidate(node_id)
        return pushed
