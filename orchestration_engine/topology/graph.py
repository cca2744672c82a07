"""Node graph contract and the statically declared implementation."""

import json
import logging
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Set, Tuple

from orchestration_engine.core.errors import OrchestratorValidationError

logger = logging.getLogger(__name__)


class NodeGraph(ABC):
    """
    Read/act contract over the compute-node graph.

    Admission itself is performed by the implementation; discovery only
    asks whether a node is admitted and, if not, asks for an attempt.
    """

    @abstractmethod
    def neighbors(self, node_id: str) -> List[str]:
        raise NotImplementedError

    @abstractmethod
    def is_admitted(self, node_id: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def attempt_admission(self, node_id: str) -> bool:
        """Try to admit the node. May raise; callers treat that as not admitted."""
        raise NotImplementedError

    @abstractmethod
    def capacity(self, node_id: str) -> Tuple[float, float]:
        """Return (total, used) capacity as reported by the node."""
        raise NotImplementedError

    @abstractmethod
    def is_primary(self, node_id: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def is_elastic(self, node_id: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def is_eligible(self, node_id: str) -> bool:
        """Whether modules are permitted to act on this node as a target."""
        raise NotImplementedError

    @abstractmethod
    def has_payload(self, node_id: str, payload: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def push_payload(self, node_id: str, payload: str) -> bool:
        raise NotImplementedError


def breadth_first(graph: NodeGraph, root: str) -> Iterator[str]:
    """Yield every node reachable from root exactly once, BFS order."""
    visited: Set[str] = set()
    queue = deque([root])

    while queue:
        node_id = queue.popleft()
        if node_id in visited:
            continue
        visited.add(node_id)

        yield node_id

        for neighbor in graph.neighbors(node_id):
            if neighbor not in visited:
                queue.append(neighbor)


# ============================================
# STATIC GRAPH
# ============================================

@dataclass
class StaticNode:
    """Declared node in a static topology."""
    node_id: str
    total_capacity: float = 0.0
    used_capacity: float = 0.0
    admitted: bool = False
    admittable: bool = True
    primary: bool = False
    elastic: bool = False
    eligible: bool = False
    neighbors: List[str] = field(default_factory=list)
    payloads: Set[str] = field(default_factory=set)


class StaticNodeGraph(NodeGraph):
    """
    Node graph declared up front (topology file or dict).

    Used for single-host pools and for tests. Edges are undirected.
    """

    def __init__(self):
        self._nodes: Dict[str, StaticNode] = {}

    # -------------------------
    # CONSTRUCTION
    # -------------------------

    def add_node(self, node: StaticNode) -> None:
        if node.node_id in self._nodes:
            raise OrchestratorValidationError(f"Duplicate node '{node.node_id}'")
        self._nodes[node.node_id] = node

    def connect(self, a: str, b: str) -> None:
        for node_id in (a, b):
            if node_id not in self._nodes:
                raise OrchestratorValidationError(f"Unknown node '{node_id}'")
        if b not in self._nodes[a].neighbors:
            self._nodes[a].neighbors.append(b)
        if a not in self._nodes[b].neighbors:
            self._nodes[b].neighbors.append(a)

    @staticmethod
    def from_dict(document: Dict[str, Any]) -> "StaticNodeGraph":
        """
        Build a graph from a topology document:

            {"nodes": {"home": {"total_capacity": 64, "primary": true,
                                "admitted": true, "neighbors": ["n1"]}, ...}}
        """
        nodes = document.get("nodes")
        if not isinstance(nodes, dict):
            raise OrchestratorValidationError("topology.nodes must be a dict")

        graph = StaticNodeGraph()
        edges = []
        for node_id, entry in nodes.items():
            entry = entry or {}
            graph.add_node(StaticNode(
                node_id=node_id,
                total_capacity=float(entry.get("total_capacity", 0.0)),
                used_capacity=float(entry.get("used_capacity", 0.0)),
                admitted=bool(entry.get("admitted", False)),
                admittable=bool(entry.get("admittable", True)),
                primary=bool(entry.get("primary", False)),
                elastic=bool(entry.get("elastic", False)),
                eligible=bool(entry.get("eligible", False)),
                payloads=set(entry.get("payloads", [])),
            ))
            edges.extend((node_id, neighbor) for neighbor in entry.get("neighbors", []))

        for a, b in edges:
            graph.connect(a, b)

        return graph

    @staticmethod
    def from_file(path: str) -> "StaticNodeGraph":
        with open(path, "r", encoding="utf-8") as f:
            document = json.load(f)
        logger.info(f"[topology] Loaded static topology from {path}")
        return StaticNodeGraph.from_dict(document)

    def node(self, node_id: str) -> StaticNode:
        try:
            return self._nodes[node_id]
        except KeyError:
            raise OrchestratorValidationError(f"Unknown node '{node_id}'") from None

    # -------------------------
    # NodeGraph
    # -------------------------

    def neighbors(self, node_id: str) -> List[str]:
        return list(self.node(node_id).neighbors)

    def is_admitted(self, node_id: str) -> bool:
        return self.node(node_id).admitted

    def attempt_admission(self, node_id: str) -> bool:
        node = self.node(node_id)
        if node.admittable:
            node.admitted = True
        return node.admitted

    def capacity(self, node_id: str) -> Tuple[float, float]:
        node = self.node(node_id)
        return node.total_capacity, node.used_capacity

    def is_primary(self, node_id: str) -> bool:
        return self.node(node_id).primary

    def is_elastic(self, node_id: str) -> bool:
        return self.node(node_id).elastic

    def is_eligible(self, node_id: str) -> bool:
        return self.node(node_id).eligible

    def has_payload(self, node_id: str, payload: str) -> bool:
        return payload in self.node(node_id).payloads

    def push_payload(self, node_id: str, payload: str) -> bool:
        self.node(node_id).payloads.add(payload)
        return True
