"""
Topology discovery - scans the node graph and detects changes.

Each scan:
1. Walks the graph breadth-first from the root node
2. Attempts admission on nodes that are not admitted yet
3. Records capacity for admitted nodes
4. Diffs against the previously persisted snapshot
5. Pushes task payloads to admitted worker nodes
6. Persists the new snapshot
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from orchestration_engine.core.errors import OrchestratorValidationError
from orchestration_engine.core.repository import StateStore
from orchestration_engine.core.validation import validate_snapshot_document
from orchestration_engine.topology.graph import NodeGraph, breadth_first
from orchestration_engine.topology.models import ChangeSet, TopologySnapshot

logger = logging.getLogger(__name__)

SNAPSHOT_KEY = "topology-snapshot"


@dataclass(frozen=True)
class ScanResult:
    """Outcome of one discovery pass."""
    snapshot: TopologySnapshot
    changes: ChangeSet
    provisioned_nodes: int


class TopologyDiscovery:
    """Discovers admitted nodes and their capacity."""

    def __init__(
        self,
        graph: NodeGraph,
        store: StateStore,
        *,
        root_node_id: str,
        payloads: Iterable[str] = (),
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._graph = graph
        self._store = store
        self.root_node_id = root_node_id
        self.payloads = list(payloads)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # ============================================
    # SCAN
    # ============================================

    def scan(self) -> ScanResult:
        """Full rescan: discover, admit, diff, provision, persist."""
        previous = self.load_snapshot()

        logger.info(f"[topology] Scanning node graph from '{self.root_node_id}'")

        all_nodes: List[str] = []
        admitted: List[str] = []
        eligible: List[str] = []
        elastic: List[str] = []
        capacities: Dict[str, Tuple[float, float]] = {}

        for node_id in breadth_first(self._graph, self.root_node_id):
            all_nodes.append(node_id)

            if self._graph.is_elastic(node_id):
                elastic.append(node_id)
            if self._graph.is_eligible(node_id):
                eligible.append(node_id)

            if not self._ensure_admitted(node_id):
                continue

            admitted.append(node_id)
            capacities[node_id] = self._read_capacity(node_id)

        total_capacity = sum(total for total, _ in capacities.values())
        total_available = sum(total - used for total, used in capacities.values())

        snapshot = TopologySnapshot(
            all_node_ids=tuple(all_nodes),
            admitted_node_ids=tuple(admitted),
            eligible_targets=tuple(eligible),
            elastic_node_ids=tuple(elastic),
            total_capacity=total_capacity,
            total_available_capacity=total_available,
            scanned_at=self._clock(),
        )

        logger.info(
            f"[topology] Found {len(all_nodes)} nodes, {len(admitted)} admitted, "
            f"{total_available:.2f}/{total_capacity:.2f} capacity available"
        )

        changes = ChangeSet.between(previous, snapshot)
        self._log_changes(changes)

        workers = [
            node_id for node_id in admitted
            if capacities[node_id][0] > 0 and not self._graph.is_primary(node_id)
        ]
        provisioned = self.distribute_payloads(workers)

        if not self.save_snapshot(snapshot):
            logger.error("[topology] Failed to persist topology snapshot")

        return ScanResult(snapshot=snapshot, changes=changes, provisioned_nodes=provisioned)

    def _ensure_admitted(self, node_id: str) -> bool:
        """Admit the node if needed. Any failure means not admitted this cycle."""
        try:
            if self._graph.is_admitted(node_id):
                return True

            self._graph.attempt_admission(node_id)
            if self._graph.is_admitted(node_id):
                logger.info(f"[topology] Admitted node {node_id}")
                return True
            return False
        except Exception as e:
            logger.warning(f"[topology] Admission attempt failed for {node_id}: {e}")
            return False

    def _read_capacity(self, node_id: str) -> Tuple[float, float]:
        total, used = self._graph.capacity(node_id)
        total = max(0.0, float(total))
        used = min(max(0.0, float(used)), total)
        return total, used

    def _log_changes(self, changes: ChangeSet) -> None:
        if changes.total_changes == 0:
            return
        logger.info(f"[topology] {changes.total_changes} change(s) detected")
        if changes.new_nodes:
            logger.info(f"[topology]   new nodes: {', '.join(changes.new_nodes)}")
        if changes.newly_admitted:
            logger.info(f"[topology]   newly admitted: {', '.join(changes.newly_admitted)}")
        if changes.newly_elastic:
            logger.info(f"[topology]   newly elastic: {', '.join(changes.newly_elastic)}")
        if changes.newly_eligible:
            logger.info(f"[topology]   newly eligible: {', '.join(changes.newly_eligible)}")

    # ============================================
    # PAYLOAD DISTRIBUTION
    # ============================================

    def distribute_payloads(self, node_ids: Iterable[str]) -> int:
        """
        Push every configured payload to each node that lacks it.

        Returns the number of nodes that hold all payloads afterwards.
        """
        if not self.payloads:
            return 0

        provisioned = 0
        for node_id in node_ids:
            complete = True
            for payload in self.payloads:
                try:
                    if self._graph.has_payload(node_id, payload):
                        continue
                    if not self._graph.push_payload(node_id, payload):
                        logger.warning(f"[topology] Failed to push {payload} to {node_id}")
                        complete = False
                except Exception as e:
                    logger.error(f"[topology] Error pushing {payload} to {node_id}: {e}")
                    complete = False

            if complete:
                provisioned += 1

        logger.info(f"[topology] Payloads present on {provisioned} node(s)")
        return provisioned

    # ============================================
    # PERSISTENCE
    # ============================================

    def load_snapshot(self) -> Optional[TopologySnapshot]:
        """Last persisted snapshot, or None if absent or malformed."""
        document = self._store.read(SNAPSHOT_KEY, None)
        if document is None:
            return None

        try:
            validate_snapshot_document(document)
            return TopologySnapshot.from_dict(document)
        except (OrchestratorValidationError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"[topology] Invalid snapshot structure, ignoring: {e}")
            return None

    def save_snapshot(self, snapshot: TopologySnapshot) -> bool:
        return self._store.write(SNAPSHOT_KEY, snapshot.to_dict())

    # ============================================
    # UTILITIES
    # ============================================

    def needs_rescan(self, max_age_seconds: float) -> bool:
        snapshot = self.load_snapshot()
        if snapshot is None:
            return True
        return (self._clock() - snapshot.scanned_at).total_seconds() > max_age_seconds

    def summary(self, snapshot: Optional[TopologySnapshot] = None) -> str:
        snapshot = snapshot or self.load_snapshot()
        if snapshot is None:
            return "No topology snapshot available. Run scan() first."

        age_minutes = int((self._clock() - snapshot.scanned_at).total_seconds() // 60)
        lines = [
            "=== Topology Summary ===",
            f"Last scan: {age_minutes} minutes ago",
            f"Total nodes: {len(snapshot.all_node_ids)}",
            f"Admitted nodes: {len(snapshot.admitted_node_ids)}",
            f"Eligible targets: {len(snapshot.eligible_targets)}",
            f"Elastic nodes: {len(snapshot.elastic_node_ids)}",
            f"Available capacity: {snapshot.total_available_capacity:.2f}",
            "========================",
        ]
        return "\n".join(lines)
