#orchestration_engine\container.py

"""Dependency injection container - wires all services together."""

from orchestration_engine.config.settings import OrchestratorSettings, settings
from orchestration_engine.daemon.builtin import load_manifest
from orchestration_engine.daemon.loop import OrchestratorDaemon
from orchestration_engine.infrastructure.sql.database import SessionLocal
from orchestration_engine.infrastructure.sql.repository import SqlStateStore
from orchestration_engine.launcher.subprocess_launcher import SubprocessLauncher
from orchestration_engine.mailbox.sql import SqlMailbox
from orchestration_engine.topology.agent_graph import AgentNodeGraph
from orchestration_engine.topology.graph import NodeGraph, StaticNode, StaticNodeGraph


def build_graph(config: OrchestratorSettings) -> NodeGraph:
    """
    Topology source, in order of preference: agent URLs, a static
    topology file, or a single local node.
    """
    if config.agent_urls:
        return AgentNodeGraph(config.agent_urls, admission_token=config.admission_token)

    if config.topology_file:
        return StaticNodeGraph.from_file(config.topology_file)

    graph = StaticNodeGraph()
    graph.add_node(StaticNode(
        node_id=config.root_node_id,
        total_capacity=config.local_capacity,
        admitted=True,
        primary=config.root_node_id == config.primary_node_id,
    ))
    return graph


# ============================================
# INFRASTRUCTURE
# ============================================

state_store = SqlStateStore(SessionLocal)
mailbox = SqlMailbox(SessionLocal, capacity=settings.mailbox_capacity)
launcher = SubprocessLauncher(node_id=settings.primary_node_id)


# ============================================
# DAEMON
# ============================================

def build_daemon() -> OrchestratorDaemon:
    return OrchestratorDaemon(
        state_store,
        mailbox,
        launcher,
        build_graph(settings),
        root_node_id=settings.root_node_id,
        primary_node_id=settings.primary_node_id,
        payloads=settings.payloads,
        builtin_modules=load_manifest(settings.modules_manifest),
    )
