"""
Agent graph compiler.
Compiles a stored graph snapshot into an executable LangGraph.

ARCHITECTURAL RULES:
====================
1. LangGraph OWNS: node stepping, state merging, edge traversal
2. This compiler OWNS: validation, node construction, edge wiring
3. Supervisors route through ONE conditional edge each; stored edges that
   leave a supervisor are ignored
4. Compilation is atomic: any failure raises and no graph is returned

SUPPORTED NODE TYPES:
=====================
- worker: ReAct agent over input_key -> output_key
- tool: single MCP tool call mapped to and from state keys
- supervisor: LLM router over a member list, FINISH ends the graph
  (worker members talk through the shared "messages" history)
"""
import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional

from langgraph.graph import END, StateGraph

from agentlib.config import settings
from agentlib.exceptions import BuildError, ConfigError, GraphBackendError, NodeTimeoutError
from agentlib.imageutil import prepare_image_for_service
from agentlib.llm_factory import ClientFactory, LLMFactory, ModelClientArena
from agentlib.mcp_client import ToolTransport
from agentlib.types import END_NODE, Snapshot, SnapshotNode

from .configs import NodeKind, SupervisorConfig, classify_node, normalize_node_type, parse_supervisor_config
from .node_input import ImagePreparer
from .nodes.agent import AgentBuilder, build_reasoning_agent
from .nodes.base import CompiledNode, StepFn
from .nodes.supervisor import SupervisorRoutingResult, build_supervisor_routing_node
from .nodes.tool import build_tool_node, tool_node_state_keys
from .nodes.worker import build_supervisor_member_worker_node, build_worker_node
from .state import (
    MESSAGES_KEY,
    REDUCER_APPEND,
    SUPERVISOR_ITERATION_KEY,
    SUPERVISOR_NEXT_KEY,
    build_state_schema,
    parse_state_schema,
)
from .validator import validate_snapshot

logger = logging.getLogger(__name__)


def with_timeout(node_key: str, fn: StepFn, timeout_seconds: float) -> StepFn:
    """Wrap a step function so it is cancelled after ``timeout_seconds``."""

    async def run(state: Dict[str, Any]) -> Dict[str, Any]:
        try:
            return await asyncio.wait_for(fn(state), timeout=timeout_seconds)
        except asyncio.TimeoutError as e:
            logger.error(f"[COMPILER] node={node_key} timed out after {timeout_seconds:g}s")
            raise NodeTimeoutError(node_key, timeout_seconds) from e

    return run


class GraphCompiler:
    """
    Compiles agent graph snapshots to executable LangGraph graphs.

    Collaborators are injected so tests and callers can swap the model
    client factory, the reasoning agent and the image preparer.
    """

    def __init__(
        self,
        client_factory: Optional[ClientFactory] = None,
        agent_builder: AgentBuilder = build_reasoning_agent,
        image_preparer: ImagePreparer = prepare_image_for_service,
    ):
        self.client_factory = client_factory or LLMFactory().build_client
        self.agent_builder = agent_builder
        self.image_preparer = image_preparer

    def compile(
        self,
        snapshot: Snapshot,
        tool_transport: Optional[ToolTransport] = None,
        state_keys: Optional[Iterable[str]] = None,
    ) -> Any:
        """
        Compile a snapshot into an executable graph.

        Args:
            snapshot: Stored graph description
            tool_transport: MCP transport for tool nodes and worker tools
            state_keys: Extra state keys to carry (e.g. initial state keys)

        Returns:
            Compiled LangGraph graph

        Raises:
            ValidationError, ConfigError, BuildError
        """
        validate_snapshot(snapshot)
        meta = snapshot.agent_graph
        nodes: List[SnapshotNode] = list(snapshot.nodes)
        logger.info(f"[COMPILER] Compiling graph {meta.id or meta.name!r} with {len(nodes)} nodes")

        reducers = parse_state_schema(meta.state_schema)
        supervisor_configs = self._collect_supervisors(nodes)
        if supervisor_configs:
            reducers[MESSAGES_KEY] = REDUCER_APPEND
        member_of: Dict[str, str] = {}
        for sup_key, cfg in supervisor_configs.items():
            for member in cfg.members:
                member_of[member] = sup_key

        arena = ModelClientArena(self.client_factory)
        model_clients: Dict[str, Any] = {}
        for snapshot_node in nodes:
            if snapshot_node.model is not None:
                model_clients[snapshot_node.node.node_key] = arena.get(
                    snapshot_node.model.provider, snapshot_node.model.name
                )
        logger.info(f"[COMPILER] {len(arena)} model client(s) for {len(model_clients)} node(s)")

        built: Dict[str, CompiledNode] = {}
        timeouts: Dict[str, float] = {}
        state_key_set = set(state_keys or ())

        # Pass 1: workers, member workers and tool nodes.
        for snapshot_node in nodes:
            node = snapshot_node.node
            key = node.node_key
            kind = classify_node(key, node.node_type, member_of)
            if kind == NodeKind.SUPERVISOR:
                continue
            model = model_clients.get(key)
            if kind == NodeKind.SUPERVISOR_MEMBER:
                built[key] = build_supervisor_member_worker_node(
                    snapshot_node, model, tool_transport, self.agent_builder
                )
            elif kind == NodeKind.WORKER:
                built[key] = build_worker_node(
                    snapshot_node, model, tool_transport, self.agent_builder, self.image_preparer
                )
            else:
                built[key] = build_tool_node(snapshot_node, tool_transport)
                state_key_set.update(tool_node_state_keys(snapshot_node))
            if key in member_of:
                timeouts[key] = settings.member_worker_timeout_seconds
            else:
                timeouts[key] = settings.default_node_timeout_seconds
            state_key_set.update(k for k in (node.input_key, node.output_key) if k)

        # Pass 2: supervisor routing units.
        routing: Dict[str, SupervisorRoutingResult] = {}
        for snapshot_node in nodes:
            node = snapshot_node.node
            key = node.node_key
            if key not in supervisor_configs:
                continue
            result = build_supervisor_routing_node(
                snapshot_node,
                model_clients.get(key),
                supervisor_configs[key],
                self.image_preparer,
            )
            routing[key] = result
            built[key] = result.routing_node
            timeouts[key] = result.routing_timeout
            state_key_set.update(k for k in (node.input_key, node.output_key) if k)

        if supervisor_configs:
            state_key_set.update((SUPERVISOR_NEXT_KEY, SUPERVISOR_ITERATION_KEY))
        state_key_set.add(MESSAGES_KEY)
        state_class = build_state_schema(reducers, sorted(state_key_set))

        graph = StateGraph(state_class)
        for snapshot_node in nodes:
            key = snapshot_node.node.node_key
            compiled_node = built[key]
            try:
                graph.add_node(
                    compiled_node.name,
                    with_timeout(key, compiled_node.fn, timeouts[key]),
                    metadata={"description": compiled_node.description},
                )
            except ValueError as e:
                raise BuildError(f"failed to add node {key!r}: {e}") from e

        graph.set_entry_point(meta.entry_node)

        for sup_key, result in routing.items():
            path_map = {member: member for member in result.members}
            path_map[END] = END
            try:
                graph.add_conditional_edges(sup_key, result.conditional_edge_fn, path_map)
            except ValueError as e:
                raise BuildError(f"failed to add routing edge for supervisor {sup_key!r}: {e}") from e
            for member in result.members:
                self._add_edge(graph, member, sup_key)

        for edge in snapshot.edges:
            if edge.from_node in routing:
                continue
            target = END if edge.to_node == END_NODE else edge.to_node
            self._add_edge(graph, edge.from_node, target)

        try:
            compiled = graph.compile()
        except GraphBackendError:
            raise
        except Exception as e:
            raise BuildError(f"failed to compile graph: {e}") from e
        logger.info(
            f"[COMPILER] Compiled graph {meta.id or meta.name!r}: "
            f"{len(built)} nodes, {len(routing)} supervisor(s)"
        )
        return compiled

    @staticmethod
    def _add_edge(graph: StateGraph, from_node: str, to_node: str) -> None:
        try:
            graph.add_edge(from_node, to_node)
        except ValueError as e:
            raise BuildError(f"failed to add edge {from_node!r} -> {to_node!r}: {e}") from e

    @staticmethod
    def _collect_supervisors(nodes: List[SnapshotNode]) -> Dict[str, SupervisorConfig]:
        """Parse supervisor configs strictly and check member ownership."""
        node_types = {n.node.node_key: normalize_node_type(n.node.node_type) for n in nodes}
        configs: Dict[str, SupervisorConfig] = {}
        owner: Dict[str, str] = {}
        for snapshot_node in nodes:
            key = snapshot_node.node.node_key
            if node_types[key] != NodeKind.SUPERVISOR.value:
                continue
            cfg = parse_supervisor_config(key, snapshot_node.node.config)
            for member in cfg.members:
                if member == key:
                    raise ConfigError(f"supervisor node {key!r} cannot list itself as a member")
                if member not in node_types:
                    raise BuildError(f"supervisor node {key!r}: unknown member {member!r}")
                if node_types[member] == NodeKind.SUPERVISOR.value:
                    raise BuildError(f"supervisor node {key!r}: member {member!r} is itself a supervisor")
                if member in owner:
                    raise BuildError(
                        f"worker {member!r} is a member of multiple supervisors: {owner[member]!r} and {key!r}"
                    )
                owner[member] = key
            configs[key] = cfg
        return configs
