"""
Agent Graph Repository

Loads a stored agent graph into a Snapshot for compilation. Read-only.
"""

import logging
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from agentlib.models import AgentGraph, AgentGraphEdge, AgentGraphNode, AgentGraphNodeTool
from agentlib.types import GraphEdge, GraphMeta, GraphNode, ModelRef, Snapshot, SnapshotNode, ToolRef

logger = logging.getLogger(__name__)


class GraphRepository:
    """
    Repository for reading agent graph definitions.

    Snapshot ordering is deterministic so that compiling the same stored
    graph twice yields the same node and edge registration order:
        - nodes by node_key
        - tools of a node by (name, id)
        - edges by (from_node, to_node)
    """

    async def load_snapshot(
        self,
        db: AsyncSession,
        graph_id: str
    ) -> Optional[Snapshot]:
        """
        Load one graph with its nodes, models, tools and edges.

        Args:
            db: Async database session
            graph_id: Graph UUID (string or UUID)

        Returns:
            Snapshot, or None if the graph does not exist
        """
        try:
            graph_uuid = UUID(graph_id) if isinstance(graph_id, str) else graph_id
        except ValueError:
            logger.warning(f"Malformed agent graph id: {graph_id!r}")
            return None

        graph = await db.get(AgentGraph, graph_uuid)
        if graph is None:
            return None

        node_result = await db.execute(
            select(AgentGraphNode)
            .where(AgentGraphNode.agent_graph_id == graph_uuid)
            .options(
                selectinload(AgentGraphNode.model),
                selectinload(AgentGraphNode.node_tools).selectinload(AgentGraphNodeTool.tool),
            )
            .order_by(AgentGraphNode.node_key)
        )
        nodes = node_result.scalars().all()

        edge_result = await db.execute(
            select(AgentGraphEdge)
            .where(AgentGraphEdge.agent_graph_id == graph_uuid)
            .order_by(AgentGraphEdge.from_node, AgentGraphEdge.to_node)
        )
        edges = edge_result.scalars().all()

        snapshot = Snapshot(
            agent_graph=GraphMeta(
                id=str(graph.id),
                name=graph.name,
                entry_node=graph.entry_node,
                state_schema=graph.state_schema,
            ),
            nodes=[self._to_snapshot_node(node) for node in nodes],
            edges=[GraphEdge(from_node=e.from_node, to_node=e.to_node) for e in edges],
        )
        logger.info(
            f"Loaded graph snapshot {graph_uuid}: "
            f"{len(snapshot.nodes)} nodes, {len(snapshot.edges)} edges"
        )
        return snapshot

    @staticmethod
    def _to_snapshot_node(node: AgentGraphNode) -> SnapshotNode:
        tools = sorted(
            (link.tool for link in node.node_tools),
            key=lambda t: (t.name, str(t.id)),
        )
        tool_refs: List[ToolRef] = [
            ToolRef(
                name=t.name,
                description=t.description,
                input_schema=t.input_schema,
                output_schema=t.output_schema,
            )
            for t in tools
        ]
        model_ref = None
        if node.model is not None:
            model_ref = ModelRef(provider=node.model.provider, name=node.model.name)
        return SnapshotNode(
            node=GraphNode(
                id=str(node.id),
                node_key=node.node_key,
                node_type=node.node_type,
                config=node.config,
                input_key=node.input_key,
                output_key=node.output_key,
            ),
            model=model_ref,
            tools=tool_refs,
        )
