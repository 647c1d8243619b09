"""
Stored Agent Graph Models

A graph is a set of nodes (worker, tool, supervisor) and directed edges
between node keys. Nodes may reference a model and any number of tools.
The runtime never writes these tables; it reads them into a Snapshot.
"""

from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from sqlalchemy import Text, ForeignKey, CheckConstraint, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID as PG_UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import BaseModel


class Model(BaseModel):
    """
    LLM model reference.

    Attributes:
        id: Primary key UUID
        provider: Provider name (openai, openrouter, azure, ollama)
        name: Provider-side model name (or Azure deployment)
    """
    __tablename__ = "models"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    provider: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (
        UniqueConstraint("provider", "name", name="models_provider_name_unique"),
    )


class Tool(BaseModel):
    """
    Externally served tool (called over MCP).

    Attributes:
        id: Primary key UUID
        name: Unique tool name on the MCP server
        description: Description shown to the model
        input_schema: JSON-object schema of the arguments
        output_schema: JSON-object schema of the structured result
    """
    __tablename__ = "tools"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    input_schema: Mapped[Dict[str, Any]] = mapped_column(JSONB, nullable=False)
    output_schema: Mapped[Dict[str, Any]] = mapped_column(JSONB, nullable=False)


class AgentGraph(BaseModel):
    """
    Agent graph definition.

    Attributes:
        id: Primary key UUID
        name: Display name
        description: Optional description
        entry_node: Node key execution starts from
        state_schema: Optional mapping of state key -> "append" | "overwrite"
    """
    __tablename__ = "agent_graphs"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    entry_node: Mapped[str] = mapped_column(Text, nullable=False)
    state_schema: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONB, nullable=True)

    nodes: Mapped[List["AgentGraphNode"]] = relationship(
        back_populates="graph", cascade="all, delete-orphan"
    )
    edges: Mapped[List["AgentGraphEdge"]] = relationship(
        back_populates="graph", cascade="all, delete-orphan"
    )


class AgentGraphNode(BaseModel):
    """
    Node within an agent graph.

    ``config`` is interpreted per node_type when the graph is compiled.
    """
    __tablename__ = "agent_graph_nodes"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    node_key: Mapped[str] = mapped_column(Text, nullable=False)
    node_type: Mapped[str] = mapped_column(Text, nullable=False)
    input_key: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    output_key: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    config: Mapped[Dict[str, Any]] = mapped_column(
        JSONB, default=dict, server_default="{}", nullable=False
    )
    agent_graph_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("agent_graphs.id", ondelete="CASCADE"),
        nullable=False
    )
    model_id: Mapped[Optional[UUID]] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("models.id"),
        nullable=True,
        index=True
    )

    graph: Mapped["AgentGraph"] = relationship(back_populates="nodes")
    model: Mapped[Optional["Model"]] = relationship()
    node_tools: Mapped[List["AgentGraphNodeTool"]] = relationship(cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("agent_graph_id", "node_key"),
        CheckConstraint(
            "node_type IN ('worker', 'supervisor', 'tool')",
            name="agent_graph_nodes_node_type_known"
        ),
    )


class AgentGraphNodeTool(BaseModel):
    """Assignment of a tool to a graph node."""
    __tablename__ = "agent_graph_node_tools"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    agent_graph_node_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("agent_graph_nodes.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    tool_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("tools.id"),
        nullable=False,
        index=True
    )

    tool: Mapped["Tool"] = relationship()

    __table_args__ = (
        UniqueConstraint(
            "agent_graph_node_id", "tool_id",
            name="agent_graph_node_tools_node_tool_unique"
        ),
    )


class AgentGraphEdge(BaseModel):
    """Directed edge between two node keys; ``to_node`` may be END."""
    __tablename__ = "agent_graph_edges"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    from_node: Mapped[str] = mapped_column(Text, nullable=False)
    to_node: Mapped[str] = mapped_column(Text, nullable=False)
    agent_graph_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("agent_graphs.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    graph: Mapped["AgentGraph"] = relationship(back_populates="edges")

    __table_args__ = (
        UniqueConstraint(
            "agent_graph_id", "from_node", "to_node",
            name="agent_graph_edges_graph_from_to_uidx"
        ),
        CheckConstraint("from_node <> 'END'", name="agent_graph_edges_from_not_end"),
        CheckConstraint("from_node <> to_node", name="agent_graph_edges_no_self_ref"),
    )
