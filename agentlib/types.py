"""Snapshot types: the read-only description of one stored agent graph."""

from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional, Union

# Stored JSON columns arrive either already decoded or as raw text.
JSONValue = Union[str, Dict[str, Any], None]

END_NODE = "END"


class GraphMeta(BaseModel):
    id: str = ""
    name: str = ""
    entry_node: str = ""
    state_schema: JSONValue = None


class GraphNode(BaseModel):
    id: str = ""
    node_key: str
    node_type: str
    config: JSONValue = None
    input_key: Optional[str] = None
    output_key: Optional[str] = None


class ModelRef(BaseModel):
    provider: str
    name: str


class ToolRef(BaseModel):
    name: str
    description: str = ""
    input_schema: JSONValue = None
    output_schema: JSONValue = None


class SnapshotNode(BaseModel):
    """One node together with its model and tools."""
    node: Optional[GraphNode] = None
    model: Optional[ModelRef] = None
    tools: List[ToolRef] = Field(default_factory=list)


class GraphEdge(BaseModel):
    from_node: str
    to_node: str


class Snapshot(BaseModel):
    """
    Full stored description of one workflow graph.

    Node order is significant: nodes are registered in this order and the
    validator reports the first duplicate by index.
    """
    agent_graph: Optional[GraphMeta] = None
    nodes: List[Optional[SnapshotNode]] = Field(default_factory=list)
    edges: List[Optional[GraphEdge]] = Field(default_factory=list)
