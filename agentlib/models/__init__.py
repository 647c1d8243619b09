"""
Agent Graph SQLAlchemy Models

Usage:
    from agentlib.models import AgentGraph, AgentGraphRun

Models:
    - Model: LLM model reference (provider, name)
    - Tool: MCP tool with input/output schemas
    - AgentGraph: Graph definition (entry node, state schema)
    - AgentGraphNode: Node of a graph
    - AgentGraphNodeTool: Node-to-tool assignment
    - AgentGraphEdge: Directed edge between node keys
    - AgentGraphRun: One execution of a graph
    - AgentGraphRunStep: One node invocation within a run
"""

from .base import BaseModel, RecordModel
from .graph import Model, Tool, AgentGraph, AgentGraphNode, AgentGraphNodeTool, AgentGraphEdge
from .run import (
    AgentGraphRun,
    AgentGraphRunStep,
    RUN_STATUS_RUNNING,
    RUN_STATUS_COMPLETED,
    RUN_STATUS_FAILED,
)

__all__ = [
    "BaseModel",
    "RecordModel",
    "Model",
    "Tool",
    "AgentGraph",
    "AgentGraphNode",
    "AgentGraphNodeTool",
    "AgentGraphEdge",
    "AgentGraphRun",
    "AgentGraphRunStep",
    "RUN_STATUS_RUNNING",
    "RUN_STATUS_COMPLETED",
    "RUN_STATUS_FAILED",
]
