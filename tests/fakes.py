"""
Test doubles shared by the graph runtime tests.

Everything here stands in for an external collaborator: chat models,
the reasoning agent, the MCP tool transport, the image downloader and the
database session.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Sequence, Tuple
from unittest.mock import AsyncMock, MagicMock
import json

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage
from langchain_core.outputs import ChatGeneration, ChatResult
from mcp.types import CallToolResult, TextContent
from pydantic import Field

from agentlib.imageutil import PreparedImage
from agentlib.types import GraphEdge, GraphMeta, GraphNode, ModelRef, Snapshot, SnapshotNode, ToolRef


# ============================================================================
# Snapshot builders
# ============================================================================

def make_node(
    node_key: str,
    node_type: str = "worker",
    config: Any = None,
    input_key: Optional[str] = None,
    output_key: Optional[str] = None,
    model: Optional[Tuple[str, str]] = ("openai", "gpt-4o-mini"),
    tools: Optional[List[ToolRef]] = None,
) -> SnapshotNode:
    return SnapshotNode(
        node=GraphNode(
            id=f"id-{node_key}",
            node_key=node_key,
            node_type=node_type,
            config=config,
            input_key=input_key,
            output_key=output_key,
        ),
        model=ModelRef(provider=model[0], name=model[1]) if model else None,
        tools=tools or [],
    )


def make_snapshot(
    entry_node: str,
    nodes: List[Optional[SnapshotNode]],
    edges: Sequence[Tuple[str, str]] = (),
    state_schema: Any = None,
) -> Snapshot:
    return Snapshot(
        agent_graph=GraphMeta(id="graph-1", name="test graph", entry_node=entry_node, state_schema=state_schema),
        nodes=nodes,
        edges=[GraphEdge(from_node=f, to_node=t) for f, t in edges],
    )


def make_tool(name: str, inputs: Sequence[str] = (), outputs: Sequence[str] = (), description: str = "") -> ToolRef:
    def schema(fields):
        return {"type": "object", "properties": {f: {"type": "string"} for f in fields}}
    return ToolRef(
        name=name,
        description=description or f"{name} tool",
        input_schema=schema(inputs),
        output_schema=schema(outputs),
    )


# ============================================================================
# Chat models and agents
# ============================================================================

class FakeRoutingModel(BaseChatModel):
    """
    Chat model answering each call with the next queued routing decision.

    A string decision becomes a ``route`` tool call, None becomes a plain
    text reply without tool calls, and an exception instance is raised.
    """

    decisions: List[Any] = Field(default_factory=list)
    prompts: List[Any] = Field(default_factory=list)
    bound_tools: List[Any] = Field(default_factory=list)
    tool_choice: Optional[Any] = None
    delay: float = 0

    @property
    def _llm_type(self) -> str:
        return "fake-routing"

    def bind_tools(self, tools, *, tool_choice=None, **kwargs):
        self.bound_tools = list(tools)
        self.tool_choice = tool_choice
        return self

    def _next_message(self, messages: List[BaseMessage]) -> AIMessage:
        self.prompts.append(list(messages))
        decision = self.decisions.pop(0)
        if isinstance(decision, Exception):
            raise decision
        if decision is None:
            return AIMessage(content="I think the researcher should go next.")
        return AIMessage(
            content="",
            tool_calls=[{"name": "route", "args": {"next": decision}, "id": f"call_{len(self.prompts)}"}],
        )

    def _generate(self, messages, stop=None, run_manager=None, **kwargs) -> ChatResult:
        return ChatResult(generations=[ChatGeneration(message=self._next_message(messages))])

    async def _agenerate(self, messages, stop=None, run_manager=None, **kwargs) -> ChatResult:
        if self.delay:
            await asyncio.sleep(self.delay)
        return self._generate(messages, stop=stop, **kwargs)


class FakeAgent:
    """Reasoning agent that appends canned replies to the conversation."""

    def __init__(self, replies: Sequence[Any], delay: float = 0):
        self.replies = list(replies)
        self.delay = delay
        self.calls: List[List[Any]] = []

    async def run(self, messages):
        self.calls.append(list(messages))
        if self.delay:
            await asyncio.sleep(self.delay)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, list):
            return list(messages) + reply
        return list(messages) + [AIMessage(content=reply)]


class FakeAgentBuilder:
    """Agent builder recording build arguments; one FakeAgent per build."""

    def __init__(self, *replies: Any, delay: float = 0):
        self.replies = list(replies) or ["done"]
        self.delay = delay
        self.builds: List[Dict[str, Any]] = []
        self.agents: List[FakeAgent] = []

    def __call__(self, model, tools, max_iterations, system_message=""):
        self.builds.append({
            "model": model,
            "tools": tools,
            "max_iterations": max_iterations,
            "system_message": system_message,
        })
        agent = FakeAgent(self.replies, self.delay)
        self.agents.append(agent)
        return agent


# ============================================================================
# Tool transport, images and persistence
# ============================================================================

def tool_result(structured: Optional[Dict[str, Any]] = None, texts: Sequence[str] = (), is_error: bool = False) -> CallToolResult:
    return CallToolResult(
        content=[TextContent(type="text", text=t) for t in texts],
        structuredContent=structured,
        isError=is_error,
    )


def fake_transport(*results: CallToolResult) -> AsyncMock:
    """Tool transport whose call_tool returns ``results`` in order."""
    transport = AsyncMock()
    if len(results) == 1:
        transport.call_tool.return_value = results[0]
    else:
        transport.call_tool.side_effect = list(results)
    return transport


async def fake_image_preparer(url: str) -> PreparedImage:
    data = json.dumps({"url": url}).encode()
    return PreparedImage(
        data=data,
        mime_type="image/png",
        original_bytes=len(data),
        final_bytes=len(data),
        original_size=(10, 10),
        final_size=(10, 10),
    )


def fake_session_factory(session: Any = None):
    """Stand-in for get_db_session yielding one shared mock session."""
    session = session or MagicMock(name="session")

    @asynccontextmanager
    async def factory():
        yield session

    return factory
