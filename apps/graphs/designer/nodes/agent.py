"""
Bounded tool-augmented reasoning primitive.

Workers delegate to a LangGraph ReAct agent. Each reasoning iteration is
one model call plus one tool round, so the recursion limit is derived from
the iteration cap. Hitting the cap is reported as a final assistant message
rather than an exception; the worker nodes treat that message as failure.
"""
import json
import logging
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage
from langchain_core.tools import BaseTool, StructuredTool, ToolException
from langgraph.errors import GraphRecursionError
from langgraph.prebuilt import create_react_agent

from agentlib.exceptions import ConfigError
from agentlib.mcp_client import ToolTransport
from agentlib.types import ToolRef

logger = logging.getLogger(__name__)

EMPTY_OBJECT_SCHEMA: Dict[str, Any] = {"type": "object", "properties": {}}


class ReasoningAgent(Protocol):
    async def run(self, messages: Sequence[BaseMessage]) -> List[BaseMessage]:
        """Run the loop on a conversation and return the full resulting conversation."""
        ...


AgentBuilder = Callable[[BaseChatModel, List[BaseTool], int, str], ReasoningAgent]


def max_iterations_message(max_iterations: int) -> AIMessage:
    return AIMessage(content=f"Agent stopped: maximum iterations reached ({max_iterations}).")


class BoundedReactAgent:
    """ReAct agent that stops after ``max_iterations`` model turns."""

    def __init__(
        self,
        model: BaseChatModel,
        tools: List[BaseTool],
        max_iterations: int,
        system_message: str = "",
    ):
        self.max_iterations = max_iterations
        self.recursion_limit = 2 * max_iterations + 1
        self._graph = create_react_agent(model, tools, prompt=system_message or None)

    async def run(self, messages: Sequence[BaseMessage]) -> List[BaseMessage]:
        try:
            result = await self._graph.ainvoke(
                {"messages": list(messages)},
                config={"recursion_limit": self.recursion_limit},
            )
        except GraphRecursionError:
            logger.warning(f"Reasoning agent hit recursion limit {self.recursion_limit}")
            return list(messages) + [max_iterations_message(self.max_iterations)]
        return list(result.get("messages", []))


def build_reasoning_agent(
    model: BaseChatModel,
    tools: List[BaseTool],
    max_iterations: int,
    system_message: str = "",
) -> ReasoningAgent:
    return BoundedReactAgent(model, tools, max_iterations, system_message)


def load_tool_schema(raw: Any, tool_name: str) -> Dict[str, Any]:
    """Decode a stored tool schema; missing or blank schemas are empty objects."""
    if raw is None:
        return dict(EMPTY_OBJECT_SCHEMA)
    if isinstance(raw, dict):
        return raw
    text = str(raw).strip()
    if not text:
        return dict(EMPTY_OBJECT_SCHEMA)
    try:
        schema = json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigError(f"tool {tool_name!r}: invalid schema json: {e}") from e
    if not isinstance(schema, dict):
        raise ConfigError(f"tool {tool_name!r}: schema must be a JSON object")
    return schema


def _first_text(result: Any) -> str:
    for part in getattr(result, "content", None) or []:
        if getattr(part, "type", None) == "text":
            return part.text
    return ""


def mcp_tool(tool: ToolRef, transport: ToolTransport) -> BaseTool:
    """Expose a stored tool to the reasoning agent, proxied over the tool transport."""
    schema = load_tool_schema(tool.input_schema, tool.name)
    if schema.get("type") != "object":
        schema = {**schema, "type": "object"}
    schema.setdefault("properties", {})

    async def _call(**kwargs: Any) -> str:
        result = await transport.call_tool(tool.name, kwargs)
        if result is None:
            raise ToolException(f"MCP tool {tool.name!r} returned no result")
        text = _first_text(result)
        if getattr(result, "isError", False):
            raise ToolException(text or f"MCP tool {tool.name!r} returned an error")
        return text

    return StructuredTool(
        name=tool.name,
        description=tool.description or tool.name,
        args_schema=schema,
        coroutine=_call,
        handle_tool_error=True,
    )


def tools_for_node(tools: List[ToolRef], transport: Optional[ToolTransport]) -> List[BaseTool]:
    if not tools or transport is None:
        return []
    return [mcp_tool(t, transport) for t in tools]
