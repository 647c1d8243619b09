"""
Tool nodes.

A tool node calls exactly one MCP tool without a model in between. Tool
arguments come from state, named by the tool's input schema fields; the
structured result is written back under the output schema field names.
Either side can be renamed via ``input_mapping`` / ``output_mapping``, and
an input mapped to ``"_const:<value>"`` always sends ``<value>``.
"""
import json
import logging
from typing import Any, Dict, List, Optional

from mcp.types import CallToolResult

from agentlib.exceptions import BuildError, ConfigError, ExecutionError
from agentlib.mcp_client import ToolTransport
from agentlib.types import JSONValue, SnapshotNode

from ..configs import ToolNodeConfig
from .agent import load_tool_schema
from .base import CompiledNode

logger = logging.getLogger(__name__)

CONST_PREFIX = "_const:"
MAX_ERROR_TEXT_LEN = 160


def schema_field_names(schema: JSONValue, tool_name: str = "") -> List[str]:
    """Top-level property names of a JSON-object schema."""
    properties = load_tool_schema(schema, tool_name).get("properties") or {}
    if not isinstance(properties, dict):
        raise ConfigError(f"tool {tool_name!r}: schema properties must be an object")
    return list(properties.keys())


def _text_parts(result: CallToolResult) -> List[str]:
    texts = []
    for part in result.content or []:
        if getattr(part, "type", None) != "text":
            continue
        text = (part.text or "").strip()
        if text:
            texts.append(text)
    return texts


def _trim_error_text(text: str) -> str:
    if len(text) <= MAX_ERROR_TEXT_LEN:
        return text
    return text[:MAX_ERROR_TEXT_LEN] + "..."


def decode_tool_output(result: Optional[CallToolResult], output_fields: List[str]) -> Dict[str, Any]:
    """
    Decode a tool result into a field map.

    The error flag always fails. With no declared output fields the result
    is otherwise ignored. Structured content wins over text; failing that,
    the first text part that parses as a JSON object is used.
    """
    if result is not None and result.isError:
        raise ExecutionError(f"tool returned error: {'; '.join(_text_parts(result)) or 'unknown tool error'}")
    if not output_fields:
        return {}
    if result is None:
        raise ExecutionError("tool returned no result")

    structured = result.structuredContent
    if structured is not None:
        if not isinstance(structured, dict):
            raise ExecutionError("invalid structured tool output: expected a JSON object")
        return structured

    texts = _text_parts(result)
    for text in texts:
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
    if texts:
        raise ExecutionError(
            f"failed to parse tool output json from text content: {_trim_error_text(texts[0])!r}"
        )
    raise ExecutionError("tool returned no text output")


def build_tool_node(snapshot_node: SnapshotNode, tool_transport: Optional[ToolTransport]) -> CompiledNode:
    node = snapshot_node.node
    node_key = node.node_key
    label = f"tool node {node_key!r}"
    if len(snapshot_node.tools) != 1:
        raise BuildError(f"{label} requires exactly 1 tool, got {len(snapshot_node.tools)}")
    if tool_transport is None:
        raise BuildError(f"{label}: tool transport is not configured")

    tool = snapshot_node.tools[0]
    config = ToolNodeConfig.parse(node.config, label)
    try:
        input_fields = schema_field_names(tool.input_schema, tool.name)
        output_fields = schema_field_names(tool.output_schema, tool.name)
    except ConfigError as e:
        raise ConfigError(f"{label}: {e}") from e

    async def tool_step(state: Dict[str, Any]) -> Dict[str, Any]:
        arguments: Dict[str, Any] = {}
        for field in input_fields:
            mapped = config.input_mapping.get(field)
            if mapped is None:
                if field in state:
                    arguments[field] = state[field]
            elif mapped.startswith(CONST_PREFIX):
                arguments[field] = mapped[len(CONST_PREFIX):]
            elif mapped in state:
                arguments[field] = state[mapped]

        logger.info(f"[TOOL] call node={node_key} tool={tool.name} args={sorted(arguments)}")
        try:
            result = await tool_transport.call_tool(tool.name, arguments)
            output = decode_tool_output(result, output_fields)
        except Exception as e:
            raise ExecutionError(f"{label}: {e}") from e

        delta: Dict[str, Any] = {}
        for field in output_fields:
            if field in output:
                delta[config.output_mapping.get(field, field)] = output[field]
        logger.info(f"[TOOL] end node={node_key} tool={tool.name} outputs={sorted(delta)}")
        return delta

    return CompiledNode(name=node_key, description=node_key, fn=tool_step)


def tool_node_state_keys(snapshot_node: SnapshotNode) -> List[str]:
    """State keys a tool node reads or writes."""
    if len(snapshot_node.tools) != 1:
        return []
    tool = snapshot_node.tools[0]
    config = ToolNodeConfig.parse(snapshot_node.node.config, f"tool node {snapshot_node.node.node_key!r}")
    keys = []
    for field in schema_field_names(tool.input_schema, tool.name):
        mapped = config.input_mapping.get(field, field)
        if not mapped.startswith(CONST_PREFIX):
            keys.append(mapped)
    for field in schema_field_names(tool.output_schema, tool.name):
        keys.append(config.output_mapping.get(field, field))
    return keys
