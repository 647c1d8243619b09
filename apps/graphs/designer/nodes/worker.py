"""
Worker nodes.

A plain worker reads ``state[input_key]``, runs the reasoning agent on one
human turn and writes the final assistant text to ``state[output_key]``.
A supervisor member worker instead reads and extends the shared
``messages`` history.
"""
import logging
from typing import Any, Dict, List, Optional

from langchain_core.language_models.chat_models import BaseChatModel

from agentlib.exceptions import BuildError, ExecutionError, GraphBackendError
from agentlib.imageutil import prepare_image_for_service
from agentlib.mcp_client import ToolTransport
from agentlib.observability import preview_text
from agentlib.types import SnapshotNode

from ..configs import WorkerConfig
from ..helpers import extract_last_ai_text, is_max_iterations_message
from ..node_input import ImagePreparer, build_human_input_message
from ..state import MESSAGES_KEY
from .agent import AgentBuilder, build_reasoning_agent, tools_for_node
from .base import CompiledNode

logger = logging.getLogger(__name__)

DEFAULT_WORKER_PROMPT = "Analyze this image and provide a detailed description."


def _check_capabilities(
    label: str,
    snapshot_node: SnapshotNode,
    model: Any,
    tool_transport: Optional[ToolTransport],
) -> None:
    if not isinstance(model, BaseChatModel):
        raise BuildError(f"{label}: model client does not implement a chat model")
    if tool_transport is None and snapshot_node.tools:
        raise BuildError(f"{label}: tool transport is required when tools are assigned")


def _build_agent(label: str, snapshot_node, model, tool_transport, agent_builder: AgentBuilder):
    config = WorkerConfig.parse(snapshot_node.node.config, label)
    tools = tools_for_node(snapshot_node.tools, tool_transport)
    try:
        agent = agent_builder(model, tools, config.effective_max_iterations, config.system_message)
    except GraphBackendError:
        raise
    except Exception as e:
        raise BuildError(f"{label}: failed to create agent: {e}") from e
    return config, agent


def build_worker_node(
    snapshot_node: SnapshotNode,
    model: Any,
    tool_transport: Optional[ToolTransport] = None,
    agent_builder: AgentBuilder = build_reasoning_agent,
    image_preparer: ImagePreparer = prepare_image_for_service,
) -> CompiledNode:
    node = snapshot_node.node
    node_key = node.node_key
    label = f"worker node {node_key!r}"
    _check_capabilities(label, snapshot_node, model, tool_transport)
    config, agent = _build_agent(label, snapshot_node, model, tool_transport, agent_builder)
    max_iterations = config.effective_max_iterations
    input_key = node.input_key
    output_key = node.output_key

    async def worker_step(state: Dict[str, Any]) -> Dict[str, Any]:
        input_text = state.get(input_key) if input_key else None
        if not isinstance(input_text, str):
            input_text = ""
        logger.info(
            f"[WORKER] start node={node_key} max_iterations={max_iterations} "
            f"input_len={len(input_text)} input={preview_text(input_text)!r}"
        )

        human_message = await build_human_input_message(
            input_text, config, DEFAULT_WORKER_PROMPT, image_preparer
        )
        try:
            messages = await agent.run([human_message])
        except GraphBackendError:
            raise
        except Exception as e:
            logger.error(f"[WORKER] error node={node_key} max_iterations={max_iterations}: {e}")
            raise ExecutionError(f"{label}: {e}") from e

        output = extract_last_ai_text(messages)
        if is_max_iterations_message(output):
            logger.warning(
                f"[WORKER] iteration limit node={node_key} max_iterations={max_iterations} "
                f"output={preview_text(output)!r}"
            )
            raise ExecutionError(f"{label} hit max iterations: {output}")

        logger.info(
            f"[WORKER] end node={node_key} message_count={len(messages)} "
            f"output_len={len(output)} output={preview_text(output)!r}"
        )
        if output_key:
            return {output_key: output}
        return {}

    return CompiledNode(name=node_key, description=node_key, fn=worker_step)


def build_supervisor_member_worker_node(
    snapshot_node: SnapshotNode,
    model: Any,
    tool_transport: Optional[ToolTransport] = None,
    agent_builder: AgentBuilder = build_reasoning_agent,
) -> CompiledNode:
    """
    Build a worker that takes part in a supervisor routing cycle.

    The agent returns the whole conversation; only messages beyond the input
    history are emitted, since the append reducer merges them back into it.
    """
    node_key = snapshot_node.node.node_key
    label = f"member worker {node_key!r}"
    _check_capabilities(label, snapshot_node, model, tool_transport)
    config, agent = _build_agent(label, snapshot_node, model, tool_transport, agent_builder)
    max_iterations = config.effective_max_iterations

    async def member_step(state: Dict[str, Any]) -> Dict[str, Any]:
        input_messages: List[Any] = list(state.get(MESSAGES_KEY) or [])
        logger.info(
            f"[WORKER] member start node={node_key} max_iterations={max_iterations} "
            f"message_count={len(input_messages)}"
        )
        try:
            output_messages = await agent.run(input_messages)
        except GraphBackendError:
            raise
        except Exception as e:
            logger.error(f"[WORKER] member error node={node_key}: {e}")
            raise ExecutionError(f"{label}: {e}") from e

        if len(output_messages) <= len(input_messages):
            logger.info(f"[WORKER] member end node={node_key} message_count=0")
            return {}
        new_messages = list(output_messages[len(input_messages):])

        last_output = extract_last_ai_text(new_messages)
        if is_max_iterations_message(last_output):
            logger.warning(f"[WORKER] member iteration limit node={node_key} max_iterations={max_iterations}")
            raise ExecutionError(f"{label} hit max iterations: {last_output}")

        logger.info(f"[WORKER] member end node={node_key} message_count={len(new_messages)}")
        return {MESSAGES_KEY: new_messages}

    return CompiledNode(
        name=node_key,
        description=f"Supervisor member worker: {node_key}",
        fn=member_step,
    )
