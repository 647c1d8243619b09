"""
Supervisor routing unit.

A supervisor is an LLM-driven dispatcher. Every pass through the supervisor
node asks the model, via a forced ``route`` function call whose argument is
an enum of the member keys plus FINISH, which member acts next. The
decision is stored in state and read back by the conditional edge.

Shared history grows by a short assistant marker per decision
(``"[supervisor] routing to: <decision>"``); on the first pass the initial
human turn is added with it. Marker text is never taken as final output.
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import SystemMessage
from langgraph.graph import END

from agentlib.exceptions import BuildError, ExecutionError, GraphBackendError, RoutingError
from agentlib.imageutil import prepare_image_for_service
from agentlib.types import SnapshotNode

from ..configs import SupervisorConfig, parse_supervisor_config
from ..helpers import extract_last_ai_text, routing_marker_message
from ..node_input import ImagePreparer, build_human_input_message
from ..state import MESSAGES_KEY, SUPERVISOR_ITERATION_KEY, SUPERVISOR_NEXT_KEY
from .base import CompiledNode

logger = logging.getLogger(__name__)

FINISH = "FINISH"
ROUTE_TOOL_NAME = "route"
DEFAULT_SUPERVISOR_PROMPT = (
    "Route this to the most appropriate specialist, then FINISH after the specialist responds."
)
SUPERVISOR_SYSTEM_PROMPT = (
    "You are a supervisor tasked with managing a conversation between the following workers: {members}. "
    "Given the conversation so far, respond with the worker to act next or FINISH when the task is complete. "
    "Use the 'route' tool to make your selection."
)


@dataclass
class SupervisorRoutingResult:
    """Everything the compiler needs to wire one supervisor."""
    routing_node: CompiledNode
    routing_timeout: float
    conditional_edge_fn: Callable[[Dict[str, Any]], str]
    members: List[str]
    config: SupervisorConfig


def route_tool_spec(members: List[str]) -> Dict[str, Any]:
    """OpenAI function spec for the forced routing call."""
    return {
        "type": "function",
        "function": {
            "name": ROUTE_TOOL_NAME,
            "description": "Select the next worker to act, or FINISH if the task is complete.",
            "parameters": {
                "type": "object",
                "properties": {
                    "next": {"type": "string", "enum": list(members) + [FINISH]},
                },
                "required": ["next"],
            },
        },
    }


def read_iteration(state: Dict[str, Any]) -> int:
    """Current routing counter; integer or decimal values are accepted."""
    value = state.get(SUPERVISOR_ITERATION_KEY)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return int(value)


def supervisor_next_node(state: Dict[str, Any]) -> str:
    """Conditional edge: END on FINISH or no decision, else the chosen member."""
    decision = state.get(SUPERVISOR_NEXT_KEY)
    if not decision or decision == FINISH:
        return END
    return decision


def _decode_decision(response: Any) -> Optional[str]:
    tool_calls = getattr(response, "tool_calls", None) or []
    if not tool_calls:
        return None
    args = tool_calls[0].get("args")
    if not isinstance(args, dict):
        raise RoutingError("failed to parse route arguments")
    return str(args.get("next") or "").strip()


def build_supervisor_routing_node(
    snapshot_node: SnapshotNode,
    model: Any,
    config: Optional[SupervisorConfig] = None,
    image_preparer: ImagePreparer = prepare_image_for_service,
) -> SupervisorRoutingResult:
    node = snapshot_node.node
    node_key = node.node_key
    label = f"supervisor node {node_key!r}"
    if not isinstance(model, BaseChatModel):
        raise BuildError(f"{label}: model client does not implement a chat model")
    config = config or parse_supervisor_config(node_key, node.config)

    members = list(config.members)
    legal_routes = set(members) | {FINISH}
    system_prompt = SUPERVISOR_SYSTEM_PROMPT.format(members=", ".join(members))
    input_key = node.input_key
    output_key = node.output_key
    try:
        router = model.bind_tools([route_tool_spec(members)], tool_choice=ROUTE_TOOL_NAME)
    except Exception as e:
        raise BuildError(f"{label}: model does not support forced tool calls: {e}") from e

    async def routing_step(state: Dict[str, Any]) -> Dict[str, Any]:
        iteration = read_iteration(state) + 1
        if iteration > config.max_iterations:
            logger.error(
                f"[SUPERVISOR] node={node_key} iteration={iteration} "
                f"max iterations reached limit={config.max_iterations}"
            )
            raise RoutingError(f"{label} hit max iterations ({config.max_iterations})")

        history: List[Any] = list(state.get(MESSAGES_KEY) or [])
        prompt_messages: List[Any] = [SystemMessage(content=system_prompt)]
        initial_human = None
        if iteration == 1:
            input_text = state.get(input_key) if input_key else None
            if not isinstance(input_text, str):
                input_text = ""
            initial_human = await build_human_input_message(
                input_text, config, DEFAULT_SUPERVISOR_PROMPT, image_preparer
            )
            prompt_messages.append(initial_human)
        else:
            prompt_messages.extend(history)

        logger.info(
            f"[SUPERVISOR] route node={node_key} iteration={iteration} "
            f"members={members} message_count={len(prompt_messages)}"
        )
        try:
            response = await router.ainvoke(prompt_messages)
        except GraphBackendError:
            raise
        except Exception as e:
            logger.error(f"[SUPERVISOR] node={node_key} iteration={iteration} llm call failed: {e}")
            raise ExecutionError(f"{label}: llm call failed: {e}") from e

        try:
            decision = _decode_decision(response)
        except RoutingError as e:
            raise RoutingError(f"{label}: {e}") from e
        if decision is None:
            logger.error(f"[SUPERVISOR] node={node_key} iteration={iteration} no tool call in response")
            raise RoutingError(f"{label}: llm did not return a route tool call")
        if decision not in legal_routes:
            logger.error(
                f"[SUPERVISOR] node={node_key} iteration={iteration} unknown member={decision!r} valid={members}"
            )
            raise RoutingError(f"{label}: routed to unknown member {decision!r}, valid members: {members}")

        marker = routing_marker_message(decision)
        delta: Dict[str, Any] = {
            SUPERVISOR_NEXT_KEY: decision,
            SUPERVISOR_ITERATION_KEY: iteration,
            MESSAGES_KEY: [initial_human, marker] if initial_human is not None else [marker],
        }
        if decision == FINISH and output_key:
            output = extract_last_ai_text(history, skip_routing_markers=True)
            if output:
                delta[output_key] = output
        logger.info(f"[SUPERVISOR] route node={node_key} iteration={iteration} next={decision}")
        return delta

    return SupervisorRoutingResult(
        routing_node=CompiledNode(
            name=node_key,
            description=f"Supervisor routing node: {node_key}",
            fn=routing_step,
        ),
        routing_timeout=config.timeout_seconds,
        conditional_edge_fn=supervisor_next_node,
        members=members,
        config=config,
    )
