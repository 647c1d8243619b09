"""Message helpers shared by the node builders."""
import re
from typing import Any, Iterable, Optional, Sequence

from langchain_core.messages import AIMessage, BaseMessage

ROUTING_MARKER_PREFIX = "[supervisor]"

# Our own iteration-limit wording plus LangGraph's recursion-limit reply.
_MAX_ITERATIONS_PATTERN = re.compile(
    r"maximum iterations reached|need more steps to process this request",
    re.IGNORECASE,
)


def routing_marker_text(decision: str) -> str:
    return f"{ROUTING_MARKER_PREFIX} routing to: {decision}"


def is_max_iterations_message(text: str) -> bool:
    return bool(text) and _MAX_ITERATIONS_PATTERN.search(text) is not None


def _is_ai(message: Any) -> bool:
    if isinstance(message, BaseMessage):
        return message.type == "ai"
    if isinstance(message, dict):
        return message.get("role") in ("ai", "assistant") or message.get("type") == "ai"
    return False


def _content(message: Any) -> Any:
    if isinstance(message, BaseMessage):
        return message.content
    if isinstance(message, dict):
        return message.get("content")
    return None


def text_parts(message: Any) -> Iterable[str]:
    """Yield the text parts of a message in order."""
    content = _content(message)
    if isinstance(content, str):
        if content:
            yield content
        return
    if isinstance(content, list):
        for part in content:
            if isinstance(part, str):
                yield part
            elif isinstance(part, dict) and part.get("type") == "text":
                yield part.get("text") or ""


def extract_last_ai_text(messages: Optional[Sequence[Any]], skip_routing_markers: bool = False) -> str:
    """
    Text of the most recent assistant message.

    Returns the first text part of the last AI message that has one. With
    ``skip_routing_markers``, text parts carrying the routing marker are
    passed over and the search continues backward.
    """
    for message in reversed(messages or []):
        if not _is_ai(message):
            continue
        for text in text_parts(message):
            if skip_routing_markers and text.startswith(ROUTING_MARKER_PREFIX):
                continue
            return text
    return ""


def routing_marker_message(decision: str) -> AIMessage:
    return AIMessage(content=routing_marker_text(decision))
