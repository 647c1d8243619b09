"""
Agent Graph Observability Utilities

Log previews and JSON conversion for graph state. State carries LangChain
message objects and pydantic models, which need converting before they can
be logged or stored in JSONB columns.
"""
import json
import logging
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from agentlib.config import settings

logger = logging.getLogger(__name__)


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging for command-line entry points."""
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def to_jsonable(value: Any) -> Any:
    """
    Convert a state value into plain JSON types.

    Pydantic models (including LangChain messages) are dumped, datetimes
    become ISO strings, and anything else unknown falls back to ``str``.
    """
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if hasattr(value, "model_dump"):
        return to_jsonable(value.model_dump())
    return str(value)


def preview_text(text: str, limit: Optional[int] = None) -> str:
    """Trim text for log output."""
    limit = limit or settings.log_preview_limit
    text = text.strip()
    if len(text) <= limit:
        return text
    return text[:limit] + f"... ({len(text) - limit} more chars)"


def preview_state(state: Any, limit: Optional[int] = None) -> str:
    """Render state as compact JSON for logging, trimmed to ``limit``."""
    try:
        rendered = json.dumps(to_jsonable(state), ensure_ascii=False, sort_keys=True)
    except (TypeError, ValueError) as e:
        rendered = f"<unserializable state: {e}>"
    return preview_text(rendered, limit)
