"""
Graph Trace Events

Turns LangChain callback notifications from a compiled graph invocation
into an ordered stream of node lifecycle events on an asyncio.Queue.

Only node-level runs are reported: chain runs whose parent is the graph's
root run and whose ``langgraph_node`` metadata names a user node. LangGraph
internal nodes (``__start__`` and friends) are skipped.

A ``None`` item on the queue marks the end of the stream.
"""

from enum import Enum
from typing import Any, Dict, Optional
from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import UUID
import asyncio
import logging
import threading

from langchain_core.callbacks import BaseCallbackHandler

logger = logging.getLogger(__name__)


class TraceEventKind(str, Enum):
    """Lifecycle notifications for one graph invocation."""
    NODE_START = "node_start"
    NODE_END = "node_end"
    NODE_ERROR = "node_error"
    GRAPH_END = "graph_end"


@dataclass
class TraceEvent:
    """
    Single lifecycle notification.

    ``correlation_id`` pairs a node's start with its end or error.
    ``state`` holds node input (start), node output (end), input state at
    the time of failure (error), or final state (graph end).
    """
    kind: TraceEventKind
    correlation_id: str = ""
    node_name: str = ""
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    ended_at: Optional[datetime] = None
    state: Any = None
    error: Optional[str] = None


def _now() -> datetime:
    return datetime.now(timezone.utc)


class TraceEventPublisher(BaseCallbackHandler):
    """
    Callback handler publishing TraceEvents to a queue.

    Attach it via ``config={"callbacks": [publisher]}``. Events are handed to
    the loop with ``call_soon_threadsafe`` so their order is kept whichever
    thread the callback fires on.
    """

    run_inline = True
    raise_error = False

    def __init__(self, queue: asyncio.Queue, loop: Optional[asyncio.AbstractEventLoop] = None):
        self.queue = queue
        self.loop = loop or asyncio.get_running_loop()
        self._lock = threading.Lock()
        self._root_run_id: Optional[UUID] = None
        self._nodes: Dict[UUID, Dict[str, Any]] = {}
        self._closed = False

    def publish(self, event: Optional[TraceEvent]) -> None:
        if self._closed:
            return
        self.loop.call_soon_threadsafe(self.queue.put_nowait, event)

    def graph_end(self, final_state: Any = None, error: Optional[BaseException] = None) -> None:
        """Publish the terminal event for this invocation."""
        self.publish(TraceEvent(
            kind=TraceEventKind.GRAPH_END,
            ended_at=_now(),
            state=final_state,
            error=str(error) if error is not None else None,
        ))

    def close(self) -> None:
        """Publish the end-of-stream sentinel; later events are dropped."""
        self.publish(None)
        self._closed = True

    # ── LangChain callback hooks ──

    def on_chain_start(
        self,
        serialized: Optional[Dict[str, Any]],
        inputs: Any,
        *,
        run_id: UUID,
        parent_run_id: Optional[UUID] = None,
        metadata: Optional[Dict[str, Any]] = None,
        **kwargs: Any,
    ) -> None:
        with self._lock:
            if parent_run_id is None:
                if self._root_run_id is None:
                    self._root_run_id = run_id
                return
            if parent_run_id != self._root_run_id:
                return
            node_name = (metadata or {}).get("langgraph_node") or kwargs.get("name") or ""
            if not node_name or node_name.startswith("__"):
                return
            self._nodes[run_id] = {"name": node_name, "inputs": inputs, "started_at": _now()}
            started_at = self._nodes[run_id]["started_at"]
        self.publish(TraceEvent(
            kind=TraceEventKind.NODE_START,
            correlation_id=str(run_id),
            node_name=node_name,
            started_at=started_at,
            state=inputs,
        ))

    def on_chain_end(
        self,
        outputs: Any,
        *,
        run_id: UUID,
        parent_run_id: Optional[UUID] = None,
        **kwargs: Any,
    ) -> None:
        with self._lock:
            node = self._nodes.pop(run_id, None)
        if node is None:
            return
        self.publish(TraceEvent(
            kind=TraceEventKind.NODE_END,
            correlation_id=str(run_id),
            node_name=node["name"],
            started_at=node["started_at"],
            ended_at=_now(),
            state=outputs,
        ))

    def on_chain_error(
        self,
        error: BaseException,
        *,
        run_id: UUID,
        parent_run_id: Optional[UUID] = None,
        **kwargs: Any,
    ) -> None:
        with self._lock:
            node = self._nodes.pop(run_id, None)
        if node is None:
            return
        self.publish(TraceEvent(
            kind=TraceEventKind.NODE_ERROR,
            correlation_id=str(run_id),
            node_name=node["name"],
            started_at=node["started_at"],
            ended_at=_now(),
            state=node["inputs"],
            error=str(error),
        ))
