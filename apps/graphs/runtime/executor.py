"""
Graph executor.
Loads a stored graph, compiles it and runs it with run/step tracking.
"""
import asyncio
import logging
from contextlib import AsyncExitStack
from typing import Any, Callable, Dict, Optional

from agentlib.config import settings
from agentlib.database import get_db_session
from agentlib.exceptions import ExecutionError, GraphBackendError, ValidationError
from agentlib.mcp_client import MCPClient
from agentlib.observability import preview_state
from agentlib.repositories import GraphRepository, RunRepository

from apps.graphs.designer.compiler import GraphCompiler
from apps.graphs.designer.validator import validate_snapshot

from .run_tracker import RunTracker
from .tracing import TraceEventPublisher

logger = logging.getLogger(__name__)


def default_tool_transport() -> Optional[MCPClient]:
    """MCP client for the configured server, or None when none is set."""
    if not settings.mcp_server_url:
        return None
    return MCPClient(settings.mcp_server_url)


class GraphExecutor:
    """
    Graph execution service.

    Every failure is final for the run: errors leave this class as
    non-retryable GraphBackendError subclasses.
    """

    def __init__(
        self,
        compiler: Optional[GraphCompiler] = None,
        graph_repo: Optional[GraphRepository] = None,
        run_repo: Optional[RunRepository] = None,
        session_factory: Callable[[], Any] = get_db_session,
        tool_transport_factory: Callable[[], Any] = default_tool_transport,
    ):
        self.compiler = compiler or GraphCompiler()
        self.graph_repo = graph_repo or GraphRepository()
        self.run_repo = run_repo or RunRepository()
        self.session_factory = session_factory
        self.tool_transport_factory = tool_transport_factory

    async def execute(self, graph_id: str, initial_state: Dict[str, Any]) -> Dict[str, Any]:
        """
        Run one stored graph to completion.

        Args:
            graph_id: Stored graph UUID
            initial_state: Starting state

        Returns:
            Final state

        Raises:
            ValidationError: graph missing or malformed
            PersistenceError: run record could not be created
            GraphBackendError: compile or runtime failure
        """
        async with self.session_factory() as db:
            snapshot = await self.graph_repo.load_snapshot(db, graph_id)
        if snapshot is None:
            raise ValidationError(f"agent graph {graph_id} not found")

        tracker = RunTracker(self.run_repo, self.session_factory)
        run_id = await tracker.start(graph_id, initial_state)

        queue: asyncio.Queue = asyncio.Queue()
        publisher = TraceEventPublisher(queue, asyncio.get_running_loop())
        consumer = asyncio.create_task(tracker.consume(queue))
        try:
            # no tool transport is opened for a snapshot that cannot compile
            validate_snapshot(snapshot)
            async with AsyncExitStack() as stack:
                transport = self.tool_transport_factory()
                if transport is not None:
                    transport = await stack.enter_async_context(transport)
                final_state = await self._run(snapshot, transport, initial_state, publisher)
        except asyncio.CancelledError:
            publisher.graph_end(error=RuntimeError("run cancelled"))
            raise
        except GraphBackendError as e:
            logger.error(f"Run {run_id} failed: {e}")
            publisher.graph_end(error=e)
            raise
        except Exception as e:
            logger.error(f"Run {run_id} failed: {e}")
            publisher.graph_end(error=e)
            raise ExecutionError(f"graph run {run_id} failed: {e}") from e
        else:
            publisher.graph_end(final_state=final_state)
        finally:
            publisher.close()
            await consumer

        logger.info(f"Run {run_id} completed: {preview_state(final_state)}")
        return final_state

    async def _run(self, snapshot, transport, initial_state, publisher: TraceEventPublisher) -> Dict[str, Any]:
        graph = self.compiler.compile(snapshot, transport, state_keys=initial_state.keys())
        final_state = await graph.ainvoke(
            initial_state,
            config={
                "callbacks": [publisher],
                "recursion_limit": settings.graph_recursion_limit,
            },
        )
        return dict(final_state or {})
