"""
Run Tracker

Persists one AgentGraphRun per execution and one AgentGraphRunStep per node
invocation, driven by the TraceEvent stream of the invocation.

Creating the run record is required: a failure aborts the execution before
it starts. Every later write is best-effort: failures are logged and the
run keeps going.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional
from uuid import UUID
import asyncio
import itertools
import logging
import threading

from agentlib.database import get_db_session
from agentlib.exceptions import PersistenceError
from agentlib.models import RUN_STATUS_COMPLETED, RUN_STATUS_FAILED
from agentlib.observability import preview_state, to_jsonable
from agentlib.repositories import RunRepository

from .tracing import TraceEvent, TraceEventKind

logger = logging.getLogger(__name__)


class RunTracker:
    """
    Records graph execution into run and step tables.

    Usage:
        tracker = RunTracker()
        run_id = await tracker.start(graph_id, initial_state)
        consumer = asyncio.create_task(tracker.consume(queue))
    """

    def __init__(
        self,
        run_repo: Optional[RunRepository] = None,
        session_factory: Callable[[], Any] = get_db_session,
    ):
        self.run_repo = run_repo or RunRepository()
        self.session_factory = session_factory
        self.run_id: Optional[UUID] = None
        self._step_counter = itertools.count(1)
        self._counter_lock = threading.Lock()
        self._steps_lock = threading.Lock()
        # correlation id -> step id of in-flight steps
        self._steps: Dict[str, UUID] = {}

    def next_step_order(self) -> int:
        with self._counter_lock:
            return next(self._step_counter)

    async def start(self, agent_graph_id: str, initial_state: Dict[str, Any]) -> UUID:
        """
        Create the run record in the running state.

        Raises:
            PersistenceError: if the run cannot be recorded
        """
        try:
            async with self.session_factory() as db:
                run = await self.run_repo.create_run(db, agent_graph_id, to_jsonable(initial_state))
        except Exception as e:
            raise PersistenceError(f"failed to create run record: {e}") from e
        self.run_id = run.id
        logger.info(f"[RUN] start run_id={self.run_id} graph_id={agent_graph_id}")
        return self.run_id

    async def consume(self, queue: asyncio.Queue) -> None:
        """Handle events in order until the ``None`` sentinel arrives."""
        while True:
            event = await queue.get()
            try:
                if event is None:
                    return
                await self.handle_event(event)
            finally:
                queue.task_done()

    async def handle_event(self, event: TraceEvent) -> None:
        if self.run_id is None:
            raise PersistenceError("run tracker was not started")
        try:
            if event.kind == TraceEventKind.NODE_START:
                await self._on_node_start(event)
            elif event.kind == TraceEventKind.NODE_END:
                await self._on_node_finish(event, to_jsonable(event.state))
            elif event.kind == TraceEventKind.NODE_ERROR:
                await self._on_node_finish(event, {"error": event.error, "state": to_jsonable(event.state)})
            elif event.kind == TraceEventKind.GRAPH_END:
                await self._on_graph_end(event)
        except Exception as e:
            err = PersistenceError(f"{event.kind.value} write failed: {e}")
            logger.error(
                f"[RUN] db_write_failed run_id={self.run_id} node={event.node_name or '-'}: {err}"
            )

    async def _on_node_start(self, event: TraceEvent) -> None:
        order = self.next_step_order()
        async with self.session_factory() as db:
            step = await self.run_repo.create_step(
                db, self.run_id, event.node_name, order, started_at=event.started_at
            )
        with self._steps_lock:
            self._steps[event.correlation_id] = step.id
        logger.info(f"[RUN] node_start run_id={self.run_id} step_order={order} node={event.node_name}")

    async def _on_node_finish(self, event: TraceEvent, state_delta: Any) -> None:
        with self._steps_lock:
            step_id = self._steps.pop(event.correlation_id, None)
        if step_id is None:
            logger.warning(
                f"[RUN] {event.kind.value} without recorded start run_id={self.run_id} node={event.node_name}"
            )
            return
        async with self.session_factory() as db:
            await self.run_repo.finish_step(
                db, step_id, state_delta, finished_at=event.ended_at or datetime.now(timezone.utc)
            )
        if event.kind == TraceEventKind.NODE_ERROR:
            logger.warning(f"[RUN] node_error run_id={self.run_id} node={event.node_name} error={event.error}")
        else:
            logger.info(
                f"[RUN] node_end run_id={self.run_id} node={event.node_name} delta={preview_state(state_delta)}"
            )

    async def _on_graph_end(self, event: TraceEvent) -> None:
        finished_at = event.ended_at or datetime.now(timezone.utc)
        async with self.session_factory() as db:
            if event.error is not None:
                await self.run_repo.finish_run(
                    db, self.run_id, RUN_STATUS_FAILED, error=event.error, finished_at=finished_at
                )
            else:
                await self.run_repo.finish_run(
                    db,
                    self.run_id,
                    RUN_STATUS_COMPLETED,
                    final_state=to_jsonable(event.state),
                    finished_at=finished_at,
                )
        status = RUN_STATUS_FAILED if event.error is not None else RUN_STATUS_COMPLETED
        logger.info(f"[RUN] graph_end run_id={self.run_id} status={status}")
