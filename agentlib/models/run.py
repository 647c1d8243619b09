"""
Agent Graph Run Models

Audit records for graph executions. One run per execution, one step per
node invocation, ordered by ``step_order`` within the run.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import UUID, uuid4

from sqlalchemy import DateTime, Integer, Text, ForeignKey, Index, CheckConstraint, func
from sqlalchemy.dialects.postgresql import UUID as PG_UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column

from .base import RecordModel

RUN_STATUS_RUNNING = "running"
RUN_STATUS_COMPLETED = "completed"
RUN_STATUS_FAILED = "failed"


class AgentGraphRun(RecordModel):
    """
    Graph execution run.

    Attributes:
        id: Primary key UUID
        agent_graph_id: Graph being executed
        status: running | completed | failed
        initial_state: State the run started with
        final_state: State after the last node (completed runs only)
        error: Error text (failed runs only)
        started_at: Run start timestamp
        finished_at: Run finish timestamp

    Status State Machine:
        running -> completed
                |
                +-> failed
    """
    __tablename__ = "agent_graph_runs"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    agent_graph_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("agent_graphs.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    status: Mapped[str] = mapped_column(
        Text,
        default=RUN_STATUS_RUNNING,
        server_default=RUN_STATUS_RUNNING,
        nullable=False
    )
    initial_state: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONB, nullable=True)
    final_state: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONB, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        server_default=func.current_timestamp(),
        nullable=False
    )
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('running', 'completed', 'failed')",
            name="agent_graph_runs_status_known"
        ),
        CheckConstraint(
            "finished_at IS NULL OR finished_at >= started_at",
            name="agent_graph_runs_finished_after_started"
        ),
        Index("agent_graph_runs_status_idx", "status"),
    )


class AgentGraphRunStep(RecordModel):
    """
    One node invocation within a run.

    ``state_delta`` holds the node output on success, or
    ``{"error": ..., "state": ...}`` when the node failed.
    """
    __tablename__ = "agent_graph_run_steps"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    run_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("agent_graph_runs.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    node_key: Mapped[str] = mapped_column(Text, nullable=False)
    step_order: Mapped[int] = mapped_column(Integer, nullable=False)
    state_delta: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONB, nullable=True)
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        server_default=func.current_timestamp(),
        nullable=False
    )
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("step_order > 0", name="agent_graph_run_steps_step_order_positive"),
        CheckConstraint(
            "finished_at IS NULL OR finished_at >= started_at",
            name="agent_graph_run_steps_finished_after_started"
        ),
        Index("agent_graph_run_steps_run_id_step_order_uidx", "run_id", "step_order", unique=True),
    )
