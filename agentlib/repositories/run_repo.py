"""
Agent Graph Run Repository

Provides data access for run and step audit records written by the run
tracker while a graph executes.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from agentlib.models import AgentGraphRun, AgentGraphRunStep, RUN_STATUS_RUNNING


class RunRepository:
    """
    Repository for AgentGraphRun and AgentGraphRunStep records.

    Run Status Flow:
        running -> completed
                |
                +-> failed
    """

    # ==================== Run Operations ====================

    async def create_run(
        self,
        db: AsyncSession,
        agent_graph_id: str,
        initial_state: Dict[str, Any],
    ) -> AgentGraphRun:
        """
        Create a new run record in the running state.

        Args:
            db: Async database session
            agent_graph_id: Graph being executed
            initial_state: JSON-ready initial state

        Returns:
            The created AgentGraphRun instance
        """
        graph_uuid = UUID(agent_graph_id) if isinstance(agent_graph_id, str) else agent_graph_id
        run = AgentGraphRun(
            agent_graph_id=graph_uuid,
            status=RUN_STATUS_RUNNING,
            initial_state=initial_state,
        )
        db.add(run)
        await db.flush()
        await db.refresh(run)
        return run

    async def finish_run(
        self,
        db: AsyncSession,
        run_id: UUID,
        status: str,
        final_state: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
        finished_at: Optional[datetime] = None,
    ) -> bool:
        """
        Set the terminal status of a run.

        Args:
            db: Async database session
            run_id: Run UUID
            status: completed | failed
            final_state: Final state (completed runs)
            error: Error text (failed runs)
            finished_at: Finish time, defaults to now

        Returns:
            True if the run was updated
        """
        stmt = (
            update(AgentGraphRun)
            .where(AgentGraphRun.id == run_id)
            .values(
                status=status,
                final_state=final_state,
                error=error,
                finished_at=finished_at or datetime.now(timezone.utc),
            )
            .returning(AgentGraphRun.id)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def get_run(self, db: AsyncSession, run_id: UUID) -> Optional[AgentGraphRun]:
        """Get a run by ID."""
        return await db.get(AgentGraphRun, run_id)

    # ==================== Step Operations ====================

    async def create_step(
        self,
        db: AsyncSession,
        run_id: UUID,
        node_key: str,
        step_order: int,
        started_at: Optional[datetime] = None,
    ) -> AgentGraphRunStep:
        """Create a step record when a node starts."""
        step = AgentGraphRunStep(
            run_id=run_id,
            node_key=node_key,
            step_order=step_order,
            started_at=started_at or datetime.now(timezone.utc),
        )
        db.add(step)
        await db.flush()
        await db.refresh(step)
        return step

    async def finish_step(
        self,
        db: AsyncSession,
        step_id: UUID,
        state_delta: Optional[Dict[str, Any]],
        finished_at: Optional[datetime] = None,
    ) -> bool:
        """Record a step's output (or error payload) and finish time."""
        stmt = (
            update(AgentGraphRunStep)
            .where(AgentGraphRunStep.id == step_id)
            .values(
                state_delta=state_delta,
                finished_at=finished_at or datetime.now(timezone.utc),
            )
            .returning(AgentGraphRunStep.id)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none() is not None
