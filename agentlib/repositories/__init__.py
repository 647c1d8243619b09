"""
Agent Graph Repository Layer

Usage:
    from agentlib.repositories import GraphRepository, RunRepository

    async with get_db_session() as db:
        snapshot = await GraphRepository().load_snapshot(db, graph_id)
"""

from .graph_repo import GraphRepository
from .run_repo import RunRepository

__all__ = ["GraphRepository", "RunRepository"]
