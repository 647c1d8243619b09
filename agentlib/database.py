"""
Database access for graph snapshots and run records.

Snapshot loads and tracker writes each open their own short session, so a
long graph run never holds a connection between steps. A step write that
fails rolls back only that step.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional
import logging

from sqlalchemy.ext.asyncio import AsyncAttrs, AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from .config import settings

logger = logging.getLogger(__name__)


class Base(AsyncAttrs, DeclarativeBase):
    pass


_engine: Optional[AsyncEngine] = None
_sessions: Optional[async_sessionmaker[AsyncSession]] = None


def _redact(url: str) -> str:
    """Hide the password of a database URL."""
    prefix, sep, rest = url.partition("://")
    if not sep or "@" not in rest:
        return url
    creds, host = rest.rsplit("@", 1)
    return f"{prefix}://{creds.split(':', 1)[0]}:****@{host}"


def _session_maker() -> async_sessionmaker[AsyncSession]:
    global _engine, _sessions
    if _sessions is None:
        _engine = create_async_engine(
            settings.database_url,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_pre_ping=True,
        )
        # rows are read after commit when a run or step is finalized
        _sessions = async_sessionmaker(_engine, expire_on_commit=False, autoflush=False)
        logger.info(f"[DB] Engine ready for {_redact(settings.database_url)}")
    return _sessions


@asynccontextmanager
async def get_db_session() -> AsyncIterator[AsyncSession]:
    """Session committed on exit, rolled back when the block raises."""
    async with _session_maker()() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.error(f"[DB] Rolling back: {e}")
            raise


async def dispose_engine() -> None:
    """Close pooled connections; called once a CLI run has finished."""
    global _engine, _sessions
    if _engine is not None:
        await _engine.dispose()
        logger.info("[DB] Engine disposed")
    _engine = None
    _sessions = None
