"""
Agent Graph Base Model

Provides common functionality for all SQLAlchemy models.
"""

from datetime import datetime, timezone

from sqlalchemy import DateTime, func
from sqlalchemy.orm import Mapped, mapped_column

from ..database import Base


class ReprMixin:
    """Primary-key __repr__ shared by every model."""

    def __repr__(self) -> str:
        class_name = self.__class__.__name__
        pk_cols = [col.key for col in self.__table__.primary_key.columns]
        pk_values = [f"{col}={getattr(self, col, None)}" for col in pk_cols]
        return f"<{class_name}({', '.join(pk_values)})>"


class BaseModel(ReprMixin, Base):
    """
    Abstract base class for stored graph definitions.

    Provides created_at/updated_at timestamps. Run records carry their own
    started_at/finished_at instead and inherit ``RecordModel``.
    """
    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        server_default=func.current_timestamp(),
        nullable=False
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        server_default=func.current_timestamp(),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )


class RecordModel(ReprMixin, Base):
    """Abstract base for append-mostly audit records without timestamps."""
    __abstract__ = True
