"""
Base class and mixins for all SQLAlchemy ORM models.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, Integer, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from shared.utils.timeutils import utcnow

# SQLite only auto-increments INTEGER PRIMARY KEY columns
BigIntPK = BigInteger().with_variant(Integer(), "sqlite")


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class TimestampMixin:
    """
    created_at / updated_at pair.

    Values are generated in Python so they are known after flush without a
    refresh round-trip (async sessions cannot lazy-load expired columns).
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False, index=True
    )


class AuditMixin(TimestampMixin):
    """
    Timestamps plus an is_active flag for catalog entities.

    Inactive rows stay in place for historical orders but are never offered
    to customers again.
    """

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)

    def __repr__(self) -> str:
        class_name = self.__class__.__name__
        id_val = getattr(self, "id", None)
        active = "active" if self.is_active else "inactive"
        return f"<{class_name}(id={id_val}, {active})>"
