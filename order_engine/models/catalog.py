"""
Catalog Models: Item, DurationTier.

The catalog is read-only for the order engine; it is maintained by the
admin CRUD endpoints.
"""

from __future__ import annotations

from datetime import time
from typing import Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    Text,
    Time,
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import AuditMixin, Base, BigIntPK


class Item(AuditMixin, Base):
    """
    A product or service a customer can put in the cart.

    Scheduling fields only matter when ``requires_scheduling`` is set
    (schedule-only items such as table bookings, rentals or appointments):
    - min_lead_hours: minimum advance notice
    - duration_minutes: length of one booking (None = default duration)
    - available_from / available_to: time-of-day window
    - available_days: lowercase weekday names, empty = every day
    - capacity: concurrent instances, None = unlimited
    - is_exclusive: with unlimited capacity, one booking blocks the slot
    """

    __tablename__ = "item"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    business_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("business.id"), nullable=False, index=True
    )
    branch_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("branch.id"), index=True
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    is_available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    image_url: Mapped[Optional[str]] = mapped_column(Text)

    requires_scheduling: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    min_lead_hours: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    duration_minutes: Mapped[Optional[int]] = mapped_column(Integer)
    available_from: Mapped[Optional[time]] = mapped_column(Time)
    available_to: Mapped[Optional[time]] = mapped_column(Time)
    available_days: Mapped[Optional[list[str]]] = mapped_column(JSON)
    capacity: Mapped[Optional[int]] = mapped_column(Integer)
    is_exclusive: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        Index("ix_item_business_available", "business_id", "is_available"),
        CheckConstraint("price_cents >= 0", name="chk_item_price_non_negative"),
        CheckConstraint("capacity IS NULL OR capacity > 0", name="chk_item_capacity_positive"),
        CheckConstraint("min_lead_hours >= 0", name="chk_item_min_lead_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<Item(id={self.id}, name='{self.name}', scheduled={self.requires_scheduling})>"


class DurationTier(AuditMixin, Base):
    """Price-by-duration variant of an item (e.g. 60 min / 90 min session)."""

    __tablename__ = "duration_tier"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    item_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("item.id"), nullable=False, index=True
    )
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    price_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        CheckConstraint("duration_minutes > 0", name="chk_duration_tier_positive"),
        CheckConstraint("price_cents >= 0", name="chk_duration_tier_price_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<DurationTier(item_id={self.item_id}, {self.duration_minutes}min, {self.price_cents})>"
