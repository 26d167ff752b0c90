"""
Tenant Models: Business, Branch, OpeningHours.
"""

from __future__ import annotations

from datetime import time
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    SmallInteger,
    String,
    Text,
    Time,
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import AuditMixin, Base, BigIntPK


class Business(AuditMixin, Base):
    """
    A tenant: restaurant, venue or salon receiving orders.
    Holds the settings the cart and scheduling rules read.
    """

    __tablename__ = "business"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    timezone: Mapped[str] = mapped_column(String(64), default="UTC", nullable=False)
    delivery_fee_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    # No order may be scheduled later than closing time minus this
    last_order_lead_minutes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    cancelable_before_hours: Mapped[int] = mapped_column(Integer, default=2, nullable=False)
    menu_pdf_url: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        CheckConstraint("delivery_fee_cents >= 0", name="chk_business_delivery_fee_non_negative"),
        CheckConstraint("last_order_lead_minutes >= 0", name="chk_business_last_order_lead"),
    )


class Branch(AuditMixin, Base):
    """An operating unit of a business. Carts may be scoped to a branch."""

    __tablename__ = "branch"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    business_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("business.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)


class OpeningHours(Base):
    """
    Opening hours for one weekday (0 = Monday).

    Rows with branch_id set override the business-wide rows for that
    weekday. A weekday with no row at all is closed.
    """

    __tablename__ = "opening_hours"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    business_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("business.id"), nullable=False, index=True
    )
    branch_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("branch.id"), index=True
    )
    day_of_week: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    open_time: Mapped[Optional[time]] = mapped_column(Time)
    close_time: Mapped[Optional[time]] = mapped_column(Time)
    is_closed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        Index("ix_opening_hours_scope_day", "business_id", "branch_id", "day_of_week"),
        CheckConstraint("day_of_week >= 0 AND day_of_week <= 6", name="chk_opening_hours_day"),
    )

    def __repr__(self) -> str:
        return (
            f"<OpeningHours(business_id={self.business_id}, branch_id={self.branch_id}, "
            f"day={self.day_of_week}, {self.open_time}-{self.close_time}, closed={self.is_closed})>"
        )
