"""
Order Models: Order, OrderItem, OrderStatusHistory.

A cart and a finalized order are the same row in two lifecycle phases:
status 'cart' is the mutable draft, every other status is an order.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from shared.config.constants import OrderStatus
from shared.utils.timeutils import utcnow

from .base import Base, BigIntPK, TimestampMixin


class Order(TimestampMixin, Base):
    """
    Cart/order of one customer within a scope (business, optional branch).

    At most one row per (business_id, branch_id, customer_id) may be in
    status 'cart'; the draft store collapses duplicates.
    """

    __tablename__ = "customer_order"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    business_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("business.id"), nullable=False, index=True
    )
    branch_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("branch.id"), index=True
    )
    # Channel-qualified handle, e.g. "whatsapp:+5491122334455"
    customer_id: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=OrderStatus.CART, nullable=False, index=True
    )

    delivery_type: Mapped[Optional[str]] = mapped_column(String(20))  # pickup, delivery, on_site
    delivery_address: Mapped[Optional[str]] = mapped_column(Text)
    scheduled_for: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), index=True)
    # Set only when scheduled_for passed the scheduling validator
    schedule_validated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    notes: Mapped[Optional[str]] = mapped_column(Text)

    subtotal_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    delivery_fee_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    accepted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    abandoned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        # Open cart lookup for a conversation
        Index("ix_order_scope_customer_status", "business_id", "branch_id", "customer_id", "status"),
        # Reaper: idle carts
        Index("ix_order_status_updated", "status", "updated_at"),
        CheckConstraint("subtotal_cents >= 0", name="chk_order_subtotal_non_negative"),
        CheckConstraint("delivery_fee_cents >= 0", name="chk_order_fee_non_negative"),
    )

    @property
    def is_cart(self) -> bool:
        return self.status == OrderStatus.CART

    def __repr__(self) -> str:
        return f"<Order(id={self.id}, status='{self.status}', customer_id='{self.customer_id}')>"


class OrderItem(Base):
    """
    A line of a cart/order.
    Name, price and duration are snapshots taken when the line was added,
    so later catalog edits never change historical totals.
    """

    __tablename__ = "order_item"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    order_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("customer_order.id", ondelete="CASCADE"), nullable=False, index=True
    )
    item_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("item.id"), nullable=False, index=True
    )
    duration_tier_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("duration_tier.id")
    )
    name_snapshot: Mapped[str] = mapped_column(Text, nullable=False)
    unit_price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    duration_minutes: Mapped[Optional[int]] = mapped_column(Integer)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        CheckConstraint("quantity > 0", name="chk_order_item_qty_positive"),
        CheckConstraint("unit_price_cents >= 0", name="chk_order_item_price_non_negative"),
    )

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity

    def __repr__(self) -> str:
        return f"<OrderItem(id={self.id}, order_id={self.order_id}, item_id={self.item_id}, qty={self.quantity})>"


class OrderStatusHistory(Base):
    """
    Append-only audit record, one row per committed status transition.
    Never updated or deleted.
    """

    __tablename__ = "order_status_history"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    order_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("customer_order.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    previous_status: Mapped[Optional[str]] = mapped_column(String(20))
    actor: Mapped[str] = mapped_column(String(20), nullable=False)  # system, business, customer
    reason: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_order_status_history_order_created", "order_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<OrderStatusHistory(order_id={self.order_id}, {self.previous_status}->{self.status}, actor={self.actor})>"
