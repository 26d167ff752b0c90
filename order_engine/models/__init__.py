"""
ORM models for the order engine.
"""

from .base import AuditMixin, Base, BigIntPK, TimestampMixin
from .business import Branch, Business, OpeningHours
from .catalog import DurationTier, Item
from .order import Order, OrderItem, OrderStatusHistory

__all__ = [
    "AuditMixin",
    "Base",
    "BigIntPK",
    "TimestampMixin",
    "Branch",
    "Business",
    "OpeningHours",
    "DurationTier",
    "Item",
    "Order",
    "OrderItem",
    "OrderStatusHistory",
]
