"""
Value objects and pydantic schemas shared by services, tools and routers.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Literal, Sequence

from pydantic import BaseModel, Field

from shared.config.constants import Limits
from shared.utils.timeutils import as_utc
from order_engine.models import Order, OrderItem


@dataclass(frozen=True)
class Scope:
    """The (business, operating unit) pair that owns a cart. branch_id None = the business itself."""

    business_id: int
    branch_id: int | None = None

    @property
    def key(self) -> str:
        return f"{self.business_id}:{self.branch_id or 0}"


class BusinessProfile(BaseModel):
    """
    Detached copy of the business fields a conversation turn reads.

    A rolled-back write expires every ORM instance in the session, so the
    tools keep this snapshot instead of the Business row.
    """

    id: int
    name: str
    timezone: str
    menu_pdf_url: str | None = None

    model_config = {"from_attributes": True}


# =============================================================================
# Cart / Order outputs
# =============================================================================


class CartLineOutput(BaseModel):
    line_id: int
    item_id: int
    name: str
    quantity: int
    unit_price_cents: int
    line_total_cents: int
    duration_minutes: int | None = None
    notes: str | None = None

    @classmethod
    def from_line(cls, line: OrderItem) -> "CartLineOutput":
        return cls(
            line_id=line.id,
            item_id=line.item_id,
            name=line.name_snapshot,
            quantity=line.quantity,
            unit_price_cents=line.unit_price_cents,
            line_total_cents=line.line_total_cents,
            duration_minutes=line.duration_minutes,
            notes=line.notes,
        )


class CartOutput(BaseModel):
    """Snapshot of a cart or order, as shown to the reasoning engine and the API."""

    order_id: int | None = None
    status: str
    items: list[CartLineOutput] = Field(default_factory=list)
    delivery_type: str | None = None
    delivery_address: str | None = None
    scheduled_for: datetime | None = None
    schedule_validated: bool = False
    notes: str | None = None
    subtotal_cents: int = 0
    delivery_fee_cents: int = 0
    total_cents: int = 0

    @classmethod
    def empty(cls) -> "CartOutput":
        return cls(status="cart")

    @classmethod
    def from_order(cls, order: Order, lines: Sequence[OrderItem]) -> "CartOutput":
        return cls(
            order_id=order.id,
            status=order.status,
            items=[CartLineOutput.from_line(line) for line in lines],
            delivery_type=order.delivery_type,
            delivery_address=order.delivery_address,
            scheduled_for=as_utc(order.scheduled_for),
            schedule_validated=order.schedule_validated_at is not None,
            notes=order.notes,
            subtotal_cents=order.subtotal_cents,
            delivery_fee_cents=order.delivery_fee_cents,
            total_cents=order.total_cents,
        )


class DurationOptionOutput(BaseModel):
    duration_minutes: int
    price_cents: int


class MenuItemOutput(BaseModel):
    """One sellable catalog item as the reasoning engine sees it."""

    item_id: int
    name: str
    description: str | None = None
    price_cents: int
    requires_scheduling: bool = False
    duration_options: list[DurationOptionOutput] = Field(default_factory=list)
    has_image: bool = False

    def prompt_line(self) -> str:
        line = f"#{self.item_id} {self.name}: {self.price_cents}"
        if self.duration_options:
            options = ", ".join(
                f"{o.duration_minutes} min {o.price_cents}" for o in self.duration_options
            )
            line += f" ({options})"
        if self.requires_scheduling:
            line += " [needs date and time]"
        return line


class OrderSummaryOutput(BaseModel):
    order_id: int
    status: str
    total_cents: int
    scheduled_for: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}

    @classmethod
    def from_order(cls, order: Order) -> "OrderSummaryOutput":
        return cls(
            order_id=order.id,
            status=order.status,
            total_cents=order.total_cents,
            scheduled_for=as_utc(order.scheduled_for),
            created_at=as_utc(order.created_at),
        )


# =============================================================================
# Channel adapter contract
# =============================================================================


class InboundMessage(BaseModel):
    """Message delivered by a channel adapter."""

    business_id: int = Field(gt=0)
    branch_id: int | None = Field(default=None, gt=0)
    channel: str = Field(min_length=1, max_length=32)
    customer_id: str = Field(min_length=1, max_length=200)
    text: str = Field(max_length=Limits.MAX_INBOUND_TEXT_LENGTH)
    message_id: str = Field(min_length=1, max_length=200)

    @property
    def scope(self) -> Scope:
        return Scope(self.business_id, self.branch_id)

    @property
    def customer_key(self) -> str:
        return f"{self.channel}:{self.customer_id}"


class OutboundMessage(BaseModel):
    """Reply for the channel adapter: text plus media to send as separate messages."""

    text: str
    images: list[str] = Field(default_factory=list)
    documents: list[str] = Field(default_factory=list)
    duplicate: bool = False


# =============================================================================
# Business status endpoint
# =============================================================================


class StatusChangeRequest(BaseModel):
    status: Literal["ongoing", "completed", "rejected", "incomplete"]
    reason: str | None = Field(default=None, max_length=500)


class StatusChangeResponse(BaseModel):
    order_id: int
    status: str
    changed_at: datetime | None = None
