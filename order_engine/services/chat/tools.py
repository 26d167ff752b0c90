"""
Conversation tools.

Each tool is a thin adapter from validated arguments to a domain service
call. Business-rule rejections come back as unsuccessful ToolResults with
the user-facing reason; anything else propagates to the registry, which
reports it as an internal error.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from functools import wraps
from typing import Any, Literal

from pydantic import BaseModel, Field

from shared.config.constants import WEEKDAYS, Actor, DeliveryType, Limits
from shared.config.logging import chat_logger as logger
from shared.utils.timeutils import get_zone
from order_engine.repositories import OrderNotFoundError
from order_engine.schemas import BusinessProfile, CartOutput, Scope
from order_engine.services.chat.conversation_state import ConversationState
from order_engine.services.chat.tool_registry import NoArgs, ToolRegistry, ToolResult, ToolSpec
from order_engine.services.domain import (
    CancellationNotAllowedError,
    CartRuleError,
    ConfirmationRejectedError,
    DomainServices,
    ItemUnavailableError,
)
from order_engine.services.notifications import OrderNotifier


@dataclass
class ToolContext:
    """Everything a tool may touch during one conversation turn."""

    scope: Scope
    customer_key: str
    business: BusinessProfile
    services: DomainServices
    state: ConversationState
    notifier: OrderNotifier | None = None

    def localize(self, value: datetime) -> datetime:
        """Times without an offset are the business's local wall-clock time."""
        if value.tzinfo is None:
            return value.replace(tzinfo=get_zone(self.business.timezone))
        return value


def format_cents(cents: int) -> str:
    return f"{cents // 100}.{cents % 100:02d}"


def _cart_data(cart: CartOutput) -> dict[str, Any]:
    data = cart.model_dump(mode="json")
    data["total"] = format_cents(cart.total_cents)
    return data


Handler = Callable[[ToolContext, Any], Awaitable[ToolResult]]


def _rule_rejections(handler: Handler) -> Handler:
    """Turn business-rule exceptions into rejected results."""

    @wraps(handler)
    async def wrapper(ctx: ToolContext, args: Any) -> ToolResult:
        try:
            return await handler(ctx, args)
        except ItemUnavailableError as e:
            if ctx.state.should_notify_unavailable(e.item_id):
                return ToolResult.rejected(str(e), data={"item_id": e.item_id})
            return ToolResult.rejected(
                f"{e.item_name} is still unavailable; the customer was already told",
                data={"item_id": e.item_id, "already_notified": True},
            )
        except CartRuleError as e:
            return ToolResult.rejected(str(e))
        except ConfirmationRejectedError as e:
            return ToolResult.rejected(
                "The order cannot be confirmed yet", data={"problems": e.problems}
            )
        except CancellationNotAllowedError as e:
            return ToolResult.rejected(e.reason)
        except OrderNotFoundError as e:
            return ToolResult.rejected(f"Order {e.order_id} was not found")

    return wrapper


# =============================================================================
# Argument models
# =============================================================================


class ItemArgs(BaseModel):
    item_id: int = Field(gt=0, description="Catalog item id")


class AddItemArgs(ItemArgs):
    quantity: int = Field(default=1, ge=1, le=Limits.MAX_ITEM_QUANTITY)
    duration_minutes: int | None = Field(
        default=None, gt=0, description="Booking length for items sold by duration"
    )
    notes: str | None = Field(default=None, max_length=Limits.MAX_NOTES_LENGTH)


class UpdateQuantityArgs(ItemArgs):
    quantity: int = Field(ge=0, le=Limits.MAX_ITEM_QUANTITY, description="0 removes the item")


class AvailabilityArgs(ItemArgs):
    scheduled_for: datetime | None = Field(
        default=None, description="ISO 8601 date-time; without an offset it is local business time"
    )
    quantity: int = Field(default=1, ge=1, le=Limits.MAX_ITEM_QUANTITY)
    duration_minutes: int | None = Field(default=None, gt=0)


class DeliveryTypeArgs(BaseModel):
    delivery_type: Literal["pickup", "delivery", "on_site"]


class AddressArgs(BaseModel):
    address: str = Field(min_length=1, max_length=Limits.MAX_ADDRESS_LENGTH)


class ScheduleArgs(BaseModel):
    scheduled_for: datetime = Field(
        description="ISO 8601 date-time; without an offset it is local business time"
    )


class NotesArgs(BaseModel):
    notes: str = Field(max_length=Limits.MAX_NOTES_LENGTH)


class CancelArgs(BaseModel):
    order_id: int = Field(gt=0)
    reason: str | None = Field(default=None, max_length=Limits.MAX_NOTES_LENGTH)


class MenuArgs(BaseModel):
    search: str | None = Field(
        default=None, max_length=100, description="Part of an item name; omit to list the whole menu"
    )


class OpeningHoursArgs(BaseModel):
    day: Literal["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"] | None = None


# =============================================================================
# Menu
# =============================================================================


async def get_menu_items(ctx: ToolContext, args: MenuArgs) -> ToolResult:
    menu = await ctx.services.cart.list_menu(ctx.scope)
    if args.search:
        needle = args.search.strip().casefold()
        menu = [entry for entry in menu if needle in entry.name.casefold()]
    if not menu:
        return ToolResult.ok("No matching items on sale", data={"items": []})
    items = []
    for entry in menu:
        data = entry.model_dump(mode="json")
        data["price"] = format_cents(entry.price_cents)
        items.append(data)
    return ToolResult.ok(f"{len(items)} item(s) on sale", data={"items": items})


# =============================================================================
# Cart tools
# =============================================================================


async def get_cart(ctx: ToolContext, args: NoArgs) -> ToolResult:
    cart = await ctx.services.cart.get_cart(ctx.scope, ctx.customer_key)
    if not cart.items:
        return ToolResult.ok("The cart is empty", data=_cart_data(cart))
    return ToolResult.ok(f"Cart total {format_cents(cart.total_cents)}", data=_cart_data(cart))


@_rule_rejections
async def add_item_to_cart(ctx: ToolContext, args: AddItemArgs) -> ToolResult:
    cart = await ctx.services.cart.add_item(
        ctx.scope,
        ctx.customer_key,
        args.item_id,
        quantity=args.quantity,
        duration_minutes=args.duration_minutes,
        notes=args.notes,
    )
    return ToolResult.ok(f"Added. Cart total {format_cents(cart.total_cents)}", data=_cart_data(cart))


@_rule_rejections
async def remove_item_from_cart(ctx: ToolContext, args: ItemArgs) -> ToolResult:
    cart = await ctx.services.cart.remove_item(ctx.scope, ctx.customer_key, args.item_id)
    return ToolResult.ok(f"Removed. Cart total {format_cents(cart.total_cents)}", data=_cart_data(cart))


@_rule_rejections
async def update_item_quantity(ctx: ToolContext, args: UpdateQuantityArgs) -> ToolResult:
    cart = await ctx.services.cart.update_quantity(ctx.scope, ctx.customer_key, args.item_id, args.quantity)
    return ToolResult.ok(f"Updated. Cart total {format_cents(cart.total_cents)}", data=_cart_data(cart))


async def clear_cart(ctx: ToolContext, args: NoArgs) -> ToolResult:
    cart = await ctx.services.cart.clear_cart(ctx.scope, ctx.customer_key)
    ctx.state.reset()
    return ToolResult.ok("The cart was emptied", data=_cart_data(cart))


@_rule_rejections
async def check_item_availability(ctx: ToolContext, args: AvailabilityArgs) -> ToolResult:
    candidate = ctx.localize(args.scheduled_for) if args.scheduled_for else None
    result = await ctx.services.cart.check_item_availability(
        ctx.scope,
        args.item_id,
        candidate=candidate,
        quantity=args.quantity,
        duration_minutes=args.duration_minutes,
    )
    data: dict[str, Any] = {
        "item_id": result.item_id,
        "name": result.name,
        "available": result.available,
        "price": format_cents(result.price_cents),
    }
    if result.decision is not None:
        data["scheduled_for"] = result.decision.scheduled_for.isoformat()
        if result.decision.rejection is not None:
            data["rejection"] = result.decision.rejection.to_dict()
    if result.available:
        return ToolResult.ok(f"{result.name} is available", data=data)
    return ToolResult.rejected(result.reason or f"{result.name} is not available", data=data)


# =============================================================================
# Delivery, schedule and notes
# =============================================================================


@_rule_rejections
async def set_delivery_type(ctx: ToolContext, args: DeliveryTypeArgs) -> ToolResult:
    cart = await ctx.services.cart.set_delivery_type(ctx.scope, ctx.customer_key, args.delivery_type)
    message = f"Delivery type set to {args.delivery_type}"
    if args.delivery_type == DeliveryType.DELIVERY and not cart.delivery_address:
        message += "; a delivery address is still needed"
    return ToolResult.ok(message, data=_cart_data(cart))


@_rule_rejections
async def set_delivery_address(ctx: ToolContext, args: AddressArgs) -> ToolResult:
    cart = await ctx.services.cart.set_delivery_address(ctx.scope, ctx.customer_key, args.address)
    return ToolResult.ok("Delivery address saved", data=_cart_data(cart))


@_rule_rejections
async def set_scheduled_time(ctx: ToolContext, args: ScheduleArgs) -> ToolResult:
    decision, cart = await ctx.services.cart.set_scheduled_time(
        ctx.scope, ctx.customer_key, ctx.localize(args.scheduled_for)
    )
    if decision.rejection is not None:
        return ToolResult.rejected(decision.rejection.reason, data=decision.rejection.to_dict())
    local = decision.scheduled_for.astimezone(get_zone(ctx.business.timezone))
    return ToolResult.ok(f"Scheduled for {local.strftime('%A %Y-%m-%d %H:%M')}", data=_cart_data(cart))


@_rule_rejections
async def set_order_notes(ctx: ToolContext, args: NotesArgs) -> ToolResult:
    cart = await ctx.services.cart.set_notes(ctx.scope, ctx.customer_key, args.notes)
    return ToolResult.ok("Notes saved", data=_cart_data(cart))


# =============================================================================
# Orders
# =============================================================================


async def validate_cart_for_confirmation(ctx: ToolContext, args: NoArgs) -> ToolResult:
    problems = await ctx.services.lifecycle.validate_for_confirmation(ctx.scope, ctx.customer_key)
    if problems:
        return ToolResult.rejected("The cart is not ready to confirm", data={"problems": problems})
    return ToolResult.ok("The cart is ready to confirm")


@_rule_rejections
async def confirm_order(ctx: ToolContext, args: NoArgs) -> ToolResult:
    order = await ctx.services.lifecycle.confirm(ctx.scope, ctx.customer_key)
    if ctx.notifier is not None:
        await ctx.notifier.notify_order_confirmed(order)
    ctx.state.reset()
    return ToolResult.ok(
        f"Order {order.id} confirmed. Total {format_cents(order.total_cents)}",
        data={"order_id": order.id, "status": order.status, "total": format_cents(order.total_cents)},
    )


@_rule_rejections
async def cancel_order(ctx: ToolContext, args: CancelArgs) -> ToolResult:
    order = await ctx.services.lifecycle.cancel_by_customer(
        ctx.scope, ctx.customer_key, args.order_id, reason=args.reason
    )
    if ctx.notifier is not None:
        await ctx.notifier.notify_order_cancelled(order, Actor.CUSTOMER)
    return ToolResult.ok(f"Order {order.id} was cancelled", data={"order_id": order.id, "status": order.status})


async def get_my_orders(ctx: ToolContext, args: NoArgs) -> ToolResult:
    orders = await ctx.services.lifecycle.list_customer_orders(ctx.scope, ctx.customer_key)
    if not orders:
        return ToolResult.ok("No orders yet", data={"orders": []})
    return ToolResult.ok(
        f"{len(orders)} recent order(s)",
        data={"orders": [order.model_dump(mode="json") for order in orders]},
    )


# =============================================================================
# Information and media
# =============================================================================


async def get_opening_hours(ctx: ToolContext, args: OpeningHoursArgs) -> ToolResult:
    day_index = WEEKDAYS.index(args.day) if args.day else None
    rows = await ctx.services.catalog.get_opening_hours(ctx.scope, day_index)

    days = [args.day] if args.day else WEEKDAYS
    schedule: dict[str, list[str]] = {day: [] for day in days}
    for row in rows:
        if row.is_closed or row.open_time is None or row.close_time is None:
            continue
        schedule[WEEKDAYS[row.day_of_week]].append(
            f"{row.open_time.strftime('%H:%M')}-{row.close_time.strftime('%H:%M')}"
        )
    hours = {day: windows or "closed" for day, windows in schedule.items()}
    return ToolResult.ok("Opening hours", data={"timezone": ctx.business.timezone, "hours": hours})


async def send_item_image(ctx: ToolContext, args: ItemArgs) -> ToolResult:
    item = await ctx.services.catalog.get_item(ctx.scope, args.item_id)
    if item is None:
        return ToolResult.rejected(f"Item {args.item_id} does not exist in this catalog")
    if not item.image_url:
        return ToolResult.rejected(f"There is no picture of {item.name}")
    return ToolResult.ok(f"Picture of {item.name} attached", images=[item.image_url])


async def send_menu_pdf(ctx: ToolContext, args: NoArgs) -> ToolResult:
    if not ctx.business.menu_pdf_url:
        logger.info("Menu PDF requested but not configured", business_id=ctx.business.id)
        return ToolResult.rejected("The menu is not available as a document")
    return ToolResult.ok("Menu attached", documents=[ctx.business.menu_pdf_url])


# =============================================================================
# Registry
# =============================================================================

TOOL_SPECS: list[ToolSpec] = [
    ToolSpec(
        "get_menu_items",
        "List the items on sale with their ids, prices and booking durations. Optionally filter by name.",
        MenuArgs,
        get_menu_items,
    ),
    ToolSpec("get_cart", "Show the customer's current cart with items and totals.", NoArgs, get_cart),
    ToolSpec(
        "add_item_to_cart",
        "Add a catalog item to the cart. Adding an item already in the cart increases its quantity.",
        AddItemArgs,
        add_item_to_cart,
    ),
    ToolSpec("remove_item_from_cart", "Remove an item from the cart.", ItemArgs, remove_item_from_cart),
    ToolSpec(
        "update_item_quantity",
        "Set the quantity of an item already in the cart. 0 removes it.",
        UpdateQuantityArgs,
        update_item_quantity,
    ),
    ToolSpec("clear_cart", "Remove every item from the cart.", NoArgs, clear_cart),
    ToolSpec(
        "check_item_availability",
        "Check whether an item is on sale and, given a time, whether it can be booked then.",
        AvailabilityArgs,
        check_item_availability,
    ),
    ToolSpec(
        "set_delivery_type",
        "Choose how the order is received: pickup, delivery or on_site.",
        DeliveryTypeArgs,
        set_delivery_type,
    ),
    ToolSpec(
        "set_delivery_address",
        "Save the delivery address. Also switches the order to delivery.",
        AddressArgs,
        set_delivery_address,
    ),
    ToolSpec(
        "set_scheduled_time",
        "Schedule the order for a date and time. The time is validated before it is saved.",
        ScheduleArgs,
        set_scheduled_time,
    ),
    ToolSpec("set_order_notes", "Save free-text notes for the order.", NotesArgs, set_order_notes),
    ToolSpec(
        "validate_cart_for_confirmation",
        "List what is still missing before the order can be confirmed.",
        NoArgs,
        validate_cart_for_confirmation,
    ),
    ToolSpec(
        "confirm_order",
        "Confirm the cart as an order. Only call after the customer explicitly agrees.",
        NoArgs,
        confirm_order,
    ),
    ToolSpec("cancel_order", "Cancel one of the customer's confirmed orders.", CancelArgs, cancel_order),
    ToolSpec("get_my_orders", "List the customer's recent orders.", NoArgs, get_my_orders),
    ToolSpec(
        "get_opening_hours",
        "Opening hours for the whole week or one day.",
        OpeningHoursArgs,
        get_opening_hours,
    ),
    ToolSpec("send_item_image", "Send the customer a picture of an item.", ItemArgs, send_item_image),
    ToolSpec("send_menu_pdf", "Send the customer the menu as a PDF.", NoArgs, send_menu_pdf),
]


def build_tool_registry() -> ToolRegistry:
    registry = ToolRegistry()
    for spec in TOOL_SPECS:
        registry.register(spec)
    return registry
