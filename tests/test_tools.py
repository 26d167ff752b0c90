"""
Tests for the tool registry and the conversation tools.
"""

import json
from unittest.mock import AsyncMock

import pytest
from pydantic import BaseModel

from shared.config.constants import Actor, DeliveryType, OrderStatus
from order_engine.schemas import BusinessProfile
from order_engine.services.chat import (
    ConversationState,
    ToolCall,
    ToolContext,
    ToolErrorCode,
    ToolRegistry,
    ToolResult,
    ToolSpec,
    build_tool_registry,
)
from order_engine.services.chat.tool_registry import NoArgs
from tests.conftest import CUSTOMER, FIXED_NOW


def _call(name: str, arguments=None, raw=None) -> ToolCall:
    return ToolCall(id="call_0", name=name, arguments={} if arguments is None else arguments, raw_arguments=raw)


@pytest.fixture
def registry():
    return build_tool_registry()


@pytest.fixture
def notifier():
    return AsyncMock()


@pytest.fixture
def ctx(scope, seed_business, services, notifier):
    return ToolContext(
        scope=scope,
        customer_key=CUSTOMER,
        business=BusinessProfile.model_validate(seed_business),
        services=services,
        state=ConversationState(now=0.0),
        notifier=notifier,
    )


class EchoArgs(BaseModel):
    word: str


class TestToolRegistry:
    def test_schemas_describe_every_tool(self, registry):
        """Should render one function schema per tool without pydantic titles."""
        schemas = registry.schemas()

        assert len(schemas) == len(registry) == 18
        add_item = next(s for s in schemas if s["function"]["name"] == "add_item_to_cart")
        assert add_item["type"] == "function"
        assert "title" not in add_item["function"]["parameters"]
        assert add_item["function"]["parameters"]["required"] == ["item_id"]

    def test_duplicate_registration_rejected(self):
        """Should refuse two tools with the same name."""

        async def echo(ctx, args):
            return ToolResult.ok(args.word)

        registry = ToolRegistry()
        registry.register(ToolSpec("echo", "Echo a word", EchoArgs, echo))

        with pytest.raises(ValueError):
            registry.register(ToolSpec("echo", "Echo again", EchoArgs, echo))

    @pytest.mark.asyncio
    async def test_unknown_tool(self, registry):
        """Should answer unsupported_operation for a tool that does not exist."""
        result = await registry.dispatch(_call("order_pizza_by_fax"), context=None)

        assert result.success is False
        assert result.error_code == ToolErrorCode.UNSUPPORTED_OPERATION

    @pytest.mark.asyncio
    async def test_malformed_arguments(self, registry):
        """Should answer invalid_arguments when the arguments are not a JSON object."""
        call = ToolCall(id="call_0", name="add_item_to_cart", arguments=None, raw_arguments="{item_id: 3")

        result = await registry.dispatch(call, context=None)

        assert result.error_code == ToolErrorCode.INVALID_ARGUMENTS

    @pytest.mark.asyncio
    async def test_invalid_arguments_list_errors(self, registry):
        """Should report each validation error by field."""
        result = await registry.dispatch(_call("add_item_to_cart", {"quantity": 0}), context=None)

        assert result.error_code == ToolErrorCode.INVALID_ARGUMENTS
        fields = {error.split(":")[0] for error in result.data["errors"]}
        assert fields == {"item_id", "quantity"}

    @pytest.mark.asyncio
    async def test_handler_crash_becomes_internal_error(self):
        """Should never raise when a handler fails unexpectedly."""

        async def explode(ctx, args):
            raise RuntimeError("kaboom")

        registry = ToolRegistry()
        registry.register(ToolSpec("explode", "Always fails", NoArgs, explode))

        result = await registry.dispatch(_call("explode"), context=None)

        assert result.success is False
        assert result.error_code == ToolErrorCode.INTERNAL_ERROR
        assert "kaboom" not in result.message

    def test_engine_content_excludes_media(self):
        """Should keep media URLs out of the engine's tool message."""
        result = ToolResult.ok("Picture attached", images=["https://cdn.example.com/x.jpg"])

        content = json.loads(result.to_engine_content())

        assert content == {"success": True, "message": "Picture attached"}


class TestCartTools:
    @pytest.mark.asyncio
    async def test_add_item_reports_total(self, registry, ctx, pizza):
        """Should add the item and return the formatted total."""
        result = await registry.dispatch(_call("add_item_to_cart", {"item_id": pizza.id, "quantity": 2}), ctx)

        assert result.success is True
        assert result.message == "Added. Cart total 25.98"
        assert result.data["total"] == "25.98"

    @pytest.mark.asyncio
    async def test_unavailable_item_reported_once(self, registry, ctx, make_item):
        """Should flag a repeated unavailable item as already notified."""
        item = await make_item(name="Tiramisu", is_available=False)
        call = _call("add_item_to_cart", {"item_id": item.id})

        first = await registry.dispatch(call, ctx)
        second = await registry.dispatch(call, ctx)

        assert first.error_code == ToolErrorCode.REJECTED
        assert first.message == "Tiramisu is not available right now"
        assert second.data == {"item_id": item.id, "already_notified": True}

    @pytest.mark.asyncio
    async def test_clear_cart_resets_notices(self, registry, ctx, make_item):
        """Should forget unavailable-item notices when the cart is emptied."""
        item = await make_item(name="Tiramisu", is_available=False)
        await registry.dispatch(_call("add_item_to_cart", {"item_id": item.id}), ctx)

        await registry.dispatch(_call("clear_cart"), ctx)

        assert ctx.state.should_notify_unavailable(item.id) is True

    @pytest.mark.asyncio
    async def test_rule_violation_is_rejected_not_crashed(self, registry, ctx, pizza):
        """Should return the rule message for removing an item not in the cart."""
        result = await registry.dispatch(_call("remove_item_from_cart", {"item_id": pizza.id}), ctx)

        assert result.error_code == ToolErrorCode.REJECTED
        assert result.message == f"Item {pizza.id} is not in the cart"

    @pytest.mark.asyncio
    async def test_delivery_without_address_hint(self, registry, ctx, pizza):
        """Should remind that delivery still needs an address."""
        await registry.dispatch(_call("add_item_to_cart", {"item_id": pizza.id}), ctx)

        result = await registry.dispatch(_call("set_delivery_type", {"delivery_type": "delivery"}), ctx)

        assert result.message.endswith("a delivery address is still needed")
        assert result.data["total_cents"] == 1799

    @pytest.mark.asyncio
    async def test_naive_time_is_business_local(self, db_session, registry, ctx, seed_business, private_room):
        """Should read a time without an offset as the business's wall-clock time."""
        seed_business.timezone = "America/Argentina/Buenos_Aires"
        await db_session.commit()
        ctx.business = BusinessProfile.model_validate(seed_business)
        await registry.dispatch(_call("add_item_to_cart", {"item_id": private_room.id}), ctx)

        result = await registry.dispatch(_call("set_scheduled_time", {"scheduled_for": "2026-03-02T19:00:00"}), ctx)

        assert result.success is True
        assert result.message == "Scheduled for Monday 2026-03-02 19:00"
        assert result.data["scheduled_for"].startswith("2026-03-02T22:00:00")

    @pytest.mark.asyncio
    async def test_rejected_time_returns_rule(self, registry, ctx, private_room):
        """Should pass the scheduling rejection back to the engine."""
        await registry.dispatch(_call("add_item_to_cart", {"item_id": private_room.id}), ctx)

        result = await registry.dispatch(_call("set_scheduled_time", {"scheduled_for": "2026-03-02T23:30:00+00:00"}), ctx)

        assert result.error_code == ToolErrorCode.REJECTED
        assert result.data["rule"] == "opening_hours"


class TestOrderTools:
    @pytest.mark.asyncio
    async def test_confirm_notifies_business(self, registry, ctx, notifier, pizza):
        """Should confirm the cart and alert the business."""
        await registry.dispatch(_call("add_item_to_cart", {"item_id": pizza.id}), ctx)
        await registry.dispatch(_call("set_delivery_type", {"delivery_type": DeliveryType.PICKUP}), ctx)

        result = await registry.dispatch(_call("confirm_order"), ctx)

        assert result.success is True
        assert result.data["status"] == OrderStatus.ACCEPTED
        notifier.notify_order_confirmed.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_confirm_lists_problems(self, registry, ctx, notifier, pizza):
        """Should return every missing piece instead of confirming."""
        await registry.dispatch(_call("add_item_to_cart", {"item_id": pizza.id}), ctx)

        result = await registry.dispatch(_call("confirm_order"), ctx)

        assert result.error_code == ToolErrorCode.REJECTED
        assert result.data["problems"] == ["Choose a delivery type (pickup, delivery, on_site)"]
        notifier.notify_order_confirmed.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancel_order_notifies_with_customer_actor(self, registry, ctx, notifier, pizza, make_booking):
        """Should cancel the customer's order and tell the business who cancelled."""
        order = await make_booking(pizza, FIXED_NOW.replace(hour=18), customer_id=CUSTOMER)

        result = await registry.dispatch(_call("cancel_order", {"order_id": order.id}), ctx)

        assert result.success is True
        cancelled, actor = notifier.notify_order_cancelled.await_args.args
        assert (cancelled.id, actor) == (order.id, Actor.CUSTOMER)

    @pytest.mark.asyncio
    async def test_cancel_unknown_order(self, registry, ctx):
        """Should reject cancelling an order that does not exist."""
        result = await registry.dispatch(_call("cancel_order", {"order_id": 424242}), ctx)

        assert result.error_code == ToolErrorCode.REJECTED
        assert result.message == "Order 424242 was not found"

    @pytest.mark.asyncio
    async def test_my_orders(self, registry, ctx, pizza, make_booking):
        """Should list the customer's confirmed orders."""
        order = await make_booking(pizza, FIXED_NOW, customer_id=CUSTOMER)

        result = await registry.dispatch(_call("get_my_orders"), ctx)

        assert [o["order_id"] for o in result.data["orders"]] == [order.id]


class TestInformationTools:
    @pytest.mark.asyncio
    async def test_opening_hours_for_one_day(self, registry, ctx):
        """Should return the windows of the requested day."""
        result = await registry.dispatch(_call("get_opening_hours", {"day": "monday"}), ctx)

        assert result.data == {"timezone": "UTC", "hours": {"monday": ["09:00-22:00"]}}

    @pytest.mark.asyncio
    async def test_item_image_attached(self, registry, ctx, pizza):
        """Should attach the item's picture as media."""
        result = await registry.dispatch(_call("send_item_image", {"item_id": pizza.id}), ctx)

        assert result.images == ["https://cdn.example.com/pizza.jpg"]

    @pytest.mark.asyncio
    async def test_item_without_image(self, registry, ctx, soda):
        """Should reject when the item has no picture."""
        result = await registry.dispatch(_call("send_item_image", {"item_id": soda.id}), ctx)

        assert result.success is False
        assert result.images == []

    @pytest.mark.asyncio
    async def test_menu_pdf_attached(self, registry, ctx):
        """Should attach the business menu document."""
        result = await registry.dispatch(_call("send_menu_pdf"), ctx)

        assert result.documents == ["https://cdn.example.com/menu.pdf"]


class TestMenuTool:
    @pytest.mark.asyncio
    async def test_lists_items_on_sale(self, registry, ctx, pizza, soda, kayak, make_item):
        """Should list sellable items with ids, prices and duration options."""
        await make_item(name="Tiramisu", is_available=False)

        result = await registry.dispatch(_call("get_menu_items"), ctx)

        assert result.success is True
        by_name = {entry["name"]: entry for entry in result.data["items"]}
        assert set(by_name) == {"Kayak", "Lemonade", "Margherita"}
        assert by_name["Margherita"]["item_id"] == pizza.id
        assert by_name["Margherita"]["price"] == "12.99"
        assert by_name["Margherita"]["has_image"] is True
        assert by_name["Lemonade"]["has_image"] is False
        assert by_name["Kayak"]["requires_scheduling"] is True
        assert [o["duration_minutes"] for o in by_name["Kayak"]["duration_options"]] == [60, 120]

    @pytest.mark.asyncio
    async def test_search_by_name(self, registry, ctx, pizza, soda):
        """Should filter the menu by a case-insensitive name fragment."""
        result = await registry.dispatch(_call("get_menu_items", {"search": "MARGH"}), ctx)

        assert [entry["item_id"] for entry in result.data["items"]] == [pizza.id]

    @pytest.mark.asyncio
    async def test_no_match(self, registry, ctx, pizza):
        """Should answer an empty list when nothing matches."""
        result = await registry.dispatch(_call("get_menu_items", {"search": "sushi"}), ctx)

        assert result.success is True
        assert result.data == {"items": []}
