"""
Tests for CartService domain service.
"""

from datetime import datetime, timedelta, timezone

import pytest

from shared.config.constants import DeliveryType, OrderStatus, ScheduleRule
from order_engine.models import Order
from order_engine.services.domain import (
    DurationNotOfferedError,
    InvalidCartValueError,
    ItemNotFoundError,
    ItemNotInCartError,
    ItemUnavailableError,
)
from tests.conftest import CUSTOMER, FIXED_NOW

UTC = timezone.utc


class TestCartTotals:
    @pytest.mark.asyncio
    async def test_subtotal_and_delivery_total(self, services, scope, pizza, soda):
        """Should total 30.97 for 2 x 12.99 + 4.99 and 35.97 with a 5.00 delivery fee."""
        await services.cart.add_item(scope, CUSTOMER, pizza.id, quantity=2)
        cart = await services.cart.add_item(scope, CUSTOMER, soda.id)

        assert cart.subtotal_cents == 3097
        assert cart.total_cents == 3097

        cart = await services.cart.set_delivery_type(scope, CUSTOMER, DeliveryType.DELIVERY)

        assert cart.delivery_fee_cents == 500
        assert cart.total_cents == 3597

    @pytest.mark.asyncio
    async def test_pickup_removes_delivery_fee(self, services, scope, pizza):
        """Should drop the fee when switching from delivery to pickup."""
        await services.cart.add_item(scope, CUSTOMER, pizza.id)
        await services.cart.set_delivery_type(scope, CUSTOMER, DeliveryType.DELIVERY)

        cart = await services.cart.set_delivery_type(scope, CUSTOMER, DeliveryType.PICKUP)

        assert cart.delivery_fee_cents == 0
        assert cart.total_cents == 1299

    @pytest.mark.asyncio
    async def test_price_snapshot_survives_catalog_change(self, db_session, services, scope, pizza):
        """Should keep the unit price captured when the item was added."""
        await services.cart.add_item(scope, CUSTOMER, pizza.id)
        pizza.price_cents = 9999
        await db_session.commit()

        cart = await services.cart.get_cart(scope, CUSTOMER)

        assert cart.items[0].unit_price_cents == 1299
        assert cart.subtotal_cents == 1299


class TestCartItems:
    @pytest.mark.asyncio
    async def test_adding_same_item_increments_quantity(self, services, scope, pizza):
        """Should merge a repeated add into the existing line."""
        await services.cart.add_item(scope, CUSTOMER, pizza.id)
        cart = await services.cart.add_item(scope, CUSTOMER, pizza.id, quantity=2)

        assert len(cart.items) == 1
        assert cart.items[0].quantity == 3
        assert cart.subtotal_cents == 3 * 1299

    @pytest.mark.asyncio
    async def test_unavailable_item_rejected(self, make_item, services, scope):
        """Should raise ItemUnavailableError for an item off sale."""
        item = await make_item(name="Tiramisu", is_available=False)

        with pytest.raises(ItemUnavailableError) as exc_info:
            await services.cart.add_item(scope, CUSTOMER, item.id)

        assert exc_info.value.item_id == item.id

    @pytest.mark.asyncio
    async def test_unknown_item_rejected(self, services, scope, seed_business):
        """Should raise ItemNotFoundError for an id outside the catalog."""
        with pytest.raises(ItemNotFoundError):
            await services.cart.add_item(scope, CUSTOMER, 424242)

    @pytest.mark.asyncio
    async def test_quantity_above_limit_rejected(self, services, scope, pizza):
        """Should refuse quantities above the per-line maximum."""
        with pytest.raises(InvalidCartValueError):
            await services.cart.add_item(scope, CUSTOMER, pizza.id, quantity=100)

    @pytest.mark.asyncio
    async def test_duration_tier_pricing(self, services, scope, kayak):
        """Should price a 120 minute kayak with its tier and keep 60 minutes at base price."""
        await services.cart.add_item(scope, CUSTOMER, kayak.id, duration_minutes=120)
        cart = await services.cart.add_item(scope, CUSTOMER, kayak.id, duration_minutes=60)

        by_duration = {line.duration_minutes: line for line in cart.items}
        assert by_duration[120].unit_price_cents == 2500
        assert by_duration[60].unit_price_cents == 1500
        assert cart.subtotal_cents == 4000

    @pytest.mark.asyncio
    async def test_unknown_duration_lists_offered_options(self, services, scope, kayak):
        """Should reject an unoffered duration and list the valid ones."""
        with pytest.raises(DurationNotOfferedError) as exc_info:
            await services.cart.add_item(scope, CUSTOMER, kayak.id, duration_minutes=45)

        assert exc_info.value.offered == [60, 120]

    @pytest.mark.asyncio
    async def test_update_quantity_zero_removes_line(self, services, scope, pizza, soda):
        """Should delete the line when the quantity is set to zero."""
        await services.cart.add_item(scope, CUSTOMER, pizza.id)
        await services.cart.add_item(scope, CUSTOMER, soda.id)

        cart = await services.cart.update_quantity(scope, CUSTOMER, pizza.id, 0)

        assert [line.item_id for line in cart.items] == [soda.id]
        assert cart.subtotal_cents == 499

    @pytest.mark.asyncio
    async def test_remove_item_not_in_cart(self, services, scope, pizza, soda):
        """Should raise ItemNotInCartError when removing something never added."""
        await services.cart.add_item(scope, CUSTOMER, pizza.id)

        with pytest.raises(ItemNotInCartError):
            await services.cart.remove_item(scope, CUSTOMER, soda.id)

    @pytest.mark.asyncio
    async def test_clear_cart_keeps_cart_open(self, services, scope, pizza):
        """Should empty the cart without closing it."""
        await services.cart.add_item(scope, CUSTOMER, pizza.id, quantity=2)

        cart = await services.cart.clear_cart(scope, CUSTOMER)

        assert cart.items == []
        assert cart.total_cents == 0
        assert cart.status == OrderStatus.CART

    @pytest.mark.asyncio
    async def test_get_cart_without_cart_is_empty(self, services, scope):
        """Should return an empty snapshot and not create a cart."""
        cart = await services.cart.get_cart(scope, CUSTOMER)

        assert cart.order_id is None
        assert await services.cart.get_open_cart(scope, CUSTOMER) is None


class TestDeliveryAndNotes:
    @pytest.mark.asyncio
    async def test_address_switches_to_delivery(self, services, scope, pizza):
        """Should set type delivery and apply the fee when an address is given."""
        await services.cart.add_item(scope, CUSTOMER, pizza.id)

        cart = await services.cart.set_delivery_address(scope, CUSTOMER, "  Av. Siempre Viva 742  ")

        assert cart.delivery_type == DeliveryType.DELIVERY
        assert cart.delivery_address == "Av. Siempre Viva 742"
        assert cart.total_cents == 1299 + 500

    @pytest.mark.asyncio
    async def test_blank_address_rejected(self, services, scope, seed_business):
        """Should refuse an empty address."""
        with pytest.raises(InvalidCartValueError):
            await services.cart.set_delivery_address(scope, CUSTOMER, "   ")

    @pytest.mark.asyncio
    async def test_unknown_delivery_type_rejected(self, services, scope, seed_business):
        """Should refuse delivery types outside pickup/delivery/on_site."""
        with pytest.raises(InvalidCartValueError):
            await services.cart.set_delivery_type(scope, CUSTOMER, "drone")

    @pytest.mark.asyncio
    async def test_notes_are_sanitized(self, services, scope, seed_business):
        """Should strip control characters from notes."""
        cart = await services.cart.set_notes(scope, CUSTOMER, "No onions\x00 please")

        assert cart.notes == "No onions please"


class TestScheduling:
    @pytest.mark.asyncio
    async def test_accepted_time_is_stored_and_validated(self, services, scope, private_room):
        """Should store the time and mark the schedule as validated."""
        await services.cart.add_item(scope, CUSTOMER, private_room.id)
        candidate = datetime(2026, 3, 2, 19, 0, tzinfo=UTC)

        decision, cart = await services.cart.set_scheduled_time(scope, CUSTOMER, candidate)

        assert decision.accepted
        assert cart.scheduled_for.replace(tzinfo=UTC) == candidate
        assert cart.schedule_validated is True

    @pytest.mark.asyncio
    async def test_rejected_time_keeps_previous_schedule(
        self, services, scope, private_room, make_booking
    ):
        """Should leave the stored schedule untouched when a new time is refused."""
        await services.cart.add_item(scope, CUSTOMER, private_room.id)
        good = datetime(2026, 3, 2, 19, 0, tzinfo=UTC)
        await services.cart.set_scheduled_time(scope, CUSTOMER, good)
        await make_booking(private_room, datetime(2026, 3, 2, 15, 0, tzinfo=UTC))

        decision, cart = await services.cart.set_scheduled_time(
            scope, CUSTOMER, datetime(2026, 3, 2, 15, 30, tzinfo=UTC)
        )

        assert decision.rejection.rule == ScheduleRule.CAPACITY
        assert cart.scheduled_for.replace(tzinfo=UTC) == good
        assert cart.schedule_validated is True

    @pytest.mark.asyncio
    async def test_changing_scheduled_line_requires_revalidation(self, services, scope, kayak):
        """Should clear the validation mark when a schedulable line changes."""
        await services.cart.add_item(scope, CUSTOMER, kayak.id)
        await services.cart.set_scheduled_time(scope, CUSTOMER, FIXED_NOW + timedelta(hours=3))

        cart = await services.cart.add_item(scope, CUSTOMER, kayak.id)

        assert cart.scheduled_for is not None
        assert cart.schedule_validated is False

    @pytest.mark.asyncio
    async def test_regular_item_keeps_validation(self, services, scope, kayak, soda):
        """Should keep the validation mark when a non-schedulable line changes."""
        await services.cart.add_item(scope, CUSTOMER, kayak.id)
        await services.cart.set_scheduled_time(scope, CUSTOMER, FIXED_NOW + timedelta(hours=3))

        cart = await services.cart.add_item(scope, CUSTOMER, soda.id)

        assert cart.schedule_validated is True

    @pytest.mark.asyncio
    async def test_rejected_add_keeps_validation(self, services, scope, private_room):
        """Should keep a validated schedule when an add is refused for its quantity."""
        await services.cart.add_item(scope, CUSTOMER, private_room.id)
        await services.cart.set_scheduled_time(scope, CUSTOMER, datetime(2026, 3, 2, 19, 0, tzinfo=UTC))

        with pytest.raises(InvalidCartValueError):
            await services.cart.add_item(scope, CUSTOMER, private_room.id, quantity=99)
        await services.cart.set_notes(scope, CUSTOMER, "Window table")
        cart = await services.cart.set_delivery_type(scope, CUSTOMER, DeliveryType.ON_SITE)

        assert cart.schedule_validated is True
        assert await services.lifecycle.validate_for_confirmation(scope, CUSTOMER) == []


class TestMenu:
    @pytest.mark.asyncio
    async def test_menu_lists_items_on_sale(self, services, scope, pizza, soda, private_room, make_item):
        """Should list available items by name and skip the unavailable ones."""
        await make_item(name="Tiramisu", is_available=False)

        menu = await services.cart.list_menu(scope)

        assert [entry.name for entry in menu] == ["Lemonade", "Margherita", "Private room"]
        room = menu[-1]
        assert room.item_id == private_room.id
        assert room.requires_scheduling is True
        assert [(o.duration_minutes, o.price_cents) for o in room.duration_options] == [(60, 5000)]
        assert menu[0].duration_options == []

    @pytest.mark.asyncio
    async def test_prompt_line(self, services, scope, kayak):
        """Should render id, name, price, durations and the booking hint on one line."""
        menu = await services.cart.list_menu(scope)

        assert menu[0].prompt_line() == (
            f"#{kayak.id} Kayak: 1500 (60 min 1500, 120 min 2500) [needs date and time]"
        )


class TestAvailability:
    @pytest.mark.asyncio
    async def test_available_without_time(self, services, scope, pizza):
        """Should report an item on sale as available."""
        result = await services.cart.check_item_availability(scope, pizza.id)

        assert result.available is True
        assert result.decision is None

    @pytest.mark.asyncio
    async def test_booked_slot_unavailable(self, services, scope, private_room, make_booking):
        """Should report a fully booked slot as unavailable with the reason."""
        await make_booking(private_room, datetime(2026, 3, 2, 18, 0, tzinfo=UTC))

        result = await services.cart.check_item_availability(
            scope, private_room.id, candidate=datetime(2026, 3, 2, 18, 30, tzinfo=UTC)
        )

        assert result.available is False
        assert result.decision.rejection.rule == ScheduleRule.CAPACITY


class TestDuplicateCarts:
    @pytest.mark.asyncio
    async def test_duplicate_open_carts_are_merged(self, db_session, services, scope, pizza, soda):
        """Should collapse two open carts into one holding every line."""
        first = await services.cart.add_item(scope, CUSTOMER, pizza.id)
        # Simulate a concurrent creation
        stray = Order(
            business_id=scope.business_id,
            customer_id=CUSTOMER,
            status=OrderStatus.CART,
            delivery_type=DeliveryType.PICKUP,
            subtotal_cents=0,
            delivery_fee_cents=0,
            total_cents=0,
        )
        db_session.add(stray)
        await db_session.commit()
        await services.store.append_line_item(
            stray, item_id=soda.id, name=soda.name, unit_price_cents=499, quantity=1
        )

        cart = await services.cart.get_cart(scope, CUSTOMER)

        assert sorted(line.item_id for line in cart.items) == sorted([pizza.id, soda.id])
        assert cart.subtotal_cents == 1299 + 499
        assert cart.delivery_type == DeliveryType.PICKUP
        # Newest cart with items survives
        assert cart.order_id == stray.id
        assert await services.store.find_by_id(first.order_id) is None
