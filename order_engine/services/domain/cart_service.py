"""
Cart Domain Service.

Mutates the open cart of a (scope, customer) conversation: line items,
delivery attributes, notes and the scheduled time. The draft store
recomputes totals in the same transaction as every line change.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime

from shared.config.constants import DeliveryType, Limits
from shared.config.logging import get_logger, mask_customer_id
from shared.utils.timeutils import utcnow
from shared.utils.validators import sanitize_free_text, validate_quantity
from order_engine.models import Business, Item, Order, OrderItem
from order_engine.repositories import CatalogRepository, DraftStore
from order_engine.schemas import CartOutput, DurationOptionOutput, MenuItemOutput, Scope
from order_engine.services.domain.scheduling_validator import (
    ScheduleDecision,
    SchedulingValidator,
    group_lines,
)

logger = get_logger(__name__)


class CartRuleError(Exception):
    """A cart request the customer must change. The message is user facing."""
    pass


class BusinessNotFoundError(Exception):
    """The scope's business does not exist or is inactive."""

    def __init__(self, business_id: int):
        self.business_id = business_id
        super().__init__(f"Business {business_id} not found")


class ItemNotFoundError(CartRuleError):
    def __init__(self, item_id: int):
        self.item_id = item_id
        super().__init__(f"Item {item_id} does not exist in this catalog")


class ItemUnavailableError(CartRuleError):
    def __init__(self, item: Item):
        self.item_id = item.id
        self.item_name = item.name
        super().__init__(f"{item.name} is not available right now")


class DurationNotOfferedError(CartRuleError):
    def __init__(self, item: Item, duration_minutes: int, offered: Sequence[int]):
        self.item_id = item.id
        self.offered = list(offered)
        options = ", ".join(f"{m} min" for m in offered) or "the standard duration"
        super().__init__(f"{item.name} is not offered for {duration_minutes} minutes (options: {options})")


class ItemNotInCartError(CartRuleError):
    def __init__(self, item_id: int):
        self.item_id = item_id
        super().__init__(f"Item {item_id} is not in the cart")


class InvalidCartValueError(CartRuleError):
    pass


@dataclass(frozen=True)
class AvailabilityResult:
    item_id: int
    name: str
    available: bool
    price_cents: int
    decision: ScheduleDecision | None = None
    reason: str | None = None


class CartService:
    """
    Domain service for cart operations.

    All operations address the open cart of (scope, customer_id); mutations
    create it on first use.
    """

    def __init__(
        self,
        store: DraftStore,
        catalog: CatalogRepository,
        validator: SchedulingValidator,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._catalog = catalog
        self._validator = validator
        self._clock = clock

    # =========================================================================
    # Helpers
    # =========================================================================

    async def get_business(self, scope: Scope) -> Business:
        business = await self._catalog.get_business(scope.business_id)
        if business is None:
            raise BusinessNotFoundError(scope.business_id)
        return business

    async def _get_item(self, scope: Scope, item_id: int) -> Item:
        item = await self._catalog.get_item(scope, item_id)
        if item is None:
            raise ItemNotFoundError(item_id)
        return item

    async def _snapshot(self, cart: Order) -> CartOutput:
        lines = await self._store.list_line_items(cart.id)
        return CartOutput.from_order(cart, lines)

    async def _lines_of(self, cart: Order, item_id: int) -> list[OrderItem]:
        return [line for line in await self._store.list_line_items(cart.id) if line.item_id == item_id]

    @staticmethod
    def _invalidate_schedule(cart: Order, item: Item | None) -> None:
        # Capacity must be re-validated once a booked quantity changes
        if item is None or item.requires_scheduling:
            cart.schedule_validated_at = None

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_open_cart(self, scope: Scope, customer_id: str) -> Order | None:
        return await self._store.get_open_cart(scope, customer_id)

    async def get_cart(self, scope: Scope, customer_id: str) -> CartOutput:
        """Current cart snapshot; an empty snapshot when there is no open cart."""
        cart = await self._store.get_open_cart(scope, customer_id)
        if cart is None:
            return CartOutput.empty()
        return await self._snapshot(cart)

    async def list_menu(self, scope: Scope) -> list[MenuItemOutput]:
        """Items currently on sale, with the duration options of items sold by duration."""
        items = await self._catalog.list_items(scope)
        tiers = await self._catalog.list_tiers_by_item([item.id for item in items])

        menu = []
        for item in items:
            options = []
            if item.duration_minutes and (item.requires_scheduling or item.id in tiers):
                options.append(
                    DurationOptionOutput(duration_minutes=item.duration_minutes, price_cents=item.price_cents)
                )
            options.extend(
                DurationOptionOutput(duration_minutes=t.duration_minutes, price_cents=t.price_cents)
                for t in tiers.get(item.id, [])
                if t.duration_minutes != item.duration_minutes
            )
            menu.append(
                MenuItemOutput(
                    item_id=item.id,
                    name=item.name,
                    description=item.description,
                    price_cents=item.price_cents,
                    requires_scheduling=item.requires_scheduling,
                    duration_options=options,
                    has_image=bool(item.image_url),
                )
            )
        return menu

    # =========================================================================
    # Line items
    # =========================================================================

    async def add_item(
        self,
        scope: Scope,
        customer_id: str,
        item_id: int,
        quantity: int = 1,
        duration_minutes: int | None = None,
        notes: str | None = None,
    ) -> CartOutput:
        """
        Add an item, or increase the quantity of the same item/duration already in the cart.

        Raises:
            ItemNotFoundError, ItemUnavailableError, DurationNotOfferedError,
            InvalidCartValueError
        """
        try:
            validate_quantity(quantity, 1, Limits.MAX_ITEM_QUANTITY)
        except ValueError as e:
            raise InvalidCartValueError(str(e)) from e

        item = await self._get_item(scope, item_id)
        if not item.is_available:
            raise ItemUnavailableError(item)

        price_cents = item.price_cents
        line_duration = item.duration_minutes
        tier_id = None
        if duration_minutes is not None and duration_minutes != item.duration_minutes:
            tier = await self._catalog.find_duration_tier(item.id, duration_minutes)
            if tier is None:
                offered = [t.duration_minutes for t in await self._catalog.list_duration_tiers(item.id)]
                if item.duration_minutes and item.duration_minutes not in offered:
                    offered.insert(0, item.duration_minutes)
                raise DurationNotOfferedError(item, duration_minutes, offered)
            price_cents = tier.price_cents
            line_duration = tier.duration_minutes
            tier_id = tier.id

        notes = sanitize_free_text(notes, Limits.MAX_NOTES_LENGTH)
        cart = await self._store.get_or_create_cart(scope, customer_id)
        existing = next(
            (line for line in await self._lines_of(cart, item.id) if line.duration_tier_id == tier_id),
            None,
        )
        if existing is not None and existing.quantity + quantity > Limits.MAX_ITEM_QUANTITY:
            raise InvalidCartValueError(f"Maximum quantity is {Limits.MAX_ITEM_QUANTITY}")

        # Invalidate only once the add can no longer be rejected
        self._invalidate_schedule(cart, item)
        if existing is not None:
            new_quantity = existing.quantity + quantity
            if notes:
                existing.notes = notes
            await self._store.update_line_item_quantity(cart, existing.id, new_quantity)
        else:
            await self._store.append_line_item(
                cart,
                item_id=item.id,
                name=item.name,
                unit_price_cents=price_cents,
                quantity=quantity,
                duration_minutes=line_duration,
                duration_tier_id=tier_id,
                notes=notes,
            )

        logger.info(
            "Cart item added",
            order_id=cart.id,
            item_id=item.id,
            quantity=quantity,
            customer=mask_customer_id(customer_id),
        )
        return await self._snapshot(cart)

    async def remove_item(self, scope: Scope, customer_id: str, item_id: int) -> CartOutput:
        """Remove every line of ``item_id``."""
        cart = await self._store.get_open_cart(scope, customer_id)
        lines = await self._lines_of(cart, item_id) if cart is not None else []
        if not lines:
            raise ItemNotInCartError(item_id)

        item = await self._catalog.get_item(scope, item_id)
        self._invalidate_schedule(cart, item)
        for line in lines:
            await self._store.remove_line_item(cart, line.id)
        return await self._snapshot(cart)

    async def update_quantity(
        self,
        scope: Scope,
        customer_id: str,
        item_id: int,
        quantity: int,
    ) -> CartOutput:
        """Set the quantity of the item's latest line. Zero or less removes it."""
        if quantity > Limits.MAX_ITEM_QUANTITY:
            raise InvalidCartValueError(f"Maximum quantity is {Limits.MAX_ITEM_QUANTITY}")

        cart = await self._store.get_open_cart(scope, customer_id)
        lines = await self._lines_of(cart, item_id) if cart is not None else []
        if not lines:
            raise ItemNotInCartError(item_id)

        item = await self._catalog.get_item(scope, item_id)
        self._invalidate_schedule(cart, item)
        await self._store.update_line_item_quantity(cart, lines[-1].id, quantity)
        return await self._snapshot(cart)

    async def clear_cart(self, scope: Scope, customer_id: str) -> CartOutput:
        """Drop all lines and the schedule; the cart itself stays open."""
        cart = await self._store.get_open_cart(scope, customer_id)
        if cart is None:
            return CartOutput.empty()
        cart.scheduled_for = None
        cart.schedule_validated_at = None
        await self._store.clear_line_items(cart)
        logger.info("Cart cleared", order_id=cart.id)
        return await self._snapshot(cart)

    # =========================================================================
    # Delivery, schedule, notes
    # =========================================================================

    async def set_delivery_type(self, scope: Scope, customer_id: str, delivery_type: str) -> CartOutput:
        """Delivery applies the business delivery fee; other modes have none."""
        if delivery_type not in DeliveryType.ALL:
            raise InvalidCartValueError(
                f"Unknown delivery type '{delivery_type}'. Options: {', '.join(DeliveryType.ALL)}"
            )
        business = await self.get_business(scope)
        cart = await self._store.get_or_create_cart(scope, customer_id)
        cart.delivery_type = delivery_type
        cart.delivery_fee_cents = business.delivery_fee_cents if delivery_type == DeliveryType.DELIVERY else 0
        await self._store.save_cart(cart)
        return await self._snapshot(cart)

    async def set_delivery_address(self, scope: Scope, customer_id: str, address: str) -> CartOutput:
        """Store the address and switch the cart to delivery."""
        address = sanitize_free_text(address, Limits.MAX_ADDRESS_LENGTH)
        if not address:
            raise InvalidCartValueError("The delivery address cannot be empty")
        business = await self.get_business(scope)
        cart = await self._store.get_or_create_cart(scope, customer_id)
        cart.delivery_address = address
        cart.delivery_type = DeliveryType.DELIVERY
        cart.delivery_fee_cents = business.delivery_fee_cents
        await self._store.save_cart(cart)
        return await self._snapshot(cart)

    async def set_notes(self, scope: Scope, customer_id: str, notes: str | None) -> CartOutput:
        cart = await self._store.get_or_create_cart(scope, customer_id)
        cart.notes = sanitize_free_text(notes, Limits.MAX_NOTES_LENGTH)
        await self._store.save_cart(cart)
        return await self._snapshot(cart)

    async def set_scheduled_time(
        self,
        scope: Scope,
        customer_id: str,
        candidate: datetime,
    ) -> tuple[ScheduleDecision, CartOutput]:
        """
        Validate ``candidate`` against the cart's schedulable lines and store it if accepted.

        A rejected time leaves the cart's previous schedule untouched.
        """
        business = await self.get_business(scope)
        cart = await self._store.get_or_create_cart(scope, customer_id)
        lines = await self._store.list_line_items(cart.id)
        items = await self._catalog.get_items([line.item_id for line in lines])

        decision = await self._validator.validate(
            business,
            scope,
            candidate,
            group_lines(lines, items, self._validator.default_duration_minutes),
            exclude_order_id=cart.id,
        )
        if decision.accepted:
            cart.scheduled_for = decision.scheduled_for
            cart.schedule_validated_at = self._clock()
            await self._store.save_cart(cart)
            logger.info(
                "Cart scheduled",
                order_id=cart.id,
                scheduled_for=decision.scheduled_for.isoformat(),
            )
        return decision, await self._snapshot(cart)

    async def check_item_availability(
        self,
        scope: Scope,
        item_id: int,
        candidate: datetime | None = None,
        quantity: int = 1,
        duration_minutes: int | None = None,
        exclude_order_id: int | None = None,
    ) -> AvailabilityResult:
        """Is the item on sale, and (with a candidate time) can it be booked then?"""
        item = await self._get_item(scope, item_id)
        if not item.is_available:
            return AvailabilityResult(
                item_id=item.id,
                name=item.name,
                available=False,
                price_cents=item.price_cents,
                reason=f"{item.name} is not available right now",
            )
        if candidate is None:
            return AvailabilityResult(item_id=item.id, name=item.name, available=True, price_cents=item.price_cents)

        business = await self.get_business(scope)
        decision = await self._validator.check_item(
            business,
            scope,
            item,
            candidate,
            quantity=quantity,
            duration_minutes=duration_minutes,
            exclude_order_id=exclude_order_id,
        )
        return AvailabilityResult(
            item_id=item.id,
            name=item.name,
            available=decision.accepted,
            price_cents=item.price_cents,
            decision=decision,
            reason=decision.rejection.reason if decision.rejection else None,
        )
