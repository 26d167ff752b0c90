"""
Order Lifecycle Domain Service.

Owns every status change of the cart/order aggregate:

    cart -> accepted -> ongoing -> completed
    cart | accepted | ongoing -> rejected
    cart (abandonment) | accepted (no-show) -> incomplete

Each change is a compare-and-set in the draft store that appends a
status history entry in the same transaction.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import datetime, timedelta

from shared.config.constants import Actor, DeliveryType, Limits, OrderStatus, ORDER_TRANSITIONS
from shared.config.logging import get_logger, mask_customer_id
from shared.utils.timeutils import as_utc, utcnow
from order_engine.models import Business, Item, Order, OrderItem
from order_engine.repositories import CatalogRepository, DraftStore, StatusConflictError
from order_engine.schemas import OrderSummaryOutput, Scope
from order_engine.services.domain.cart_service import BusinessNotFoundError
from order_engine.services.domain.scheduling_validator import SchedulingValidator, group_lines

logger = get_logger(__name__)

# Transitions only reachable through their dedicated operation
_RESERVED_TRANSITIONS: frozenset[tuple[str, str]] = frozenset({
    (OrderStatus.CART, OrderStatus.ACCEPTED),
    (OrderStatus.CART, OrderStatus.INCOMPLETE),
})


class IllegalTransitionError(Exception):
    """Requested status change is not allowed from the order's current status."""

    def __init__(self, order_id: int, from_status: str, to_status: str):
        self.order_id = order_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Order {order_id} cannot move from '{from_status}' to '{to_status}'")


class ConfirmationRejectedError(Exception):
    """The cart does not meet the confirmation preconditions."""

    def __init__(self, problems: Sequence[str]):
        self.problems = list(problems)
        super().__init__("; ".join(self.problems))


class CancellationNotAllowedError(Exception):
    def __init__(self, order_id: int, reason: str):
        self.order_id = order_id
        self.reason = reason
        super().__init__(reason)


class CartStillActiveError(Exception):
    def __init__(self, order_id: int):
        self.order_id = order_id
        super().__init__(f"Cart {order_id} was updated recently")


class OrderLifecycleService:
    """Confirmation, business status changes, customer cancellation and cart expiry."""

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

    async def _get_business(self, scope: Scope) -> Business:
        business = await self._catalog.get_business(scope.business_id)
        if business is None:
            raise BusinessNotFoundError(scope.business_id)
        return business

    def _illegal(self, order_id: int, from_status: str, to_status: str) -> IllegalTransitionError:
        logger.error(
            "Illegal status transition",
            order_id=order_id,
            from_status=from_status,
            to_status=to_status,
        )
        return IllegalTransitionError(order_id, from_status, to_status)

    # =========================================================================
    # Confirmation
    # =========================================================================

    def _confirmation_problems(
        self,
        cart: Order,
        lines: Sequence[OrderItem],
        items: dict[int, Item],
    ) -> list[str]:
        """Every unmet precondition, in a stable order."""
        problems: list[str] = []
        if not lines:
            problems.append("The cart is empty")

        for line in lines:
            item = items.get(line.item_id)
            if item is None or not item.is_active or not item.is_available:
                problems.append(f"{line.name_snapshot} is no longer available")

        if not cart.delivery_type:
            problems.append(f"Choose a delivery type ({', '.join(DeliveryType.ALL)})")
        elif cart.delivery_type == DeliveryType.DELIVERY and not cart.delivery_address:
            problems.append("A delivery address is required for delivery orders")

        scheduled = [
            line.name_snapshot for line in lines
            if (item := items.get(line.item_id)) is not None and item.requires_scheduling
        ]
        if scheduled:
            if cart.scheduled_for is None:
                problems.append(f"Choose a date and time for {', '.join(scheduled)}")
            elif cart.schedule_validated_at is None:
                problems.append("The cart changed after scheduling; set the date and time again")
        return problems

    async def validate_for_confirmation(self, scope: Scope, customer_id: str) -> list[str]:
        """Dry run of ``confirm``: the list of problems, empty when the cart can be confirmed."""
        cart = await self._store.get_open_cart(scope, customer_id)
        if cart is None:
            return ["The cart is empty"]
        lines = await self._store.list_line_items(cart.id)
        items = await self._catalog.get_items([line.item_id for line in lines])
        return self._confirmation_problems(cart, lines, items)

    async def confirm(self, scope: Scope, customer_id: str) -> Order:
        """
        Turn the open cart into an accepted order.

        The schedule and capacity are checked again with the item rows
        locked, inside the transaction that changes the status, so two
        carts cannot both take the last unit of a slot.

        Raises:
            ConfirmationRejectedError: Preconditions unmet or the slot was taken
            IllegalTransitionError: The cart left 'cart' status meanwhile
        """
        business = await self._get_business(scope)
        cart = await self._store.get_open_cart(scope, customer_id)
        if cart is None:
            raise ConfirmationRejectedError(["The cart is empty"])

        lines = await self._store.list_line_items(cart.id)
        items = await self._catalog.get_items([line.item_id for line in lines])
        problems = self._confirmation_problems(cart, lines, items)
        if problems:
            logger.info("Confirmation rejected", order_id=cart.id, problems=problems)
            raise ConfirmationRejectedError(problems)

        async def _recheck(order: Order) -> None:
            current_lines = await self._store.list_line_items(order.id)
            locked = await self._catalog.lock_items([line.item_id for line in current_lines])
            late_problems = self._confirmation_problems(order, current_lines, locked)
            if not late_problems and order.scheduled_for is not None:
                decision = await self._validator.validate(
                    business,
                    scope,
                    order.scheduled_for,
                    group_lines(current_lines, locked, self._validator.default_duration_minutes),
                    exclude_order_id=order.id,
                )
                if not decision.accepted:
                    late_problems.append(decision.rejection.reason)
            if late_problems:
                logger.info("Confirmation rejected on re-check", order_id=order.id, problems=late_problems)
                raise ConfirmationRejectedError(late_problems)

        try:
            order = await self._store.transition_status(
                cart.id,
                OrderStatus.ACCEPTED,
                Actor.CUSTOMER,
                expected_from=[OrderStatus.CART],
                guard=_recheck,
            )
        except StatusConflictError as e:
            raise self._illegal(e.order_id, e.current_status, OrderStatus.ACCEPTED) from e

        logger.info(
            "Order confirmed",
            order_id=order.id,
            total_cents=order.total_cents,
            customer=mask_customer_id(customer_id),
        )
        return order

    # =========================================================================
    # Business-driven transitions
    # =========================================================================

    async def transition(
        self,
        order_id: int,
        new_status: str,
        actor: str,
        reason: str | None = None,
    ) -> Order:
        """
        Generic status change for business actions.

        Confirmation and cart expiry have their own operations and are
        refused here.

        Raises:
            OrderNotFoundError: Unknown order
            IllegalTransitionError: Not allowed from the current status
        """
        order = await self._store.get_order(order_id)
        current = order.status
        if (current, new_status) in _RESERVED_TRANSITIONS:
            raise self._illegal(order_id, current, new_status)
        if new_status not in ORDER_TRANSITIONS.get(current, frozenset()):
            raise self._illegal(order_id, current, new_status)

        try:
            return await self._store.transition_status(
                order_id,
                new_status,
                actor,
                expected_from=[current],
                reason=reason,
            )
        except StatusConflictError as e:
            raise self._illegal(order_id, e.current_status, new_status) from e

    async def start(self, order_id: int, actor: str = Actor.BUSINESS) -> Order:
        return await self.transition(order_id, OrderStatus.ONGOING, actor)

    async def complete(self, order_id: int, actor: str = Actor.BUSINESS) -> Order:
        return await self.transition(order_id, OrderStatus.COMPLETED, actor)

    async def reject(self, order_id: int, actor: str = Actor.BUSINESS, reason: str | None = None) -> Order:
        return await self.transition(order_id, OrderStatus.REJECTED, actor, reason)

    # =========================================================================
    # Customer cancellation
    # =========================================================================

    async def cancel_by_customer(
        self,
        scope: Scope,
        customer_id: str,
        order_id: int,
        reason: str | None = None,
    ) -> Order:
        """
        Cancel one of the customer's accepted orders.

        Scheduled orders can only be cancelled up to
        ``business.cancelable_before_hours`` before their start.

        Raises:
            OrderNotFoundError: Unknown order or not the customer's
            CancellationNotAllowedError: Wrong status or too late
        """
        business = await self._get_business(scope)
        order = await self._store.get_order(order_id)
        if order.customer_id != customer_id or order.business_id != scope.business_id:
            logger.warning(
                "Cancellation for foreign order refused",
                order_id=order_id,
                customer=mask_customer_id(customer_id),
            )
            raise CancellationNotAllowedError(order_id, f"Order {order_id} was not found")

        if order.status != OrderStatus.ACCEPTED:
            logger.info("Cancellation refused", order_id=order_id, status=order.status)
            raise CancellationNotAllowedError(
                order_id, f"Order {order_id} is {order.status} and can no longer be cancelled"
            )

        if order.scheduled_for is not None:
            notice = timedelta(hours=business.cancelable_before_hours)
            if as_utc(order.scheduled_for) - self._clock() < notice:
                logger.info("Cancellation too late", order_id=order_id)
                raise CancellationNotAllowedError(
                    order_id,
                    f"Orders can only be cancelled at least {business.cancelable_before_hours} "
                    "hours before the scheduled time",
                )

        try:
            order = await self._store.transition_status(
                order_id,
                OrderStatus.REJECTED,
                Actor.CUSTOMER,
                expected_from=[OrderStatus.ACCEPTED],
                reason=reason or "Cancelled by customer",
            )
        except StatusConflictError as e:
            raise CancellationNotAllowedError(
                order_id, f"Order {order_id} is {e.current_status} and can no longer be cancelled"
            ) from e
        logger.info("Order cancelled by customer", order_id=order_id)
        return order

    # =========================================================================
    # Expiry and queries
    # =========================================================================

    async def expire_cart(self, order_id: int, idle_before: datetime | None = None) -> Order:
        """
        cart -> incomplete. Only the abandonment reaper calls this.

        With ``idle_before`` the cart's last update is re-read under the row
        lock; a cart touched since then is left open.

        Raises:
            StatusConflictError: The cart was confirmed or closed meanwhile
            CartStillActiveError: The cart was updated after ``idle_before``
        """

        async def _still_idle(order: Order) -> None:
            if idle_before is not None and as_utc(order.updated_at) >= idle_before:
                raise CartStillActiveError(order.id)

        return await self._store.transition_status(
            order_id,
            OrderStatus.INCOMPLETE,
            Actor.SYSTEM,
            expected_from=[OrderStatus.CART],
            reason="Cart abandoned",
            guard=_still_idle,
        )

    async def list_customer_orders(
        self,
        scope: Scope,
        customer_id: str,
        limit: int = Limits.MAX_CUSTOMER_ORDERS,
    ) -> list[OrderSummaryOutput]:
        orders = await self._store.list_customer_orders(scope, customer_id, OrderStatus.CONFIRMED, limit)
        return [OrderSummaryOutput.from_order(order) for order in orders]
