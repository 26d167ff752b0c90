"""
Draft Store: persistence for carts/orders, their line items and status history.

Single source of truth for cart and finalized-order state. Every write
that touches more than one row (line change + totals, status change +
history entry, duplicate-cart merge) commits as one transaction; on any
failure the session is rolled back and the caller receives a typed error.
"""

from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from contextlib import asynccontextmanager
from datetime import datetime, timedelta

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError

from shared.config.constants import OrderStatus
from shared.config.logging import get_logger, mask_customer_id
from shared.config.settings import settings
from shared.utils.timeutils import utcnow
from order_engine.models import Order, OrderItem, OrderStatusHistory
from order_engine.repositories.base import BaseRepository
from order_engine.schemas import Scope

logger = get_logger(__name__)

TransitionGuard = Callable[[Order], Awaitable[None]]

# Timestamp stamped on the order when it enters a status
_STATUS_TIMESTAMPS: dict[str, str] = {
    OrderStatus.ACCEPTED: "accepted_at",
    OrderStatus.COMPLETED: "completed_at",
    OrderStatus.REJECTED: "cancelled_at",
    OrderStatus.INCOMPLETE: "abandoned_at",
}


class DraftStoreError(Exception):
    """A store write failed and was rolled back."""

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Draft store operation '{operation}' failed")


class OrderNotFoundError(Exception):
    """Order/cart does not exist."""

    def __init__(self, order_id: int):
        self.order_id = order_id
        super().__init__(f"Order {order_id} not found")


class LineItemNotFoundError(Exception):
    """Line item does not belong to the cart."""

    def __init__(self, order_id: int, line_id: int):
        self.order_id = order_id
        self.line_id = line_id
        super().__init__(f"Line {line_id} not found in order {order_id}")


class StatusConflictError(Exception):
    """The order's committed status is not one the caller expected."""

    def __init__(self, order_id: int, current_status: str, expected: Sequence[str]):
        self.order_id = order_id
        self.current_status = current_status
        self.expected = tuple(expected)
        super().__init__(
            f"Order {order_id} is '{current_status}', expected one of {', '.join(self.expected)}"
        )


class DraftStore(BaseRepository[Order]):
    """Async repository for the cart/order aggregate."""

    @property
    def model(self) -> type[Order]:
        return Order

    @asynccontextmanager
    async def _write(self, operation: str) -> AsyncIterator[None]:
        """Commit on success; roll back and raise a typed error on failure."""
        try:
            yield
            await self._db.commit()
        except SQLAlchemyError as e:
            await self._db.rollback()
            logger.error("Draft store write failed", operation=operation, error=str(e))
            raise DraftStoreError(operation) from e
        except BaseException:
            await self._db.rollback()
            raise

    # =========================================================================
    # Reads
    # =========================================================================

    def _open_carts_query(self, scope: Scope, customer_id: str):
        query = select(Order).where(
            Order.business_id == scope.business_id,
            Order.customer_id == customer_id,
            Order.status == OrderStatus.CART,
        )
        if scope.branch_id is None:
            query = query.where(Order.branch_id.is_(None))
        else:
            query = query.where(Order.branch_id == scope.branch_id)
        return query.order_by(Order.created_at.desc(), Order.id.desc())

    async def get_open_cart(self, scope: Scope, customer_id: str) -> Order | None:
        """
        Return the single open cart of a conversation, or None.

        Duplicate open carts (concurrent creation) are collapsed into one
        before returning.
        """
        carts = (await self._db.execute(self._open_carts_query(scope, customer_id))).scalars().all()
        if not carts:
            return None
        if len(carts) == 1:
            return carts[0]
        return await self.merge_duplicate_carts(carts)

    async def get_order(self, order_id: int) -> Order:
        order = await self.find_by_id(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    async def list_line_items(self, cart_id: int) -> Sequence[OrderItem]:
        result = await self._db.execute(
            select(OrderItem).where(OrderItem.order_id == cart_id).order_by(OrderItem.id)
        )
        return result.scalars().all()

    async def list_history(self, order_id: int) -> Sequence[OrderStatusHistory]:
        result = await self._db.execute(
            select(OrderStatusHistory)
            .where(OrderStatusHistory.order_id == order_id)
            .order_by(OrderStatusHistory.created_at, OrderStatusHistory.id)
        )
        return result.scalars().all()

    async def list_customer_orders(
        self,
        scope: Scope,
        customer_id: str,
        statuses: Sequence[str],
        limit: int,
    ) -> Sequence[Order]:
        query = select(Order).where(
            Order.business_id == scope.business_id,
            Order.customer_id == customer_id,
            Order.status.in_(list(statuses)),
        )
        if scope.branch_id is not None:
            query = query.where(Order.branch_id == scope.branch_id)
        result = await self._db.execute(query.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit))
        return result.scalars().all()

    async def find_bookings(
        self,
        item_id: int,
        window_start: datetime,
        window_end: datetime,
        *,
        min_lookback_minutes: int = 0,
        exclude_order_id: int | None = None,
    ) -> Sequence[tuple[OrderItem, Order]]:
        """
        Booked lines of an item whose order starts early enough to overlap the window.

        The SQL filter is a superset: it bounds the start by the longest
        booked duration of the item. Exact interval overlap is decided by the
        scheduling validator using each line's own duration.
        """
        lookback = max(await self._max_booked_duration(item_id), min_lookback_minutes)
        query = (
            select(OrderItem, Order)
            .join(Order, Order.id == OrderItem.order_id)
            .where(
                OrderItem.item_id == item_id,
                Order.status.in_(OrderStatus.BOOKING),
                Order.scheduled_for.is_not(None),
                Order.scheduled_for < window_end,
                Order.scheduled_for > window_start - timedelta(minutes=lookback),
            )
        )
        if exclude_order_id is not None:
            query = query.where(Order.id != exclude_order_id)
        result = await self._db.execute(query)
        return [(line, order) for line, order in result.all()]

    async def _max_booked_duration(self, item_id: int) -> int:
        longest = await self._db.scalar(
            select(func.max(OrderItem.duration_minutes)).where(OrderItem.item_id == item_id)
        )
        return max(longest or 0, settings.default_duration_minutes)

    async def find_idle_carts(self, idle_before: datetime, limit: int) -> list[int]:
        """IDs of open carts not updated since ``idle_before``, oldest first."""
        result = await self._db.execute(
            select(Order.id)
            .where(
                Order.status == OrderStatus.CART,
                Order.updated_at < idle_before,
            )
            .order_by(Order.updated_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    # =========================================================================
    # Cart writes
    # =========================================================================

    async def create_cart(self, scope: Scope, customer_id: str) -> Order:
        async with self._write("create_cart"):
            cart = Order(
                business_id=scope.business_id,
                branch_id=scope.branch_id,
                customer_id=customer_id,
                status=OrderStatus.CART,
                subtotal_cents=0,
                delivery_fee_cents=0,
                total_cents=0,
            )
            await self.save(cart)
        logger.info(
            "Cart created",
            order_id=cart.id,
            business_id=scope.business_id,
            customer=mask_customer_id(customer_id),
        )
        return cart

    async def get_or_create_cart(self, scope: Scope, customer_id: str) -> Order:
        cart = await self.get_open_cart(scope, customer_id)
        if cart is None:
            cart = await self.create_cart(scope, customer_id)
        return cart

    async def save_cart(self, cart: Order) -> Order:
        """Persist draft-field changes and recomputed totals."""
        async with self._write("save_cart"):
            await self._refresh_totals(cart)
        return cart

    async def append_line_item(
        self,
        cart: Order,
        *,
        item_id: int,
        name: str,
        unit_price_cents: int,
        quantity: int,
        duration_minutes: int | None = None,
        duration_tier_id: int | None = None,
        notes: str | None = None,
    ) -> OrderItem:
        async with self._write("append_line_item"):
            line = OrderItem(
                order_id=cart.id,
                item_id=item_id,
                name_snapshot=name,
                unit_price_cents=unit_price_cents,
                quantity=quantity,
                duration_minutes=duration_minutes,
                duration_tier_id=duration_tier_id,
                notes=notes,
            )
            await self.save(line)
            await self._refresh_totals(cart)
        return line

    async def update_line_item_quantity(self, cart: Order, line_id: int, quantity: int) -> OrderItem | None:
        """Set a line's quantity; zero or less removes the line and returns None."""
        async with self._write("update_line_item_quantity"):
            line = await self._get_line(cart.id, line_id)
            if quantity <= 0:
                await self._db.delete(line)
                result = None
            else:
                line.quantity = quantity
                result = line
            await self._db.flush()
            await self._refresh_totals(cart)
        return result

    async def remove_line_item(self, cart: Order, line_id: int) -> None:
        async with self._write("remove_line_item"):
            line = await self._get_line(cart.id, line_id)
            await self._db.delete(line)
            await self._db.flush()
            await self._refresh_totals(cart)

    async def clear_line_items(self, cart: Order) -> None:
        async with self._write("clear_line_items"):
            await self._db.execute(delete(OrderItem).where(OrderItem.order_id == cart.id))
            await self._refresh_totals(cart)

    async def _get_line(self, cart_id: int, line_id: int) -> OrderItem:
        line = await self._db.scalar(
            select(OrderItem).where(OrderItem.id == line_id, OrderItem.order_id == cart_id)
        )
        if line is None:
            raise LineItemNotFoundError(cart_id, line_id)
        return line

    async def _refresh_totals(self, cart: Order) -> None:
        """subtotal = sum(unit price snapshot * quantity); total = subtotal + delivery fee."""
        subtotal = await self._db.scalar(
            select(func.coalesce(func.sum(OrderItem.unit_price_cents * OrderItem.quantity), 0))
            .where(OrderItem.order_id == cart.id)
        )
        cart.subtotal_cents = int(subtotal or 0)
        cart.total_cents = cart.subtotal_cents + (cart.delivery_fee_cents or 0)
        cart.updated_at = utcnow()
        self._db.add(cart)
        await self._db.flush()

    async def merge_duplicate_carts(self, carts: Sequence[Order]) -> Order:
        """
        Collapse several open carts of one conversation into one.

        The survivor is the newest cart that has items, or the newest cart.
        Lines of the other carts move to the survivor; delivery type,
        address, schedule and notes fill the survivor's empty fields.
        The other carts are deleted.
        """
        cart_ids = [cart.id for cart in carts]
        counts = dict(
            (await self._db.execute(
                select(OrderItem.order_id, func.count(OrderItem.id))
                .where(OrderItem.order_id.in_(cart_ids))
                .group_by(OrderItem.order_id)
            )).all()
        )
        survivor = next((cart for cart in carts if counts.get(cart.id)), carts[0])
        duplicates = [cart for cart in carts if cart.id != survivor.id]

        async with self._write("merge_duplicate_carts"):
            for duplicate in duplicates:
                if not survivor.delivery_type and duplicate.delivery_type:
                    survivor.delivery_type = duplicate.delivery_type
                    survivor.delivery_fee_cents = duplicate.delivery_fee_cents
                if not survivor.delivery_address and duplicate.delivery_address:
                    survivor.delivery_address = duplicate.delivery_address
                if not survivor.scheduled_for and duplicate.scheduled_for:
                    survivor.scheduled_for = duplicate.scheduled_for
                    survivor.schedule_validated_at = duplicate.schedule_validated_at
                if not survivor.notes and duplicate.notes:
                    survivor.notes = duplicate.notes

                if counts.get(duplicate.id):
                    await self._db.execute(
                        update(OrderItem)
                        .where(OrderItem.order_id == duplicate.id)
                        .values(order_id=survivor.id)
                    )
                    # Moved lines may change capacity needs
                    survivor.schedule_validated_at = None
                await self._db.delete(duplicate)

            await self._db.flush()
            await self._refresh_totals(survivor)

        logger.warning(
            "Duplicate open carts merged",
            survivor_id=survivor.id,
            merged_ids=[cart.id for cart in duplicates],
            customer=mask_customer_id(survivor.customer_id),
        )
        return survivor

    # =========================================================================
    # Status transitions
    # =========================================================================

    async def transition_status(
        self,
        order_id: int,
        new_status: str,
        actor: str,
        *,
        expected_from: Sequence[str],
        reason: str | None = None,
        guard: TransitionGuard | None = None,
    ) -> Order:
        """
        Atomically move an order to ``new_status`` and append its history entry.

        The order row is locked and its committed status compared with
        ``expected_from`` (compare-and-set). ``guard`` runs inside the same
        transaction after the lock and may raise to abort the transition.

        Raises:
            OrderNotFoundError: Unknown order
            StatusConflictError: Current status not in ``expected_from``
            DraftStoreError: The write failed and was rolled back
        """
        async with self._write("transition_status"):
            order = await self.find_by_id(order_id, for_update=True)
            if order is None:
                raise OrderNotFoundError(order_id)

            previous = order.status
            if previous not in expected_from:
                raise StatusConflictError(order_id, previous, expected_from)

            if guard is not None:
                await guard(order)

            now = utcnow()
            order.status = new_status
            order.updated_at = now
            stamp = _STATUS_TIMESTAMPS.get(new_status)
            if stamp:
                setattr(order, stamp, now)

            self._db.add(
                OrderStatusHistory(
                    order_id=order.id,
                    status=new_status,
                    previous_status=previous,
                    actor=actor,
                    reason=reason,
                    created_at=now,
                )
            )

        logger.info(
            "Order status changed",
            order_id=order_id,
            from_status=previous,
            to_status=new_status,
            actor=actor,
        )
        return order
