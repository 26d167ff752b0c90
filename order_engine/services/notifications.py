"""
Business notifications.

Alerts the business about cart abandonment, confirmations and customer
cancellations over Redis pub/sub. Delivery is best effort: a failed
publish is logged and never undoes the state change that caused it.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any, Protocol

import redis.asyncio as redis

from shared.config.logging import get_logger, mask_customer_id
from shared.infrastructure.events import (
    CART_ABANDONED,
    ORDER_CANCELLED,
    ORDER_CONFIRMED,
    Event,
    channel_branch_alerts,
    channel_business_alerts,
    get_redis_pool,
    publish_event,
)
from order_engine.models import Order

logger = get_logger(__name__)


class OrderNotifier(Protocol):
    async def notify_cart_abandoned(self, order: Order) -> None: ...

    async def notify_order_confirmed(self, order: Order) -> None: ...

    async def notify_order_cancelled(self, order: Order, actor: str) -> None: ...


def _order_entity(order: Order) -> dict[str, Any]:
    return {
        "order_id": order.id,
        "status": order.status,
        "customer": mask_customer_id(order.customer_id),
        "total_cents": order.total_cents,
        "delivery_type": order.delivery_type,
        "scheduled_for": order.scheduled_for.isoformat() if order.scheduled_for else None,
    }


class RedisNotificationSink:
    """Publishes order events to the business (and branch) alert channels."""

    def __init__(self, redis_provider: Callable[[], Awaitable[redis.Redis]] = get_redis_pool):
        self._redis_provider = redis_provider

    async def _publish(self, event_type: str, order: Order, actor: str) -> None:
        event = Event(
            type=event_type,
            business_id=order.business_id,
            branch_id=order.branch_id,
            entity=_order_entity(order),
            actor={"role": actor},
        )
        channels = [channel_business_alerts(order.business_id)]
        if order.branch_id is not None:
            channels.append(channel_branch_alerts(order.branch_id))

        try:
            redis_client = await self._redis_provider()
            for channel in channels:
                await publish_event(redis_client, channel, event)
        except Exception as e:
            logger.warning(
                "Business notification failed",
                event_type=event_type,
                order_id=order.id,
                error=str(e),
            )
            return
        logger.debug("Business notified", event_type=event_type, order_id=order.id)

    async def notify_cart_abandoned(self, order: Order) -> None:
        await self._publish(CART_ABANDONED, order, "system")

    async def notify_order_confirmed(self, order: Order) -> None:
        await self._publish(ORDER_CONFIRMED, order, "customer")

    async def notify_order_cancelled(self, order: Order, actor: str) -> None:
        await self._publish(ORDER_CANCELLED, order, actor)
