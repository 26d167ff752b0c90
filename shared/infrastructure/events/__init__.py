"""
Event System for business notifications via Redis pub/sub.

- event_types.py: Event type constants
- event_schema.py: Event dataclass with validation
- channels.py: Channel naming functions
- redis_pool.py: Connection pool management
- publisher.py: publish_event with retry
"""

from .event_types import (
    CART_ABANDONED,
    ORDER_CONFIRMED,
    ORDER_CANCELLED,
    MAX_EVENT_SIZE,
)
from .event_schema import Event
from .channels import channel_business_alerts, channel_branch_alerts
from .redis_pool import get_redis_pool, close_redis_pool
from .publisher import publish_event, calculate_retry_delay_with_jitter

__all__ = [
    "CART_ABANDONED",
    "ORDER_CONFIRMED",
    "ORDER_CANCELLED",
    "MAX_EVENT_SIZE",
    "Event",
    "channel_business_alerts",
    "channel_branch_alerts",
    "get_redis_pool",
    "close_redis_pool",
    "publish_event",
    "calculate_retry_delay_with_jitter",
]
