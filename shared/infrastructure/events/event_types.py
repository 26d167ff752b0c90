"""
Event type constants published to business-facing channels.
"""

from typing import Final

CART_ABANDONED: Final[str] = "CART_ABANDONED"
ORDER_CONFIRMED: Final[str] = "ORDER_CONFIRMED"
ORDER_CANCELLED: Final[str] = "ORDER_CANCELLED"

# Max serialized event size (bytes)
MAX_EVENT_SIZE: Final[int] = 64 * 1024
