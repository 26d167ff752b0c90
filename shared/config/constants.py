"""
Centralized constants for the order engine.
Avoids magic strings for statuses, actors and delivery modes.

Usage:
    from shared.config.constants import OrderStatus, Actor

    if order.status == OrderStatus.CART:
        ...
"""

from typing import Final


# =============================================================================
# Order Lifecycle
# =============================================================================


class OrderStatus:
    """Cart/order status constants. The same row is a cart until confirmed."""

    CART: Final[str] = "cart"
    ACCEPTED: Final[str] = "accepted"
    ONGOING: Final[str] = "ongoing"
    COMPLETED: Final[str] = "completed"
    REJECTED: Final[str] = "rejected"
    INCOMPLETE: Final[str] = "incomplete"  # Abandoned cart

    ALL: Final[list[str]] = [CART, ACCEPTED, ONGOING, COMPLETED, REJECTED, INCOMPLETE]
    TERMINAL: Final[frozenset[str]] = frozenset({COMPLETED, REJECTED, INCOMPLETE})
    # Statuses whose scheduled slot occupies capacity
    BOOKING: Final[list[str]] = [ACCEPTED, ONGOING, COMPLETED]
    # Statuses a customer sees in "my orders"
    CONFIRMED: Final[list[str]] = [ACCEPTED, ONGOING, COMPLETED, REJECTED]


# Valid status transitions (from -> allowed to states)
ORDER_TRANSITIONS: Final[dict[str, frozenset[str]]] = {
    OrderStatus.CART: frozenset({OrderStatus.ACCEPTED, OrderStatus.REJECTED, OrderStatus.INCOMPLETE}),
    OrderStatus.ACCEPTED: frozenset({OrderStatus.ONGOING, OrderStatus.REJECTED, OrderStatus.INCOMPLETE}),
    OrderStatus.ONGOING: frozenset({OrderStatus.COMPLETED, OrderStatus.REJECTED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.REJECTED: frozenset(),
    OrderStatus.INCOMPLETE: frozenset(),
}


class Actor:
    """Who triggered a status transition."""

    SYSTEM: Final[str] = "system"
    BUSINESS: Final[str] = "business"
    CUSTOMER: Final[str] = "customer"

    ALL: Final[list[str]] = [SYSTEM, BUSINESS, CUSTOMER]


class DeliveryType:
    """How the order reaches the customer."""

    PICKUP: Final[str] = "pickup"
    DELIVERY: Final[str] = "delivery"
    ON_SITE: Final[str] = "on_site"

    ALL: Final[list[str]] = [PICKUP, DELIVERY, ON_SITE]


class ScheduleRule:
    """Scheduling checks, in evaluation order."""

    LEAD_TIME: Final[str] = "lead_time"
    AVAILABILITY_WINDOW: Final[str] = "availability_window"
    OPENING_HOURS: Final[str] = "opening_hours"
    CAPACITY: Final[str] = "capacity"


WEEKDAYS: Final[list[str]] = [
    "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday",
]


# =============================================================================
# Limits
# =============================================================================


class Limits:
    """Numeric limits shared across modules."""

    MAX_ITEM_QUANTITY: Final[int] = 99
    MAX_NOTES_LENGTH: Final[int] = 500
    MAX_ADDRESS_LENGTH: Final[int] = 500
    MAX_INBOUND_TEXT_LENGTH: Final[int] = 4000
    MAX_CUSTOMER_ORDERS: Final[int] = 10
    SEEN_MESSAGE_IDS: Final[int] = 50
    MAX_PROMPT_MENU_ITEMS: Final[int] = 60
