"""
Domain Services - application layer of the order engine.

Structure:
    Router / chat tool (thin caller)
        ↓
    Service (business rules)  ← YOU ARE HERE
        ↓
    Repository (DraftStore, CatalogRepository)
        ↓
    Model (entity)

Usage:
    from order_engine.services.domain import build_domain_services

    services = build_domain_services(db)
    cart = await services.cart.add_item(scope, customer_id, item_id)
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from shared.utils.timeutils import utcnow
from order_engine.repositories import CatalogRepository, DraftStore

from .scheduling_validator import (
    ScheduleDecision,
    ScheduleLine,
    ScheduleRejection,
    SchedulingValidator,
    group_lines,
)
from .cart_service import (
    AvailabilityResult,
    BusinessNotFoundError,
    CartRuleError,
    CartService,
    DurationNotOfferedError,
    InvalidCartValueError,
    ItemNotFoundError,
    ItemNotInCartError,
    ItemUnavailableError,
)
from .order_lifecycle import (
    CancellationNotAllowedError,
    CartStillActiveError,
    ConfirmationRejectedError,
    IllegalTransitionError,
    OrderLifecycleService,
)


@dataclass
class DomainServices:
    """Services bound to one session (one request, tool turn or reaped cart)."""

    store: DraftStore
    catalog: CatalogRepository
    validator: SchedulingValidator
    cart: CartService
    lifecycle: OrderLifecycleService


def build_domain_services(
    db: AsyncSession,
    clock: Callable[[], datetime] = utcnow,
) -> DomainServices:
    store = DraftStore(db)
    catalog = CatalogRepository(db)
    validator = SchedulingValidator(store, catalog, clock=clock)
    return DomainServices(
        store=store,
        catalog=catalog,
        validator=validator,
        cart=CartService(store, catalog, validator, clock=clock),
        lifecycle=OrderLifecycleService(store, catalog, validator, clock=clock),
    )


__all__ = [
    "DomainServices",
    "build_domain_services",
    # Scheduling
    "SchedulingValidator",
    "ScheduleDecision",
    "ScheduleLine",
    "ScheduleRejection",
    "group_lines",
    # Cart
    "CartService",
    "AvailabilityResult",
    "CartRuleError",
    "BusinessNotFoundError",
    "ItemNotFoundError",
    "ItemUnavailableError",
    "ItemNotInCartError",
    "DurationNotOfferedError",
    "InvalidCartValueError",
    # Lifecycle
    "OrderLifecycleService",
    "IllegalTransitionError",
    "ConfirmationRejectedError",
    "CancellationNotAllowedError",
    "CartStillActiveError",
]
