"""
Business order actions.

Staff tools move confirmed orders through their lifecycle here. Cart
confirmation and cart expiry are not reachable from this endpoint.
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config.constants import Actor, OrderStatus
from shared.infrastructure.db import get_db
from shared.utils.exceptions import (
    DatabaseError,
    InvalidTransitionError,
    OrderNotFoundHTTPError,
    ValidationError,
)
from shared.utils.timeutils import as_utc
from order_engine.repositories import DraftStoreError, OrderNotFoundError
from order_engine.schemas import StatusChangeRequest, StatusChangeResponse
from order_engine.services.domain import (
    IllegalTransitionError,
    OrderLifecycleService,
    build_domain_services,
)
from order_engine.services.notifications import OrderNotifier

router = APIRouter(prefix="/api", tags=["orders"])


async def get_lifecycle_service(db: AsyncSession = Depends(get_db)) -> OrderLifecycleService:
    return build_domain_services(db).lifecycle


def get_notifier(request: Request) -> OrderNotifier | None:
    return getattr(request.app.state, "notifier", None)


@router.post("/orders/{order_id}/status", response_model=StatusChangeResponse)
async def change_order_status(
    order_id: int,
    body: StatusChangeRequest,
    lifecycle: OrderLifecycleService = Depends(get_lifecycle_service),
    notifier: OrderNotifier | None = Depends(get_notifier),
) -> StatusChangeResponse:
    """
    Move an order to ongoing, completed, rejected or incomplete (no-show).

    Rejections must carry a reason the customer can be told.
    """
    if body.status == OrderStatus.REJECTED and not (body.reason or "").strip():
        raise ValidationError("A reason is required to reject an order", order_id=order_id)

    try:
        order = await lifecycle.transition(order_id, body.status, Actor.BUSINESS, reason=body.reason)
    except OrderNotFoundError:
        raise OrderNotFoundHTTPError(order_id)
    except IllegalTransitionError as e:
        raise InvalidTransitionError("order", e.from_status, e.to_status, order_id=order_id)
    except DraftStoreError as e:
        raise DatabaseError(e.operation, order_id=order_id)

    if order.status == OrderStatus.REJECTED and notifier is not None:
        await notifier.notify_order_cancelled(order, Actor.BUSINESS)

    return StatusChangeResponse(order_id=order.id, status=order.status, changed_at=as_utc(order.updated_at))
