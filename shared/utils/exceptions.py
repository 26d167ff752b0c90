"""
Centralized HTTP exceptions for consistent error handling.

Routers translate domain errors raised by the services into these.

Usage:
    from shared.utils.exceptions import NotFoundError, InvalidTransitionError

    raise NotFoundError("Order", order_id)
    raise InvalidTransitionError("Order", "completed", "ongoing")
"""

from typing import Any

from fastapi import HTTPException, status

from shared.config.logging import get_logger

logger = get_logger(__name__)


class AppException(HTTPException):
    """
    Base exception with automatic logging.

    All custom exceptions should inherit from this class
    to ensure consistent logging and response format.
    """

    def __init__(
        self,
        status_code: int,
        detail: str,
        log_level: str = "warning",
        headers: dict[str, str] | None = None,
        **log_context: Any,
    ):
        log_fn = getattr(logger, log_level, logger.warning)
        log_fn(detail, status_code=status_code, **log_context)

        super().__init__(status_code=status_code, detail=detail, headers=headers)


# =============================================================================
# 404 Not Found Errors
# =============================================================================


class NotFoundError(AppException):
    """
    Entity not found error (404).

    Usage:
        raise NotFoundError("Order", 123)
    """

    def __init__(self, entity: str, entity_id: int | str | None = None, **log_context: Any):
        if entity_id is not None:
            detail = f"{entity} with ID {entity_id} not found"
        else:
            detail = f"{entity} not found"

        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail,
            log_level="warning",
            entity=entity,
            entity_id=entity_id,
            **log_context,
        )


class OrderNotFoundHTTPError(NotFoundError):
    """Order not found."""

    def __init__(self, order_id: int | None = None, **log_context: Any):
        super().__init__("Order", order_id, **log_context)


# =============================================================================
# 400 Bad Request Errors
# =============================================================================


class ValidationError(AppException):
    """
    Input or business-rule validation error (400).

    Usage:
        raise ValidationError("Cart has no items")
    """

    def __init__(self, detail: str, log_level: str = "info", **log_context: Any):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            log_level=log_level,
            **log_context,
        )


# =============================================================================
# 409 Conflict Errors
# =============================================================================


class ConflictError(AppException):
    """
    Resource conflict error (409).

    Usage:
        raise ConflictError("Order changed status concurrently")
    """

    def __init__(self, detail: str, log_level: str = "warning", **log_context: Any):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
            log_level=log_level,
            **log_context,
        )


class InvalidTransitionError(ConflictError):
    """Illegal status transition. A logic error, logged at ERROR level."""

    def __init__(self, entity: str, from_status: str, to_status: str, **log_context: Any):
        detail = f"Invalid transition from '{from_status}' to '{to_status}' for {entity}"
        super().__init__(
            detail,
            log_level="error",
            entity=entity,
            from_status=from_status,
            to_status=to_status,
            **log_context,
        )


# =============================================================================
# 500 Internal Server Errors
# =============================================================================


class InternalError(AppException):
    """
    Internal server error (500).

    Usage:
        raise InternalError("Failed to process message", message_id="abc")
    """

    def __init__(self, detail: str = "Internal server error", **log_context: Any):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=detail,
            log_level="error",
            **log_context,
        )


class DatabaseError(InternalError):
    """Database operation failed."""

    def __init__(self, operation: str, **log_context: Any):
        detail = f"Database error during {operation}. Please try again."
        super().__init__(detail, operation=operation, **log_context)


class ExternalServiceError(AppException):
    """External service error (502 or 503)."""

    def __init__(
        self,
        service: str,
        is_unavailable: bool = False,
        retry_after: int | None = None,
        **log_context: Any,
    ):
        if is_unavailable:
            status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            detail = f"Service {service} temporarily unavailable"
        else:
            status_code = status.HTTP_502_BAD_GATEWAY
            detail = f"Error communicating with {service}"

        headers = None
        if retry_after:
            headers = {"Retry-After": str(retry_after)}

        super().__init__(
            status_code=status_code,
            detail=detail,
            log_level="error",
            headers=headers,
            service=service,
            **log_context,
        )
