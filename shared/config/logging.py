"""
Centralized structured logging for the order engine.
Uses Python's standard logging with JSON formatting for production.

Log records carry the correlation ID of the HTTP request or conversation
turn that produced them (see shared.infrastructure.correlation).
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from shared.config.settings import settings


class StructuredFormatter(logging.Formatter):
    """One JSON object per record, for log aggregation in production."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        request_id = getattr(record, "request_id", None)
        if request_id and request_id != "-":
            payload["request_id"] = request_id

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            payload["data"] = extra_data

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        if settings.debug:
            payload["source"] = f"{record.pathname}:{record.lineno} in {record.funcName}"

        return json.dumps(payload, default=str)


class DevelopmentFormatter(logging.Formatter):
    """Single-line coloured output for local runs."""

    LEVEL_COLORS = {
        logging.DEBUG: "36",
        logging.INFO: "32",
        logging.WARNING: "33",
        logging.ERROR: "31",
        logging.CRITICAL: "35",
    }

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, "0")
        parts = [
            f"\033[{color}m{datetime.now():%H:%M:%S} {record.levelname:<8}\033[0m",
        ]

        request_id = getattr(record, "request_id", None)
        if request_id and request_id != "-":
            parts.append(f"\033[2m[{request_id[:8]}]\033[0m")

        parts.append(f"{record.name}: {record.getMessage()}")

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            parts.append("(" + ", ".join(f"{k}={v}" for k, v in extra_data.items()) + ")")

        line = " ".join(parts)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class StructuredLogger(logging.Logger):
    """
    Logger whose level methods accept structured fields.

    ``logger.info("Cart expired", order_id=7)`` attaches ``{"order_id": 7}``
    to the record as ``extra_data`` instead of interpolating it.
    """

    def _log(
        self,
        level: int,
        msg: Any,
        args: Any,
        exc_info: Any = None,
        extra: dict | None = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        **data: Any,
    ) -> None:
        extra = dict(extra or {})
        extra["extra_data"] = data or None
        super()._log(
            level,
            msg,
            args,
            exc_info=exc_info,
            extra=extra,
            stack_info=stack_info,
            stacklevel=stacklevel + 1,
        )


# Set custom logger class
logging.setLoggerClass(StructuredLogger)


def setup_logging() -> None:
    """
    Configure logging for the application.
    Call this once at application startup.
    """
    # Import here to avoid circular imports
    from shared.infrastructure.correlation import CorrelationIdFilter

    log_level = logging.DEBUG if settings.debug else logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.addFilter(CorrelationIdFilter())

    if settings.environment == "production":
        formatter = StructuredFormatter()
    else:
        formatter = DevelopmentFormatter()

    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(log_level)
    root.handlers.clear()
    root.addHandler(handler)

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.error").setLevel(logging.INFO)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


def get_logger(name: str) -> StructuredLogger:
    """
    Get a logger instance with the given name.

    Usage:
        from shared.config.logging import get_logger
        logger = get_logger(__name__)

        logger.info("Cart confirmed", order_id=123, customer=mask_customer_id(customer_id))
        logger.error("Reaper sweep failed", error=str(e), exc_info=True)
    """
    return logging.getLogger(name)  # type: ignore


def mask_customer_id(customer_id: str | None) -> str:
    """
    Mask a channel-qualified customer identifier for logging.

    Converts "whatsapp:+5491122334455" to "whatsapp:+549***55".
    Keeps the channel prefix and the edges of the handle for correlation.
    """
    if not customer_id:
        return "<no-customer>"

    channel, sep, handle = customer_id.rpartition(":")
    if len(handle) <= 6:
        masked = handle[:1] + "***"
    else:
        masked = f"{handle[:4]}***{handle[-2:]}"
    return f"{channel}{sep}{masked}"


# Pre-configured loggers for common modules
engine_logger = get_logger("order_engine")
chat_logger = get_logger("order_engine.chat")
reaper_logger = get_logger("order_engine.reaper")
