"""
Core Event Publishing with Retry and Validation.
"""

from __future__ import annotations

import asyncio
import random

import redis.asyncio as redis

from shared.config.settings import settings
from shared.config.logging import get_logger
from .event_types import MAX_EVENT_SIZE
from .event_schema import Event

logger = get_logger(__name__)


def _validate_event_size(event_json: str, event_type: str) -> None:
    """Raise ValueError when the serialized event is too large."""
    size = len(event_json.encode("utf-8"))
    if size > MAX_EVENT_SIZE:
        raise ValueError(
            f"Event {event_type} exceeds max size: {size} > {MAX_EVENT_SIZE} bytes"
        )


def calculate_retry_delay_with_jitter(attempt: int, base_delay: float) -> float:
    """Exponential backoff with up to 25% jitter."""
    delay = base_delay * (2 ** attempt)
    return delay + random.uniform(0, delay * 0.25)


async def publish_event(
    redis_client: redis.Redis,
    channel: str,
    event: Event,
) -> int:
    """
    Publish an event to a Redis channel.

    Retries with exponential backoff up to ``redis_publish_max_retries``.

    Returns:
        Number of subscribers that received the message.

    Raises:
        ValueError: If event is too large.
        Exception: The last Redis error once all retries fail.
    """
    event_json = event.to_json()
    _validate_event_size(event_json, event.type)

    last_error: Exception | None = None
    for attempt in range(settings.redis_publish_max_retries):
        try:
            return await redis_client.publish(channel, event_json)
        except Exception as e:
            last_error = e
            if attempt < settings.redis_publish_max_retries - 1:
                delay = calculate_retry_delay_with_jitter(
                    attempt, settings.redis_publish_retry_delay
                )
                logger.warning(
                    "Redis publish failed, retrying",
                    channel=channel,
                    event_type=event.type,
                    attempt=attempt + 1,
                    max_retries=settings.redis_publish_max_retries,
                    delay_seconds=round(delay, 2),
                    error=str(e),
                )
                await asyncio.sleep(delay)
            else:
                logger.error(
                    "Redis publish failed after all retries",
                    channel=channel,
                    event_type=event.type,
                    error=str(e),
                )

    raise last_error  # type: ignore[misc]
