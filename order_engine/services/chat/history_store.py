"""
Conversation history backed by Redis lists.

Each (scope, customer) conversation is one list of JSON entries, trimmed
to the configured window and expired after ``history_ttl_seconds``.
History is an aid for the reasoning engine, never a source of truth:
every Redis failure degrades to an empty history or a skipped write.
"""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import Protocol

import redis.asyncio as redis

from shared.config.logging import chat_logger as logger, mask_customer_id
from shared.config.settings import settings
from shared.infrastructure.events import get_redis_pool
from shared.utils.timeutils import as_utc, utcnow
from order_engine.schemas import Scope

HISTORY_KEY_PREFIX = "chat:history"


class ConversationHistory(Protocol):
    async def get_recent(self, scope: Scope, customer_key: str) -> list[dict[str, str]]: ...

    async def append(self, scope: Scope, customer_key: str, role: str, content: str) -> None: ...

    async def clear(self, scope: Scope, customer_key: str) -> None: ...


def history_key(scope: Scope, customer_key: str) -> str:
    return f"{HISTORY_KEY_PREFIX}:{scope.key}:{customer_key}"


class RedisConversationHistory:
    def __init__(
        self,
        redis_provider: Callable[[], Awaitable[redis.Redis]] = get_redis_pool,
        window_turns: int | None = None,
        reset_after: timedelta | None = None,
        ttl_seconds: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._redis_provider = redis_provider
        self._max_messages = 2 * (window_turns or settings.history_window_turns)
        self._reset_after = reset_after or timedelta(hours=settings.history_reset_hours)
        self._ttl = ttl_seconds or settings.history_ttl_seconds
        self._clock = clock

    async def get_recent(self, scope: Scope, customer_key: str) -> list[dict[str, str]]:
        """Messages of the window that are newer than the reset threshold, oldest first."""
        try:
            client = await self._redis_provider()
            raw_entries = await client.lrange(history_key(scope, customer_key), -self._max_messages, -1)
        except Exception as e:
            logger.warning(
                "History read failed",
                customer=mask_customer_id(customer_key),
                error=str(e),
            )
            return []

        cutoff = self._clock() - self._reset_after
        messages: list[dict[str, str]] = []
        for raw in raw_entries:
            try:
                entry = json.loads(raw)
                ts = as_utc(datetime.fromisoformat(entry["ts"]))
                role, content = entry["role"], entry["content"]
            except (ValueError, KeyError, TypeError):
                logger.warning("Skipping malformed history entry", customer=mask_customer_id(customer_key))
                continue
            if ts >= cutoff:
                messages.append({"role": role, "content": content})
        return messages

    async def append(self, scope: Scope, customer_key: str, role: str, content: str) -> None:
        entry = json.dumps(
            {"role": role, "content": content, "ts": self._clock().isoformat()},
            ensure_ascii=False,
        )
        key = history_key(scope, customer_key)
        try:
            client = await self._redis_provider()
            async with client.pipeline(transaction=True) as pipe:
                pipe.rpush(key, entry)
                pipe.ltrim(key, -self._max_messages, -1)
                pipe.expire(key, self._ttl)
                await pipe.execute()
        except Exception as e:
            logger.warning(
                "History write skipped",
                customer=mask_customer_id(customer_key),
                role=role,
                error=str(e),
            )

    async def clear(self, scope: Scope, customer_key: str) -> None:
        try:
            client = await self._redis_provider()
            await client.delete(history_key(scope, customer_key))
        except Exception as e:
            logger.warning("History clear failed", customer=mask_customer_id(customer_key), error=str(e))
