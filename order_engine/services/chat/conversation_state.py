"""
Per-conversation in-memory state.

One ConversationState per (scope, customer) serializes that
conversation's turns with an asyncio.Lock and remembers recently seen
message ids and the unavailable-item notices already given.

States are evicted once idle for longer than the TTL, but never while
their lock is held.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from collections.abc import Callable

from shared.config.constants import Limits
from shared.config.logging import get_logger
from shared.config.settings import settings
from order_engine.schemas import Scope

logger = get_logger(__name__)


class ConversationState:
    """Mutable state of one conversation. Mutate only while holding ``lock``."""

    def __init__(self, now: float, max_seen_ids: int = Limits.SEEN_MESSAGE_IDS):
        self.lock = asyncio.Lock()
        self.last_seen = now
        self._seen_ids: deque[str] = deque(maxlen=max_seen_ids)
        self.notified_unavailable: set[int] = set()

    def is_duplicate(self, message_id: str) -> bool:
        return message_id in self._seen_ids

    def remember(self, message_id: str) -> None:
        self._seen_ids.append(message_id)

    def should_notify_unavailable(self, item_id: int) -> bool:
        """True the first time an item is reported unavailable in this conversation."""
        if item_id in self.notified_unavailable:
            return False
        self.notified_unavailable.add(item_id)
        return True

    def reset(self) -> None:
        """Forget per-order notices when the customer starts fresh."""
        self.notified_unavailable.clear()


class ConversationStateRegistry:
    """
    Registry of conversation states keyed by (scope, customer).

    Expired states are pruned lazily on access; a state whose lock is
    held is kept regardless of age.
    """

    def __init__(
        self,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._ttl = ttl_seconds if ttl_seconds is not None else settings.conversation_state_ttl_seconds
        self._clock = clock
        self._states: dict[tuple[str, str], ConversationState] = {}

    def __len__(self) -> int:
        return len(self._states)

    def get(self, scope: Scope, customer_key: str) -> ConversationState:
        now = self._clock()
        self.prune(now)
        key = (scope.key, customer_key)
        state = self._states.get(key)
        if state is None:
            state = ConversationState(now)
            self._states[key] = state
        state.last_seen = now
        return state

    def prune(self, now: float | None = None) -> int:
        """Drop idle, unlocked states. Returns how many were removed."""
        now = self._clock() if now is None else now
        expired = [
            key for key, state in self._states.items()
            if not state.lock.locked() and now - state.last_seen > self._ttl
        ]
        for key in expired:
            del self._states[key]
        if expired:
            logger.debug("Conversation states pruned", count=len(expired))
        return len(expired)
