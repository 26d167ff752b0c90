"""
Tool-Calling Orchestrator.

Runs one conversation turn: builds the prompt from the business, the cart
and the recent history, lets the reasoning engine call tools for a bounded
number of rounds, and returns the sanitized reply with any media the tools
attached.

Turns of the same (scope, customer) never overlap: each holds its
conversation state's lock from start to finish.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shared.config.constants import Limits
from shared.config.logging import chat_logger as logger, mask_customer_id
from shared.config.settings import settings
from shared.infrastructure.correlation import new_request_id, request_id_var
from shared.infrastructure.db import AsyncSessionLocal
from shared.utils.timeutils import to_local, utcnow
from shared.utils.validators import sanitize_free_text, sanitize_reply
from order_engine.schemas import BusinessProfile, CartOutput, InboundMessage, MenuItemOutput, OutboundMessage
from order_engine.services.chat.conversation_state import ConversationState, ConversationStateRegistry
from order_engine.services.chat.history_store import ConversationHistory
from order_engine.services.chat.reasoning_client import ReasoningEngine, ReasoningEngineError, ReasoningReply
from order_engine.services.chat.tool_registry import ToolRegistry
from order_engine.services.chat.tools import ToolContext
from order_engine.services.domain import BusinessNotFoundError, build_domain_services
from order_engine.services.notifications import OrderNotifier

FALLBACK_APOLOGY = "Sorry, something went wrong on our side. Please try again in a moment."
RETRY_MESSAGE = "Sorry, I could not process that right now. Please send your message again in a minute."

_START_FRESH_RE = re.compile(
    r"\b(start (over|again|fresh)|new order|from scratch|reset( the)? (chat|conversation))\b",
    re.IGNORECASE,
)

SYSTEM_PROMPT = """You are the ordering assistant of {business_name}.
You help customers browse, build their cart, schedule and confirm orders.

RULES:
1. Only use the tools to read or change the cart and orders. Never invent items, prices or availability.
   Items are referred to by the id after "#" in the menu below; call get_menu_items for anything not listed.
2. Prices are integer cents; show them to the customer as currency with two decimals.
3. Before confirming, call validate_cart_for_confirmation and resolve every problem it reports.
4. Only call confirm_order after the customer explicitly agrees to the final total.
5. When a tool is rejected, explain the reason briefly and offer an alternative.
6. Reply in the customer's language, concisely, without HTML.

Local time at the business: {local_time} ({timezone}).

Menu (prices in cents):
{menu}

Current cart (JSON):
{cart_json}"""


class ToolRoundsExceededError(Exception):
    def __init__(self, max_rounds: int):
        self.max_rounds = max_rounds
        super().__init__(f"Reasoning engine still requested tools after {max_rounds} rounds")


def is_start_fresh(text: str) -> bool:
    return bool(_START_FRESH_RE.search(text))


class ToolCallingOrchestrator:
    def __init__(
        self,
        engine: ReasoningEngine,
        registry: ToolRegistry,
        history: ConversationHistory,
        states: ConversationStateRegistry,
        session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
        notifier: OrderNotifier | None = None,
        max_rounds: int | None = None,
        max_reply_length: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._engine = engine
        self._registry = registry
        self._history = history
        self._states = states
        self._session_factory = session_factory
        self._notifier = notifier
        self._max_rounds = max_rounds or settings.max_tool_rounds
        self._max_reply_length = max_reply_length or settings.max_reply_length
        self._clock = clock

    async def handle_message(self, message: InboundMessage) -> OutboundMessage:
        """Answer one inbound customer message."""
        token = request_id_var.set(new_request_id())
        try:
            state = self._states.get(message.scope, message.customer_key)
            async with state.lock:
                if state.is_duplicate(message.message_id):
                    logger.info(
                        "Duplicate message dropped",
                        message_id=message.message_id,
                        customer=mask_customer_id(message.customer_key),
                    )
                    return OutboundMessage(text="", duplicate=True)
                state.remember(message.message_id)
                return await self._run_turn(message, state)
        finally:
            request_id_var.reset(token)

    async def _run_turn(self, message: InboundMessage, state: ConversationState) -> OutboundMessage:
        scope, customer_key = message.scope, message.customer_key
        text = sanitize_free_text(message.text, Limits.MAX_INBOUND_TEXT_LENGTH) or ""

        if is_start_fresh(text):
            await self._history.clear(scope, customer_key)
            state.reset()
            logger.info("Conversation restarted", customer=mask_customer_id(customer_key))

        history = await self._history.get_recent(scope, customer_key)
        images: list[str] = []
        documents: list[str] = []
        succeeded = False

        async with self._session_factory() as db:
            services = build_domain_services(db, clock=self._clock)
            try:
                business = BusinessProfile.model_validate(await services.cart.get_business(scope))
                ctx = ToolContext(
                    scope=scope,
                    customer_key=customer_key,
                    business=business,
                    services=services,
                    state=state,
                    notifier=self._notifier,
                )
                cart = await services.cart.get_cart(scope, customer_key)
                menu = await services.cart.list_menu(scope)
                reply = await self._converse(ctx, cart, menu, history, text, images, documents)
                succeeded = True
            except ReasoningEngineError as e:
                # Tool calls already applied stay applied
                logger.warning("Reasoning engine unavailable", error=str(e))
                reply = RETRY_MESSAGE
            except ToolRoundsExceededError as e:
                logger.error("Tool round limit exceeded", max_rounds=e.max_rounds)
                reply = FALLBACK_APOLOGY
            except BusinessNotFoundError as e:
                logger.error("Message for unknown business", business_id=e.business_id)
                reply = FALLBACK_APOLOGY
            except Exception as e:
                logger.error("Conversation turn failed", error=str(e), exc_info=True)
                reply = FALLBACK_APOLOGY

        if not succeeded:
            images.clear()
            documents.clear()

        reply = sanitize_reply(reply, self._max_reply_length) or FALLBACK_APOLOGY
        await self._history.append(scope, customer_key, "user", text)
        await self._history.append(scope, customer_key, "assistant", reply)
        return OutboundMessage(text=reply, images=images, documents=documents)

    def _system_prompt(self, business: BusinessProfile, cart: CartOutput, menu: list[MenuItemOutput]) -> str:
        local_now = to_local(self._clock(), business.timezone)
        menu_lines = [entry.prompt_line() for entry in menu[: Limits.MAX_PROMPT_MENU_ITEMS]]
        if len(menu) > Limits.MAX_PROMPT_MENU_ITEMS:
            menu_lines.append(f"... {len(menu) - Limits.MAX_PROMPT_MENU_ITEMS} more, see get_menu_items")
        return SYSTEM_PROMPT.format(
            business_name=business.name,
            local_time=local_now.strftime("%A %Y-%m-%d %H:%M"),
            timezone=business.timezone,
            menu="\n".join(menu_lines) or "(nothing on sale right now)",
            cart_json=cart.model_dump_json(exclude_none=True),
        )

    async def _converse(
        self,
        ctx: ToolContext,
        cart: CartOutput,
        menu: list[MenuItemOutput],
        history: list[dict[str, str]],
        text: str,
        images: list[str],
        documents: list[str],
    ) -> str:
        messages: list[dict[str, Any]] = [{"role": "system", "content": self._system_prompt(ctx.business, cart, menu)}]
        messages.extend(history)
        messages.append({"role": "user", "content": text})
        tools = self._registry.schemas()

        reply = await self._engine.complete(messages, tools)
        rounds = 0
        while reply.tool_calls:
            if rounds >= self._max_rounds:
                raise ToolRoundsExceededError(self._max_rounds)
            rounds += 1
            messages.append(self._assistant_message(reply))
            for call in reply.tool_calls:
                result = await self._registry.dispatch(call, ctx)
                images.extend(result.images)
                documents.extend(result.documents)
                messages.append({"role": "tool", "tool_name": call.name, "content": result.to_engine_content()})
            reply = await self._engine.complete(messages, tools)

        logger.info("Turn completed", tool_rounds=rounds, customer=mask_customer_id(ctx.customer_key))
        return reply.content

    @staticmethod
    def _assistant_message(reply: ReasoningReply) -> dict[str, Any]:
        return {
            "role": "assistant",
            "content": reply.content,
            "tool_calls": [
                {"id": call.id, "function": {"name": call.name, "arguments": call.arguments or {}}}
                for call in reply.tool_calls
            ],
        }
