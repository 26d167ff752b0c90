"""
Reasoning engine client.

Talks to an Ollama-compatible /api/chat endpoint with function tools.
One pooled httpx.AsyncClient is created lazily and reused; call
``close()`` on shutdown.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

import httpx

from shared.config.logging import chat_logger as logger
from shared.config.settings import CHAT_MODEL, OLLAMA_URL, settings


class ReasoningEngineError(Exception):
    """The engine timed out, was unreachable or answered with an unusable payload."""
    pass


@dataclass(frozen=True)
class ToolCall:
    """
    One function call requested by the engine.

    ``arguments`` is None when the engine sent a string that is not a
    JSON object; ``raw_arguments`` keeps what was received.
    """

    id: str
    name: str
    arguments: Optional[dict[str, Any]]
    raw_arguments: Any = None


@dataclass(frozen=True)
class ReasoningReply:
    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)


class ReasoningEngine(Protocol):
    async def complete(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
    ) -> ReasoningReply: ...


def _parse_arguments(raw: Any) -> Optional[dict[str, Any]]:
    if raw is None or raw == "":
        return {}
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            return None
        return parsed if isinstance(parsed, dict) else None
    return None


def parse_reply(data: dict[str, Any]) -> ReasoningReply:
    """Build a ReasoningReply from an /api/chat response body."""
    message = data.get("message")
    if not isinstance(message, dict):
        raise ReasoningEngineError("Response has no message")

    calls = []
    for index, raw_call in enumerate(message.get("tool_calls") or []):
        function = (raw_call or {}).get("function") or {}
        name = function.get("name")
        if not name:
            logger.warning("Tool call without a name ignored", index=index)
            continue
        raw_arguments = function.get("arguments")
        calls.append(
            ToolCall(
                id=str(raw_call.get("id") or f"call_{index}"),
                name=name,
                arguments=_parse_arguments(raw_arguments),
                raw_arguments=raw_arguments,
            )
        )
    return ReasoningReply(content=message.get("content") or "", tool_calls=calls)


class OllamaReasoningClient:
    """HTTP client for the Ollama chat API with tool support."""

    def __init__(
        self,
        base_url: str = OLLAMA_URL,
        model: str = CHAT_MODEL,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout or settings.reasoning_timeout_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._client_lock = asyncio.Lock()

    async def _get_client(self) -> httpx.AsyncClient:
        # Fast path: client already initialized
        if self._client is not None and not self._client.is_closed:
            return self._client

        async with self._client_lock:
            if self._client is None or self._client.is_closed:
                self._client = httpx.AsyncClient(
                    timeout=self.timeout,
                    limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
                    transport=self._transport,
                )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client. Called on application shutdown."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def complete(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
    ) -> ReasoningReply:
        """
        One chat round.

        Raises:
            ReasoningEngineError: timeout, transport failure, non-2xx status
                or an unparseable body
        """
        client = await self._get_client()
        payload = {
            "model": self.model,
            "messages": messages,
            "tools": tools,
            "stream": False,
        }
        try:
            response = await client.post(f"{self.base_url}/api/chat", json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as e:
            logger.warning("Reasoning engine timed out", timeout=self.timeout)
            raise ReasoningEngineError("Reasoning engine timed out") from e
        except httpx.HTTPStatusError as e:
            logger.warning("Reasoning engine returned an error", status_code=e.response.status_code)
            raise ReasoningEngineError(f"Reasoning engine returned {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.warning("Reasoning engine unreachable", error=str(e))
            raise ReasoningEngineError("Reasoning engine unreachable") from e
        except ValueError as e:
            raise ReasoningEngineError("Reasoning engine sent invalid JSON") from e

        if not isinstance(data, dict):
            raise ReasoningEngineError("Reasoning engine sent an unexpected body")
        return parse_reply(data)
