"""
Conversational ordering over messaging channels.

- orchestrator: one turn = prompt, bounded tool-calling loop, sanitized reply
- tools / tool_registry: the operations the reasoning engine may call
- reasoning_client: Ollama-compatible chat client with tools
- history_store: Redis-backed recent history per conversation
- conversation_state: per-conversation lock, dedup and notices
"""

from .conversation_state import ConversationState, ConversationStateRegistry
from .history_store import ConversationHistory, RedisConversationHistory
from .reasoning_client import (
    OllamaReasoningClient,
    ReasoningEngine,
    ReasoningEngineError,
    ReasoningReply,
    ToolCall,
)
from .tool_registry import ToolErrorCode, ToolRegistry, ToolResult, ToolSpec
from .tools import ToolContext, build_tool_registry
from .orchestrator import (
    FALLBACK_APOLOGY,
    RETRY_MESSAGE,
    ToolCallingOrchestrator,
    ToolRoundsExceededError,
)

__all__ = [
    "ConversationState",
    "ConversationStateRegistry",
    "ConversationHistory",
    "RedisConversationHistory",
    "OllamaReasoningClient",
    "ReasoningEngine",
    "ReasoningEngineError",
    "ReasoningReply",
    "ToolCall",
    "ToolErrorCode",
    "ToolRegistry",
    "ToolResult",
    "ToolSpec",
    "ToolContext",
    "build_tool_registry",
    "FALLBACK_APOLOGY",
    "RETRY_MESSAGE",
    "ToolCallingOrchestrator",
    "ToolRoundsExceededError",
]
