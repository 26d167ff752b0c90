"""
Tool registry for the conversation orchestrator.

Maps tool names to an async handler and a pydantic argument model, renders
the function schemas the reasoning engine receives, and turns every
dispatch outcome (success, rejection, bad arguments, crash) into a
ToolResult that can be fed back to the engine.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field, ValidationError

from shared.config.logging import chat_logger as logger
from order_engine.services.chat.reasoning_client import ToolCall


class ToolErrorCode:
    UNSUPPORTED_OPERATION = "unsupported_operation"
    INVALID_ARGUMENTS = "invalid_arguments"
    REJECTED = "rejected"
    INTERNAL_ERROR = "internal_error"


class ToolResult(BaseModel):
    """Outcome of one tool call, serialized back to the reasoning engine."""

    success: bool
    message: str
    data: dict[str, Any] | None = None
    images: list[str] = Field(default_factory=list)
    documents: list[str] = Field(default_factory=list)
    error_code: str | None = None

    @classmethod
    def ok(cls, message: str, data: dict[str, Any] | None = None, **kwargs: Any) -> "ToolResult":
        return cls(success=True, message=message, data=data, **kwargs)

    @classmethod
    def rejected(cls, message: str, data: dict[str, Any] | None = None) -> "ToolResult":
        return cls(success=False, message=message, data=data, error_code=ToolErrorCode.REJECTED)

    def to_engine_content(self) -> str:
        """JSON for the 'tool' message. Media URLs go to the customer, not the engine."""
        return self.model_dump_json(exclude={"images", "documents"}, exclude_none=True)


ArgsT = TypeVar("ArgsT", bound=BaseModel)
ToolHandler = Callable[[Any, Any], Awaitable[ToolResult]]


@dataclass(frozen=True)
class ToolSpec(Generic[ArgsT]):
    name: str
    description: str
    args_model: type[ArgsT]
    handler: ToolHandler

    def schema(self) -> dict[str, Any]:
        parameters = self.args_model.model_json_schema()
        parameters.pop("title", None)
        parameters.setdefault("properties", {})
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": parameters,
            },
        }


class NoArgs(BaseModel):
    pass


class ToolRegistry:
    def __init__(self) -> None:
        self._tools: dict[str, ToolSpec] = {}

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._tools:
            raise ValueError(f"Tool '{spec.name}' is already registered")
        self._tools[spec.name] = spec

    def schemas(self) -> list[dict[str, Any]]:
        return [spec.schema() for spec in self._tools.values()]

    async def dispatch(self, call: ToolCall, context: Any) -> ToolResult:
        """Validate the call's arguments and run its handler. Never raises."""
        spec = self._tools.get(call.name)
        if spec is None:
            logger.warning("Unsupported tool requested", tool=call.name)
            return ToolResult(
                success=False,
                message=f"Unknown operation '{call.name}'",
                error_code=ToolErrorCode.UNSUPPORTED_OPERATION,
            )

        if call.arguments is None:
            logger.error("Malformed tool arguments", tool=call.name, raw_arguments=str(call.raw_arguments)[:200])
            return ToolResult(
                success=False,
                message="Arguments must be a JSON object",
                error_code=ToolErrorCode.INVALID_ARGUMENTS,
            )

        try:
            args = spec.args_model.model_validate(call.arguments)
        except ValidationError as e:
            errors = [f"{'.'.join(map(str, err['loc']))}: {err['msg']}" for err in e.errors(include_url=False)]
            logger.error("Invalid tool arguments", tool=call.name, errors=errors)
            return ToolResult(
                success=False,
                message=f"Invalid arguments: {e.error_count()} error(s)",
                data={"errors": errors},
                error_code=ToolErrorCode.INVALID_ARGUMENTS,
            )

        try:
            result = await spec.handler(context, args)
        except Exception as e:
            logger.error("Tool failed", tool=call.name, error=str(e), exc_info=True)
            return ToolResult(
                success=False,
                message="The operation failed unexpectedly",
                error_code=ToolErrorCode.INTERNAL_ERROR,
            )

        logger.info("Tool executed", tool=call.name, success=result.success, error_code=result.error_code)
        return result
