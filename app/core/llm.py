"""Language model interface for the agent loop, with the Anthropic implementation."""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Protocol, Union

from app.core.config import Settings, get_settings
from app.core.logging import get_logger
from app.core.schemas_agent import ToolCall

logger = get_logger(__name__)


@dataclass
class ModelTextDelta:
    text: str


@dataclass
class ModelStepResult:
    """End of one model step: the assistant message and any tool calls in it."""

    assistant_message: dict[str, Any]
    tool_calls: list[ToolCall] = field(default_factory=list)
    stop_reason: str | None = None


ModelEvent = Union[ModelTextDelta, ModelStepResult]


class LanguageModel(Protocol):
    def stream(
        self,
        system: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
    ) -> AsyncIterator[ModelEvent]:
        """Yield text deltas, then exactly one ModelStepResult."""
        ...


class AnthropicLanguageModel:
    """Streams a step from the Anthropic Messages API."""

    def __init__(self, settings: Settings | None = None, client: Any | None = None):
        self._settings = settings or get_settings()
        self._client = client

    def _get_client(self):
        if self._client is None:
            from anthropic import AsyncAnthropic

            self._client = AsyncAnthropic(api_key=self._settings.ANTHROPIC_API_KEY)
        return self._client

    async def stream(
        self,
        system: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
    ) -> AsyncIterator[ModelEvent]:
        client = self._get_client()
        async with client.messages.stream(
            model=self._settings.AGENT_MODEL,
            max_tokens=self._settings.AGENT_MAX_TOKENS,
            system=system,
            messages=messages,
            tools=tools,
        ) as stream:
            async for event in stream:
                if getattr(event, "type", None) == "content_block_delta":
                    text = getattr(event.delta, "text", None)
                    if text:
                        yield ModelTextDelta(text=text)

            final_message = await stream.get_final_message()

        if hasattr(final_message, "usage"):
            logger.debug(
                f"Agent step usage: input={getattr(final_message.usage, 'input_tokens', 0)} "
                f"output={getattr(final_message.usage, 'output_tokens', 0)}"
            )

        content = [block.model_dump(mode="json", exclude_none=True) for block in final_message.content]
        tool_calls = [
            ToolCall(tool_call_id=block.id, tool_name=block.name, args=dict(block.input or {}))
            for block in final_message.content
            if block.type == "tool_use"
        ]
        yield ModelStepResult(
            assistant_message={"role": "assistant", "content": content},
            tool_calls=tool_calls,
            stop_reason=final_message.stop_reason,
        )
