"""Scripted language model and recording stream sink for agent-loop tests."""

from typing import Any, Dict, List

from app.core.llm import ModelStepResult, ModelTextDelta
from app.core.schemas_agent import StreamChunk, ToolCall


def text_step(text: str) -> ModelStepResult:
    return ModelStepResult(
        assistant_message={"role": "assistant", "content": [{"type": "text", "text": text}]},
        stop_reason="end_turn",
    )


def tool_step(*calls: ToolCall, text: str = "") -> ModelStepResult:
    content: List[Dict[str, Any]] = [{"type": "text", "text": text}] if text else []
    content += [
        {"type": "tool_use", "id": c.tool_call_id, "name": c.tool_name, "input": c.args}
        for c in calls
    ]
    return ModelStepResult(
        assistant_message={"role": "assistant", "content": content},
        tool_calls=list(calls),
        stop_reason="tool_use",
    )


class ScriptedLanguageModel:
    """Replays one ModelStepResult per stream() call, streaming its text first."""

    def __init__(self, steps: List[ModelStepResult]):
        self.steps = list(steps)
        self.calls: List[Dict[str, Any]] = []

    async def stream(self, system: str, messages: List[Dict[str, Any]], tools: List[Dict[str, Any]]):
        self.calls.append({"system": system, "messages": messages, "tools": tools})
        if not self.steps:
            raise RuntimeError("No scripted model steps left")
        step = self.steps.pop(0)
        for block in step.assistant_message["content"]:
            if block.get("type") == "text" and block.get("text"):
                yield ModelTextDelta(text=block["text"])
        yield step


class RecordingSink:
    """StreamSink that keeps every chunk in order."""

    def __init__(self):
        self.chunks: List[StreamChunk] = []
        self.completed: List[str] = []
        self.failed: List[tuple] = []

    async def append(self, stream_id: str, chunk: StreamChunk) -> None:
        self.chunks.append(chunk)

    async def complete(self, stream_id: str) -> None:
        self.completed.append(stream_id)
        self.chunks.append(StreamChunk(type="complete"))

    async def fail(self, stream_id: str, error: str) -> None:
        self.failed.append((stream_id, error))
        self.chunks.append(StreamChunk(type="fail", content=error))

    def types(self) -> List[str]:
        return [c.type for c in self.chunks]

    def of_type(self, chunk_type: str) -> List[StreamChunk]:
        return [c for c in self.chunks if c.type == chunk_type]
