"""Stream sinks for agent turns and SSE rendering for the HTTP route."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncGenerator
from typing import Protocol

from app.core.schemas_agent import StreamChunk

_CLOSE = object()


class StreamSink(Protocol):
    async def append(self, stream_id: str, chunk: StreamChunk) -> None: ...
    async def complete(self, stream_id: str) -> None: ...
    async def fail(self, stream_id: str, error: str) -> None: ...


def _sse_event(data: dict) -> str:
    """Format a dict as an SSE data line."""
    return f"data: {json.dumps(data, default=str)}\n\n"


class QueueStreamSink:
    """In-process sink that feeds an SSE response and optionally mirrors to another sink."""

    def __init__(self, mirror: StreamSink | None = None):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._mirror = mirror

    async def append(self, stream_id: str, chunk: StreamChunk) -> None:
        if self._mirror:
            await self._mirror.append(stream_id, chunk)
        await self._queue.put(chunk)

    async def complete(self, stream_id: str) -> None:
        if self._mirror:
            await self._mirror.complete(stream_id)
        await self._queue.put(StreamChunk(type="complete"))

    async def fail(self, stream_id: str, error: str) -> None:
        if self._mirror:
            await self._mirror.fail(stream_id, error)
        await self._queue.put(StreamChunk(type="fail", content=error))

    async def fail_request(self, error: str) -> None:
        """End only this response with a fail chunk; the durable stream is left alone."""
        await self._queue.put(StreamChunk(type="fail", content=error))

    async def close(self) -> None:
        await self._queue.put(_CLOSE)

    async def events(self) -> AsyncGenerator[str, None]:
        """Yield SSE lines until close() or a terminal chunk."""
        while True:
            item = await self._queue.get()
            if item is _CLOSE:
                return
            yield _sse_event(item.model_dump(mode="json", exclude_none=True))
            if item.type in ("complete", "fail"):
                return
