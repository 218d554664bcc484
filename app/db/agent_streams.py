"""Supabase-backed stream sink: append-only chunk rows per generation stream."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from app.core.logging import get_logger
from app.core.schemas_agent import StreamChunk
from app.db.supabase_client import get_supabase as get_client

logger = get_logger(__name__)


class SupabaseStreamSink:
    """Persists chunks to agent_stream_chunks and terminal status to agent_streams."""

    def __init__(self, client: Any | None = None):
        self._client = client
        self._seq: dict[str, int] = {}

    @property
    def client(self):
        if self._client is None:
            self._client = get_client()
        return self._client

    def _next_seq(self, stream_id: str) -> int:
        if stream_id not in self._seq:
            result = (
                self.client.table("agent_stream_chunks")
                .select("seq")
                .eq("stream_id", stream_id)
                .order("seq", desc=True)
                .limit(1)
                .execute()
            )
            self._seq[stream_id] = result.data[0]["seq"] + 1 if result.data else 0
        seq = self._seq[stream_id]
        self._seq[stream_id] = seq + 1
        return seq

    async def append(self, stream_id: str, chunk: StreamChunk) -> None:
        self.client.table("agent_stream_chunks").insert(
            {
                "stream_id": stream_id,
                "seq": self._next_seq(stream_id),
                "chunk": chunk.model_dump(mode="json", exclude_none=True),
            }
        ).execute()

    async def _set_status(self, stream_id: str, status: str, error: str | None = None) -> None:
        self.client.table("agent_streams").update(
            {
                "status": status,
                "error": error,
                "finished_at": datetime.now(timezone.utc).isoformat(),
            }
        ).eq("id", stream_id).execute()

    async def complete(self, stream_id: str) -> None:
        await self.append(stream_id, StreamChunk(type="complete"))
        await self._set_status(stream_id, "complete")

    async def fail(self, stream_id: str, error: str) -> None:
        await self.append(stream_id, StreamChunk(type="fail", content=error))
        await self._set_status(stream_id, "failed", error)
        logger.warning(f"Agent stream {stream_id} failed: {error}")
