"""Thread history, stream state and knowledge suggestions for the agent loop."""

from __future__ import annotations

from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Protocol

from app.core.schemas_agent import KnowledgeSuggestion, SuggestionStatus
from app.db.supabase_client import get_supabase as get_client


class AgentStore(Protocol):
    async def list_thread_messages(self, thread_id: str) -> list[dict[str, Any]]: ...
    async def append_thread_message(self, thread_id: str, message: dict[str, Any]) -> None: ...
    async def set_stream_context(self, stream_id: str, context: dict[str, Any]) -> None: ...
    async def get_stream_context(self, stream_id: str) -> dict[str, Any] | None: ...
    async def insert_suggestion(self, suggestion: KnowledgeSuggestion) -> None: ...
    async def get_suggestion(self, suggestion_id: str) -> KnowledgeSuggestion | None: ...
    async def claim_suggestion(
        self, suggestion_id: str, status: SuggestionStatus, result: Any = None
    ) -> bool: ...
    async def resolve_suggestion(
        self, suggestion_id: str, status: SuggestionStatus, result: Any
    ) -> None: ...
    async def count_pending_suggestions(self, stream_id: str) -> int: ...


class SupabaseAgentStore:
    def __init__(self, client: Any | None = None):
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = get_client()
        return self._client

    async def list_thread_messages(self, thread_id: str) -> list[dict[str, Any]]:
        result = (
            self.client.table("agent_thread_messages")
            .select("message")
            .eq("thread_id", thread_id)
            .order("created_at")
            .order("id")
            .execute()
        )
        return [row["message"] for row in result.data or []]

    async def append_thread_message(self, thread_id: str, message: dict[str, Any]) -> None:
        self.client.table("agent_thread_messages").insert(
            {"thread_id": thread_id, "message": message}
        ).execute()

    async def set_stream_context(self, stream_id: str, context: dict[str, Any]) -> None:
        self.client.table("agent_streams").upsert(
            {"id": stream_id, "status": "streaming", "context": context},
            on_conflict="id",
        ).execute()

    async def get_stream_context(self, stream_id: str) -> dict[str, Any] | None:
        result = (
            self.client.table("agent_streams").select("context").eq("id", stream_id).limit(1).execute()
        )
        return result.data[0]["context"] if result.data else None

    async def insert_suggestion(self, suggestion: KnowledgeSuggestion) -> None:
        self.client.table("knowledge_suggestions").insert(
            suggestion.model_dump(mode="json", exclude_none=True)
        ).execute()

    async def get_suggestion(self, suggestion_id: str) -> KnowledgeSuggestion | None:
        result = (
            self.client.table("knowledge_suggestions")
            .select("*")
            .eq("id", suggestion_id)
            .limit(1)
            .execute()
        )
        return KnowledgeSuggestion.model_validate(result.data[0]) if result.data else None

    async def claim_suggestion(
        self, suggestion_id: str, status: SuggestionStatus, result: Any = None
    ) -> bool:
        """Move a suggestion out of pending; False when another caller got there first."""
        claimed = (
            self.client.table("knowledge_suggestions")
            .update(
                {
                    "status": status.value,
                    "result": result,
                    "resolved_at": datetime.now(timezone.utc).isoformat(),
                }
            )
            .eq("id", suggestion_id)
            .eq("status", SuggestionStatus.PENDING.value)
            .execute()
        )
        return bool(claimed.data)

    async def resolve_suggestion(
        self, suggestion_id: str, status: SuggestionStatus, result: Any
    ) -> None:
        self.client.table("knowledge_suggestions").update(
            {
                "status": status.value,
                "result": result,
                "resolved_at": datetime.now(timezone.utc).isoformat(),
            }
        ).eq("id", suggestion_id).execute()

    async def count_pending_suggestions(self, stream_id: str) -> int:
        result = (
            self.client.table("knowledge_suggestions")
            .select("id")
            .eq("stream_id", stream_id)
            .eq("status", SuggestionStatus.PENDING.value)
            .execute()
        )
        return len(result.data or [])


@lru_cache(maxsize=1)
def get_agent_store() -> SupabaseAgentStore:
    return SupabaseAgentStore()
