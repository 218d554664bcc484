"""Qdrant-backed dense search and document chunk lookup."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

from qdrant_client import QdrantClient, models

from app.core.config import Settings, get_settings
from app.core.logging import get_logger
from app.core.schemas_rag import VectorHit

logger = get_logger(__name__)


@dataclass
class FieldMatch:
    """Equality (value) or membership (any) condition on a payload key."""

    key: str
    value: Any = None
    any: list[Any] | None = None


@dataclass
class VectorFilter:
    must: list[FieldMatch] = field(default_factory=list)
    must_not: list[FieldMatch] = field(default_factory=list)

    def to_qdrant(self) -> models.Filter:
        return models.Filter(
            must=[_to_condition(c) for c in self.must] or None,
            must_not=[_to_condition(c) for c in self.must_not] or None,
        )


def _to_condition(cond: FieldMatch) -> models.FieldCondition:
    if cond.any is not None:
        return models.FieldCondition(key=cond.key, match=models.MatchAny(any=cond.any))
    return models.FieldCondition(key=cond.key, match=models.MatchValue(value=cond.value))


class QdrantVectorIndex:
    """Vector index over the shared collection. Unconfigured without QDRANT_URL."""

    def __init__(self, settings: Settings | None = None, client: QdrantClient | None = None):
        self._settings = settings or get_settings()
        self._client = client

    def is_configured(self) -> bool:
        return self._client is not None or bool(self._settings.QDRANT_URL)

    def _get_client(self) -> QdrantClient:
        if self._client is None:
            self._client = QdrantClient(
                url=self._settings.QDRANT_URL,
                api_key=self._settings.QDRANT_API_KEY,
                timeout=int(self._settings.PROVIDER_TIMEOUT_SECONDS),
            )
        return self._client

    async def search(
        self,
        vector: list[float],
        limit: int,
        vector_filter: VectorFilter | None = None,
    ) -> list[VectorHit]:
        client = self._get_client()
        response = await asyncio.to_thread(
            client.query_points,
            collection_name=self._settings.QDRANT_COLLECTION,
            query=vector,
            limit=limit,
            query_filter=vector_filter.to_qdrant() if vector_filter else None,
            with_payload=True,
        )
        return [
            VectorHit(id=str(point.id), score=float(point.score), payload=point.payload or {})
            for point in response.points
        ]

    async def fetch_document_chunks(
        self,
        project_id: str,
        document_id: str,
        start: int,
        end: int,
    ) -> dict[int, str]:
        """Return {chunk_index: text} for chunks start..end (inclusive) of one document."""
        client = self._get_client()
        scroll_filter = models.Filter(
            must=[
                models.FieldCondition(key="project_id", match=models.MatchValue(value=project_id)),
                models.FieldCondition(key="type", match=models.MatchValue(value="document")),
                models.FieldCondition(key="document_id", match=models.MatchValue(value=document_id)),
                models.FieldCondition(key="chunk_index", range=models.Range(gte=start, lte=end)),
            ]
        )
        records, _next_offset = await asyncio.to_thread(
            client.scroll,
            collection_name=self._settings.QDRANT_COLLECTION,
            scroll_filter=scroll_filter,
            limit=max(end - start + 1, 1),
            with_payload=True,
            with_vectors=False,
        )

        chunks: dict[int, str] = {}
        for record in records:
            payload = record.payload or {}
            index = payload.get("chunk_index")
            if not isinstance(index, int):
                continue
            chunks[index] = payload_text(payload)
        return chunks


def payload_text(payload: dict[str, Any]) -> str:
    """Best available text field of a point payload."""
    for key in ("preview", "text", "content_preview", "content"):
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value
    return ""
