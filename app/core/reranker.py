"""Cohere rerank provider. Returns relevance scores aligned with the input texts."""

from __future__ import annotations

import asyncio
from typing import Any

from app.core.config import Settings, get_settings
from app.core.logging import get_logger

logger = get_logger(__name__)


class CohereReranker:
    """Lazy Cohere client wrapper. Unconfigured when COHERE_API_KEY is unset."""

    def __init__(self, settings: Settings | None = None, client: Any | None = None):
        self._settings = settings or get_settings()
        self._client = client
        self._checked = client is not None

    def is_configured(self) -> bool:
        return self._client is not None or bool(self._settings.COHERE_API_KEY)

    def _get_client(self) -> Any | None:
        """Lazy-create sync Cohere client. Returns None if key not set or init fails."""
        if self._checked:
            return self._client
        self._checked = True

        if not self._settings.COHERE_API_KEY:
            return None

        try:
            import cohere

            self._client = cohere.ClientV2(api_key=self._settings.COHERE_API_KEY)
        except Exception as e:
            logger.debug(f"Cohere client init failed: {e}")
            self._client = None
        return self._client

    async def rerank(self, query: str, texts: list[str]) -> list[float]:
        """Score every text against the query.

        Texts the provider leaves out of its response score 0.0.

        Raises:
            RuntimeError: If the client can't be created
        """
        if not texts:
            return []
        client = self._get_client()
        if client is None:
            raise RuntimeError("Cohere reranker is not configured")

        response = await asyncio.to_thread(
            client.rerank,
            model=self._settings.RERANK_MODEL,
            query=query,
            documents=texts,
            top_n=len(texts),
        )

        scores = [0.0] * len(texts)
        for item in response.results:
            idx = item.index
            if 0 <= idx < len(texts):
                scores[idx] = float(item.relevance_score)
        logger.debug(f"Cohere reranked {len(texts)} texts")
        return scores
