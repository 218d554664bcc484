"""Query embeddings through an OpenAI-compatible embeddings API, with dimension checks."""

from __future__ import annotations

import asyncio
from typing import Literal

from openai import OpenAI

from app.core.config import Settings, get_settings
from app.core.logging import get_logger

logger = get_logger(__name__)

EmbeddingTask = Literal["query", "document"]


class OpenAIEmbedder:
    """Embedding provider. Unconfigured when no EMBEDDING_API_KEY is set."""

    def __init__(self, settings: Settings | None = None, client: OpenAI | None = None):
        self._settings = settings or get_settings()
        self._client = client

    def is_configured(self) -> bool:
        return self._client is not None or bool(self._settings.EMBEDDING_API_KEY)

    def _get_client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI(
                api_key=self._settings.EMBEDDING_API_KEY,
                base_url=self._settings.EMBEDDING_BASE_URL,
            )
        return self._client

    def embed_texts(self, texts: list[str]) -> list[list[float]]:
        """
        Generate embeddings for a list of texts.

        Raises:
            ValueError: If a vector's dimension doesn't match EMBEDDING_DIM
        """
        if not texts:
            return []

        settings = self._settings
        try:
            response = self._get_client().embeddings.create(
                model=settings.EMBEDDING_MODEL,
                input=texts,
            )
        except Exception as e:
            logger.error(f"Failed to generate embeddings: {e}")
            raise

        embeddings = []
        for i, embedding_obj in enumerate(response.data):
            embedding = embedding_obj.embedding
            if len(embedding) != settings.EMBEDDING_DIM:
                raise ValueError(
                    f"Embedding dimension mismatch for text {i}: "
                    f"expected {settings.EMBEDDING_DIM}, got {len(embedding)}"
                )
            embeddings.append(embedding)

        logger.debug(f"Generated {len(embeddings)} embeddings using {settings.EMBEDDING_MODEL}")
        return embeddings

    async def embed(self, text: str, task: EmbeddingTask = "query") -> list[float]:
        """Embed a single text off the event loop.

        The task hint is accepted for providers with asymmetric query/document
        models; OpenAI-style endpoints ignore it.
        """
        vectors = await asyncio.to_thread(self.embed_texts, [text])
        return vectors[0]
