"""Tests for the embedding, vector index and rerank provider adapters (mocked SDK clients)."""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from app.core.embeddings import OpenAIEmbedder
from app.core.reranker import CohereReranker
from app.core.vector_search import FieldMatch, QdrantVectorIndex, VectorFilter, payload_text


def _embedding_response(*vectors):
    return SimpleNamespace(data=[SimpleNamespace(embedding=list(v)) for v in vectors])


class TestOpenAIEmbedder:
    def test_unconfigured_without_key(self, settings):
        assert OpenAIEmbedder(settings).is_configured() is False

    @pytest.mark.asyncio
    async def test_embed_returns_single_vector(self, settings):
        settings.EMBEDDING_DIM = 3
        client = MagicMock()
        client.embeddings.create.return_value = _embedding_response([0.1, 0.2, 0.3])

        vector = await OpenAIEmbedder(settings, client=client).embed("storm at sea")

        assert vector == [0.1, 0.2, 0.3]
        client.embeddings.create.assert_called_once_with(model=settings.EMBEDDING_MODEL, input=["storm at sea"])

    def test_dimension_mismatch_raises(self, settings):
        settings.EMBEDDING_DIM = 4
        client = MagicMock()
        client.embeddings.create.return_value = _embedding_response([0.1, 0.2])

        with pytest.raises(ValueError, match="dimension mismatch"):
            OpenAIEmbedder(settings, client=client).embed_texts(["x"])

    def test_empty_input_skips_call(self, settings):
        client = MagicMock()
        assert OpenAIEmbedder(settings, client=client).embed_texts([]) == []
        client.embeddings.create.assert_not_called()


class TestCohereReranker:
    @pytest.mark.asyncio
    async def test_scores_align_with_input_order(self, settings):
        client = MagicMock()
        client.rerank.return_value = SimpleNamespace(results=[
            SimpleNamespace(index=2, relevance_score=0.9),
            SimpleNamespace(index=0, relevance_score=0.4),
        ])

        scores = await CohereReranker(settings, client=client).rerank("q", ["a", "b", "c"])

        assert scores == [0.4, 0.0, 0.9]
        assert client.rerank.call_args.kwargs["top_n"] == 3
        assert client.rerank.call_args.kwargs["model"] == settings.RERANK_MODEL

    @pytest.mark.asyncio
    async def test_unconfigured_rerank_raises(self, settings):
        reranker = CohereReranker(settings)
        assert reranker.is_configured() is False
        with pytest.raises(RuntimeError):
            await reranker.rerank("q", ["a"])


class TestQdrantVectorIndex:
    @pytest.mark.asyncio
    async def test_search_maps_points(self, settings):
        client = MagicMock()
        client.query_points.return_value = SimpleNamespace(points=[
            SimpleNamespace(id="p1", score=0.7, payload={"type": "entity", "entity_id": "e1"}),
        ])
        index = QdrantVectorIndex(settings, client=client)

        hits = await index.search([0.1], 5, VectorFilter(must=[FieldMatch(key="project_id", value="proj-1")]))

        assert [(h.id, h.score) for h in hits] == [("p1", 0.7)]
        kwargs = client.query_points.call_args.kwargs
        assert kwargs["collection_name"] == settings.QDRANT_COLLECTION
        assert kwargs["query_filter"].must[0].key == "project_id"

    @pytest.mark.asyncio
    async def test_fetch_document_chunks_keys_by_index(self, settings):
        client = MagicMock()
        client.scroll.return_value = (
            [
                SimpleNamespace(payload={"chunk_index": 1, "text": "one"}),
                SimpleNamespace(payload={"chunk_index": 2, "preview": "two"}),
                SimpleNamespace(payload={"text": "no index"}),
            ],
            None,
        )
        chunks = await QdrantVectorIndex(settings, client=client).fetch_document_chunks("proj-1", "d1", 1, 2)
        assert chunks == {1: "one", 2: "two"}
        assert client.scroll.call_args.kwargs["limit"] == 2

    def test_membership_filter(self):
        qdrant_filter = VectorFilter(must=[FieldMatch(key="entity_type", any=["character"])]).to_qdrant()
        assert qdrant_filter.must[0].match.any == ["character"]
        assert qdrant_filter.must_not is None

    def test_payload_text_fallbacks(self):
        assert payload_text({"content_preview": "cp", "content": "c"}) == "cp"
        assert payload_text({}) == ""
