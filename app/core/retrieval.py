"""Hybrid retrieval: dense search + lexical search fused with RRF, reranked, chunk-expanded.

Stages:
1. Lexical hits (supplied or fetched) and dense search (embed + vector index), concurrently
2. Candidate building with merge of lexical hits into vector candidates
3. Reciprocal Rank Fusion over the vector-ranked and lexical-ranked lists
4. Optional Cohere rerank of the top window
5. Chunk-context expansion for projected document chunks
6. Projection into a capped RAGContext

Every provider is optional. Missing or failing providers degrade the result,
never the call.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Protocol

from app.core.analytics import track_server_event
from app.core.config import Settings, get_settings
from app.core.logging import get_logger
from app.core.schemas_rag import (
    CandidateKind,
    LexicalHit,
    LexicalHits,
    RAGCandidate,
    RAGContext,
    RAGContextItem,
    RetrievalOptions,
    RetrievalScope,
    VectorHit,
)
from app.core.vector_search import FieldMatch, VectorFilter, payload_text

logger = get_logger(__name__)

_SCOPE_TYPES: dict[str, str] = {
    "documents": "document",
    "entities": "entity",
    "memories": "memory",
}


# =============================================================================
# Provider interfaces
# =============================================================================


class Embedder(Protocol):
    def is_configured(self) -> bool: ...

    async def embed(self, text: str, task: str = "query") -> list[float]: ...


class VectorIndex(Protocol):
    def is_configured(self) -> bool: ...

    async def search(
        self, vector: list[float], limit: int, vector_filter: VectorFilter | None = None
    ) -> list[VectorHit]: ...

    async def fetch_document_chunks(
        self, project_id: str, document_id: str, start: int, end: int
    ) -> dict[int, str]: ...


class Reranker(Protocol):
    def is_configured(self) -> bool: ...

    async def rerank(self, query: str, texts: list[str]) -> list[float]: ...


class LexicalSource(Protocol):
    async def search_lexical(
        self, project_id: str, query: str, scope: RetrievalScope, limit: int
    ) -> LexicalHits: ...


# =============================================================================
# Candidate helpers
# =============================================================================


def candidate_key(kind: CandidateKind, item_id: str, chunk_index: int | None = None) -> str:
    """Dedup key: documents are keyed per chunk, entities and memories per id."""
    if kind == "document":
        return f"{kind}:{item_id}:{chunk_index if chunk_index is not None else 0}"
    return f"{kind}:{item_id}"


def _rerank_text(kind: CandidateKind, title: str | None, name: str | None,
                 type_name: str, preview: str) -> str:
    if kind == "document" and title:
        return f"{title}\n{preview}"
    if kind == "entity" and name:
        return f"{name} ({type_name})\n{preview}"
    return preview


def build_filter(project_id: str, options: RetrievalOptions) -> VectorFilter:
    """Vector filter for the project, scope and optional type narrowing."""
    vector_filter = VectorFilter(must=[FieldMatch(key="project_id", value=project_id)])
    scoped_type = _SCOPE_TYPES.get(options.scope)
    if scoped_type:
        vector_filter.must.append(FieldMatch(key="type", value=scoped_type))
    elif options.exclude_memories:
        vector_filter.must_not.append(FieldMatch(key="type", value="memory"))

    if options.document_types:
        vector_filter.must.append(FieldMatch(key="document_type", any=list(options.document_types)))
    if options.entity_types:
        vector_filter.must.append(FieldMatch(key="entity_type", any=list(options.entity_types)))
    return vector_filter


def candidate_from_vector_hit(hit: VectorHit) -> RAGCandidate | None:
    """Map a point payload onto a candidate. Unknown payload types are skipped."""
    payload = hit.payload
    kind = payload.get("type")
    preview = payload_text(payload)

    if kind == "document":
        item_id = str(payload.get("document_id") or hit.id)
        chunk_index = payload.get("chunk_index")
        chunk_index = chunk_index if isinstance(chunk_index, int) else None
        type_name = payload.get("document_type") or "document"
        title = payload.get("title")
        return RAGCandidate(
            key=candidate_key("document", item_id, chunk_index),
            id=item_id, kind="document", type=type_name, title=title,
            preview=preview, rerank_text=_rerank_text("document", title, None, type_name, preview),
            source="qdrant", vector_score=hit.score, chunk_index=chunk_index,
        )
    if kind == "entity":
        item_id = str(payload.get("entity_id") or hit.id)
        type_name = payload.get("entity_type") or "entity"
        name = payload.get("name") or payload.get("title")
        return RAGCandidate(
            key=candidate_key("entity", item_id),
            id=item_id, kind="entity", type=type_name, name=name,
            preview=preview, rerank_text=_rerank_text("entity", None, name, type_name, preview),
            source="qdrant", vector_score=hit.score,
        )
    if kind == "memory":
        item_id = str(payload.get("memory_id") or hit.id)
        return RAGCandidate(
            key=candidate_key("memory", item_id),
            id=item_id, kind="memory", type="memory", category=payload.get("category"),
            preview=preview, rerank_text=preview, source="memory", vector_score=hit.score,
        )
    return None


def _candidate_from_lexical_hit(kind: CandidateKind, hit: LexicalHit) -> RAGCandidate:
    type_name = hit.type or kind
    return RAGCandidate(
        key=candidate_key(kind, hit.id, hit.chunk_index),
        id=hit.id, kind=kind, type=type_name, title=hit.title, name=hit.name,
        preview=hit.preview,
        rerank_text=_rerank_text(kind, hit.title, hit.name, type_name, hit.preview),
        source="lexical", lexical_score=hit.score, chunk_index=hit.chunk_index,
    )


def scope_lexical_hits(lexical: LexicalHits, options: RetrievalOptions) -> LexicalHits:
    """Drop lexical hits outside the requested scope and type narrowing."""
    documents = list(lexical.documents)
    entities = list(lexical.entities)
    if options.scope in ("entities", "memories"):
        documents = []
    if options.scope in ("documents", "memories"):
        entities = []
    if options.document_types:
        documents = [h for h in documents if (h.type or "document") in options.document_types]
    if options.entity_types:
        entities = [h for h in entities if h.type in options.entity_types]
    return LexicalHits(documents=documents, entities=entities)


def merge_candidates(
    vector_hits: list[VectorHit],
    lexical: LexicalHits,
) -> tuple[dict[str, RAGCandidate], list[str], list[str]]:
    """Build the candidate map plus the vector-ranked and lexical-ranked key lists.

    A lexical hit whose (kind, id) is already a vector candidate merges its
    lexical score into that candidate: exact key first, else the best-ranked
    candidate with the same (kind, id).
    """
    candidates: dict[str, RAGCandidate] = {}
    vector_ranked: list[str] = []
    first_by_identity: dict[tuple[str, str], str] = {}

    for hit in vector_hits:
        candidate = candidate_from_vector_hit(hit)
        if candidate is None or candidate.key in candidates:
            continue
        candidates[candidate.key] = candidate
        vector_ranked.append(candidate.key)
        first_by_identity.setdefault((candidate.kind, candidate.id), candidate.key)

    lexical_items: list[tuple[CandidateKind, LexicalHit]] = [
        ("document", h) for h in lexical.documents
    ] + [("entity", h) for h in lexical.entities]
    lexical_items.sort(key=lambda item: item[1].score, reverse=True)

    lexical_ranked: list[str] = []
    for kind, hit in lexical_items:
        key = candidate_key(kind, hit.id, hit.chunk_index)
        if key not in candidates:
            key = first_by_identity.get((kind, hit.id), key)

        existing = candidates.get(key)
        if existing is not None:
            if existing.lexical_score is None or hit.score > existing.lexical_score:
                existing.lexical_score = hit.score
        else:
            candidates[key] = _candidate_from_lexical_hit(kind, hit)
            first_by_identity.setdefault((kind, hit.id), key)

        if key not in lexical_ranked:
            lexical_ranked.append(key)

    return candidates, vector_ranked, lexical_ranked


def apply_rrf_scores(
    candidates: dict[str, RAGCandidate],
    ranked_lists: list[list[str]],
    k: int,
) -> None:
    """rrf_score += 1 / (k + rank + 1) for each list a candidate appears in."""
    for ranked in ranked_lists:
        for rank, key in enumerate(ranked):
            candidate = candidates[key]
            candidate.rrf_score = (candidate.rrf_score or 0.0) + 1.0 / (k + rank + 1)


def pick_top_candidates(candidates: list[RAGCandidate], limit: int) -> list[RAGCandidate]:
    """Stable sort by rerank ?? rrf ?? vector ?? lexical, descending."""
    return sorted(candidates, key=lambda c: c.effective_score(), reverse=True)[:limit]


def format_chunk_context_preview(matched: str, before: list[str], after: list[str]) -> str:
    parts = [matched]
    if before:
        parts.append("Context before:\n" + "\n\n".join(before))
    if after:
        parts.append("Context after:\n" + "\n\n".join(after))
    return "\n\n".join(parts)


def select_for_context(
    ordered: list[RAGCandidate],
    limit: int,
    max_chunks_per_document: int,
) -> list[RAGCandidate]:
    """Apply per-list caps and the per-document chunk cap, preserving order."""
    counts = {"document": 0, "entity": 0, "memory": 0}
    chunks_per_doc: dict[str, int] = {}
    selected: list[RAGCandidate] = []
    for candidate in ordered:
        if counts[candidate.kind] >= limit:
            continue
        if candidate.kind == "document":
            used = chunks_per_doc.get(candidate.id, 0)
            if used >= max_chunks_per_document:
                continue
            chunks_per_doc[candidate.id] = used + 1
        counts[candidate.kind] += 1
        selected.append(candidate)
    return selected


def build_context_from_candidates(selected: list[RAGCandidate]) -> RAGContext:
    context = RAGContext()
    for candidate in selected:
        item = RAGContextItem(
            id=candidate.id,
            type=candidate.type,
            title=candidate.title,
            name=candidate.name,
            preview=candidate.preview,
            chunk_index=candidate.chunk_index,
            category=candidate.category,
            score=candidate.effective_score(),
            source=candidate.source,
        )
        if candidate.kind == "document":
            context.documents.append(item)
        elif candidate.kind == "entity":
            context.entities.append(item)
        else:
            context.memories.append(item)
    return context


# =============================================================================
# Engine
# =============================================================================


class RetrievalFusionEngine:
    """Turns a query into a RAGContext using whichever providers are configured."""

    def __init__(
        self,
        embedder: Embedder | None = None,
        vector_index: VectorIndex | None = None,
        reranker: Reranker | None = None,
        lexical_source: LexicalSource | None = None,
        settings: Settings | None = None,
    ):
        self._settings = settings or get_settings()
        self._embedder = embedder
        self._vector_index = vector_index
        self._reranker = reranker
        self._lexical_source = lexical_source

    def _dense_available(self) -> bool:
        return bool(
            self._embedder and self._embedder.is_configured()
            and self._vector_index and self._vector_index.is_configured()
        )

    async def retrieve(
        self,
        query: str,
        project_id: str,
        options: RetrievalOptions | None = None,
    ) -> RAGContext:
        options = options or RetrievalOptions()
        try:
            return await self._retrieve(query, project_id, options)
        except Exception as e:
            logger.error(f"Retrieval failed for project {project_id}: {e}", exc_info=True)
            return RAGContext()

    async def _retrieve(self, query: str, project_id: str, options: RetrievalOptions) -> RAGContext:
        settings = self._settings
        timings: dict[str, float] = {}
        counts: dict[str, int] = {}
        started = time.perf_counter()
        # A caller limit can narrow the per-list cap but never raise it
        limit = min(options.limit or settings.RAG_RESULT_LIMIT, settings.RAG_RESULT_LIMIT)

        # Stage 1: lexical + dense, concurrently
        dense_available = self._dense_available()
        lexical_task = self._gather_lexical(query, project_id, options, timings)
        dense_task = self._dense_search(query, project_id, options, timings) if dense_available else None

        if dense_task is not None:
            lexical, vector_hits = await asyncio.gather(lexical_task, dense_task)
        else:
            lexical, vector_hits = await lexical_task, []

        lexical = scope_lexical_hits(lexical, options)
        counts["dense"] = len(vector_hits)
        counts["lexical"] = len(lexical.documents) + len(lexical.entities)

        if not dense_available and lexical.is_empty():
            logger.debug("Dense retrieval unavailable and no lexical hits, returning empty context")
            return RAGContext()

        # Stage 2 + 3: merge and fuse
        candidates, vector_ranked, lexical_ranked = merge_candidates(vector_hits, lexical)
        contributing = [ranked for ranked in (vector_ranked, lexical_ranked) if ranked]
        if len(contributing) > 1:
            apply_rrf_scores(candidates, contributing, settings.RAG_RRF_K)
        ordered = pick_top_candidates(list(candidates.values()), settings.RAG_CANDIDATE_LIMIT)
        counts["fused"] = len(ordered)

        # Stage 4: rerank window
        if options.rerank and self._reranker and self._reranker.is_configured() and ordered:
            ordered = await self._rerank(query, ordered, timings)
            counts["reranked"] = min(len(ordered), settings.RAG_RERANK_LIMIT)

        # Stage 5: chunk expansion for what will be projected
        selected = select_for_context(ordered, limit, settings.RAG_MAX_CHUNKS_PER_DOCUMENT)
        if options.expand_chunks and self._vector_index and self._vector_index.is_configured():
            await self._expand_chunks(project_id, selected, options, timings)

        # Stage 6: projection
        context = build_context_from_candidates(selected)
        counts["final"] = len(selected)
        timings["total_ms"] = (time.perf_counter() - started) * 1000.0

        logger.info(
            f"Retrieval for project {project_id}: dense={counts['dense']} "
            f"lexical={counts['lexical']} fused={counts['fused']} final={counts['final']} "
            f"in {timings['total_ms']:.0f}ms"
        )
        self._emit_telemetry(project_id, options, counts, timings)
        return context

    async def _gather_lexical(
        self,
        query: str,
        project_id: str,
        options: RetrievalOptions,
        timings: dict[str, float],
    ) -> LexicalHits:
        if options.lexical is not None:
            return options.lexical
        if self._lexical_source is None:
            return LexicalHits()
        start = time.perf_counter()
        try:
            return await self._lexical_source.search_lexical(
                project_id, query, options.scope, self._settings.RAG_CANDIDATE_LIMIT
            )
        except Exception as e:
            logger.warning(f"Lexical search failed, continuing without it: {e}")
            return LexicalHits()
        finally:
            timings["lexical_ms"] = (time.perf_counter() - start) * 1000.0

    async def _dense_search(
        self,
        query: str,
        project_id: str,
        options: RetrievalOptions,
        timings: dict[str, float],
    ) -> list[VectorHit]:
        timeout = self._settings.PROVIDER_TIMEOUT_SECONDS
        try:
            start = time.perf_counter()
            vector = await asyncio.wait_for(self._embedder.embed(query, "query"), timeout)
            timings["embed_ms"] = (time.perf_counter() - start) * 1000.0

            start = time.perf_counter()
            hits = await asyncio.wait_for(
                self._vector_index.search(
                    vector, self._settings.RAG_CANDIDATE_LIMIT, build_filter(project_id, options)
                ),
                timeout,
            )
            timings["vector_ms"] = (time.perf_counter() - start) * 1000.0
            return hits
        except Exception as e:
            logger.warning(f"Dense retrieval failed, falling back to lexical only: {e}")
            return []

    async def _rerank(
        self,
        query: str,
        ordered: list[RAGCandidate],
        timings: dict[str, float],
    ) -> list[RAGCandidate]:
        settings = self._settings
        window = ordered[: settings.RAG_RERANK_LIMIT]
        rest = ordered[settings.RAG_RERANK_LIMIT:]
        texts = [(c.rerank_text or c.preview)[: settings.RAG_RERANK_MAX_CHARS] for c in window]

        start = time.perf_counter()
        try:
            scores = await asyncio.wait_for(
                self._reranker.rerank(query, texts), settings.PROVIDER_TIMEOUT_SECONDS
            )
        except Exception as e:
            logger.warning(f"Rerank failed, keeping fused order: {e}")
            return ordered
        finally:
            timings["rerank_ms"] = (time.perf_counter() - start) * 1000.0

        if len(scores) != len(window):
            logger.warning(
                f"Reranker returned {len(scores)} scores for {len(window)} texts, keeping fused order"
            )
            return ordered

        for candidate, score in zip(window, scores):
            candidate.rerank_score = score
        window = sorted(window, key=lambda c: c.rerank_score, reverse=True)
        return window + rest

    async def _expand_chunks(
        self,
        project_id: str,
        selected: list[RAGCandidate],
        options: RetrievalOptions,
        timings: dict[str, float],
    ) -> None:
        before = (
            options.chunk_context_before
            if options.chunk_context_before is not None
            else self._settings.RAG_CHUNK_CONTEXT_BEFORE
        )
        after = (
            options.chunk_context_after
            if options.chunk_context_after is not None
            else self._settings.RAG_CHUNK_CONTEXT_AFTER
        )
        targets = [c for c in selected if c.kind == "document" and c.chunk_index is not None]
        if not targets or (before <= 0 and after <= 0):
            return

        start = time.perf_counter()
        await asyncio.gather(
            *(self._expand_one(project_id, c, before, after) for c in targets)
        )
        timings["expand_ms"] = (time.perf_counter() - start) * 1000.0

    async def _expand_one(
        self,
        project_id: str,
        candidate: RAGCandidate,
        before: int,
        after: int,
    ) -> None:
        index = candidate.chunk_index
        try:
            chunks = await asyncio.wait_for(
                self._vector_index.fetch_document_chunks(
                    project_id, candidate.id, max(index - before, 0), index + after
                ),
                self._settings.PROVIDER_TIMEOUT_SECONDS,
            )
        except Exception as e:
            logger.warning(f"Chunk context fetch failed for document {candidate.id}: {e}")
            return

        before_texts = [chunks[i] for i in range(max(index - before, 0), index) if chunks.get(i)]
        after_texts = [chunks[i] for i in range(index + 1, index + after + 1) if chunks.get(i)]
        matched = chunks.get(index) or candidate.preview
        candidate.preview = format_chunk_context_preview(matched, before_texts, after_texts)

    def _emit_telemetry(
        self,
        project_id: str,
        options: RetrievalOptions,
        counts: dict[str, int],
        timings: dict[str, float],
    ) -> None:
        properties: dict[str, Any] = {
            "project_id": project_id,
            "scope": options.scope,
            **{f"{stage}_count": n for stage, n in counts.items()},
            **{name: round(ms, 1) for name, ms in timings.items()},
        }
        track_server_event(options.distinct_id or f"project:{project_id}", "rag_retrieval", properties)


def get_retrieval_engine(lexical_source: LexicalSource | None = None) -> RetrievalFusionEngine:
    """Engine wired to the configured OpenAI, Qdrant and Cohere providers."""
    from app.core.embeddings import OpenAIEmbedder
    from app.core.reranker import CohereReranker
    from app.core.vector_search import QdrantVectorIndex

    settings = get_settings()
    return RetrievalFusionEngine(
        embedder=OpenAIEmbedder(settings),
        vector_index=QdrantVectorIndex(settings),
        reranker=CohereReranker(settings),
        lexical_source=lexical_source,
        settings=settings,
    )
