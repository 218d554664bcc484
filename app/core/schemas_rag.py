"""Pydantic models for hybrid retrieval: candidates, hits and the RAG context."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

CandidateKind = Literal["document", "entity", "memory"]
CandidateSource = Literal["qdrant", "lexical", "memory", "text"]
RetrievalScope = Literal["all", "documents", "entities", "memories"]


class VectorHit(BaseModel):
    """A nearest-neighbour hit from the vector index."""

    id: str
    score: float
    payload: dict[str, Any] = Field(default_factory=dict)


class LexicalHit(BaseModel):
    """A full-text search hit supplied by the persistence layer."""

    id: str
    type: str | None = None
    title: str | None = None
    name: str | None = None
    preview: str = ""
    score: float = 0.0
    chunk_index: int | None = None


class LexicalHits(BaseModel):
    documents: list[LexicalHit] = Field(default_factory=list)
    entities: list[LexicalHit] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.documents and not self.entities


class RAGCandidate(BaseModel):
    """A retrieval candidate moving through fusion. Ephemeral."""

    key: str
    id: str
    kind: CandidateKind
    type: str
    title: str | None = None
    name: str | None = None
    category: str | None = None
    preview: str = ""
    rerank_text: str = ""
    source: CandidateSource
    vector_score: float | None = None
    lexical_score: float | None = None
    rrf_score: float | None = None
    rerank_score: float | None = None
    chunk_index: int | None = None

    def effective_score(self) -> float:
        for score in (self.rerank_score, self.rrf_score, self.vector_score, self.lexical_score):
            if score is not None:
                return score
        return 0.0


class RAGContextItem(BaseModel):
    id: str
    type: str
    title: str | None = None
    name: str | None = None
    preview: str = ""
    chunk_index: int | None = None
    category: str | None = None
    score: float | None = None
    source: CandidateSource | None = None


class RAGContext(BaseModel):
    """Retrieved context handed to the system prompt and the search tools."""

    documents: list[RAGContextItem] = Field(default_factory=list)
    entities: list[RAGContextItem] = Field(default_factory=list)
    memories: list[RAGContextItem] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.documents or self.entities or self.memories)


class RetrievalOptions(BaseModel):
    """Per-call retrieval options. `limit` narrows RAG_RESULT_LIMIT, never widens it."""

    scope: RetrievalScope = "all"
    exclude_memories: bool = False
    lexical: LexicalHits | None = None
    document_types: list[str] | None = None
    entity_types: list[str] | None = None
    rerank: bool = True
    expand_chunks: bool = True
    chunk_context_before: int | None = None
    chunk_context_after: int | None = None
    limit: int | None = None
    distinct_id: str | None = None
