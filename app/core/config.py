"""Configuration management for Saga Engine."""

from functools import lru_cache

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file (only if accessible)
try:
    load_dotenv()
except (PermissionError, OSError):
    # In sandboxed environments, .env might not be accessible
    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Supabase configuration (required)
    SUPABASE_URL: str = Field(..., description="Supabase project URL")
    SUPABASE_SERVICE_ROLE_KEY: str = Field(..., description="Supabase service role key")

    # Environment
    SAGA_ENV: str = Field(default="dev", description="Environment: dev, staging, prod, test")

    # Agent model (Anthropic)
    ANTHROPIC_API_KEY: str | None = Field(default=None, description="Anthropic API key")
    AGENT_MODEL: str = Field(
        default="claude-haiku-4-5-20251001", description="Model driving the agent loop"
    )
    AGENT_MAX_TOKENS: int = Field(default=4096, description="Max output tokens per model step")
    AGENT_MAX_STEPS: int = Field(default=5, description="Max model steps per agent turn")
    PRESENCE_KEEPALIVE_SECONDS: float = Field(
        default=8.0, description="Min interval between AI presence pings while streaming"
    )

    # Embedding configuration (OpenAI-compatible endpoint)
    EMBEDDING_API_KEY: str | None = Field(default=None, description="Embedding provider API key")
    EMBEDDING_BASE_URL: str | None = Field(
        default=None, description="Override base URL for OpenAI-compatible embedding providers"
    )
    EMBEDDING_MODEL: str = Field(
        default="text-embedding-3-small", description="Embedding model"
    )
    EMBEDDING_DIM: int = Field(default=1536, description="Embedding vector dimension")

    # Vector search (Qdrant)
    QDRANT_URL: str | None = Field(default=None, description="Qdrant endpoint URL")
    QDRANT_API_KEY: str | None = Field(default=None, description="Qdrant API key")
    QDRANT_COLLECTION: str = Field(default="saga_vectors", description="Qdrant collection name")

    # Reranking (Cohere)
    COHERE_API_KEY: str | None = Field(default=None, description="Cohere API key for reranking")
    RERANK_MODEL: str = Field(default="rerank-v3.5", description="Cohere rerank model")

    PROVIDER_TIMEOUT_SECONDS: float = Field(
        default=8.0, description="Timeout for embedding, vector search and rerank calls"
    )

    # Retrieval fusion
    RAG_RRF_K: int = Field(default=60, description="Reciprocal Rank Fusion constant")
    RAG_CANDIDATE_LIMIT: int = Field(default=30, description="Candidates kept after fusion")
    RAG_RESULT_LIMIT: int = Field(default=10, description="Max items per RAG context list")
    RAG_MAX_CHUNKS_PER_DOCUMENT: int = Field(
        default=2, description="Max chunks from one document in the RAG context"
    )
    RAG_RERANK_LIMIT: int = Field(default=15, description="Candidates sent to the reranker")
    RAG_RERANK_MAX_CHARS: int = Field(default=1200, description="Max chars per rerank text")
    RAG_CHUNK_CONTEXT_BEFORE: int = Field(default=2, description="Neighbour chunks before a hit")
    RAG_CHUNK_CONTEXT_AFTER: int = Field(default=1, description="Neighbour chunks after a hit")

    # Tool policy
    RELATIONSHIP_STRENGTH_THRESHOLD: float = Field(
        default=0.3, description="Relationship updates below this strength need approval"
    )

    # PostHog analytics
    POSTHOG_API_KEY: str | None = Field(default=None, description="PostHog project API key")
    POSTHOG_HOST: str = Field(default="https://us.i.posthog.com", description="PostHog host")


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings instance loaded from environment
    """
    return Settings()
