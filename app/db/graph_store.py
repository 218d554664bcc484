"""Persistence for the project knowledge graph, registry overrides and documents.

GraphStore is the interface the executor, registry service and search tools
depend on. SupabaseGraphStore implements it on the service-role client.
"""

from __future__ import annotations

from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Protocol

from app.core.canonicalize import canonicalize_name
from app.core.logging import get_logger
from app.core.schemas_graph import (
    ActivityRecord,
    Entity,
    ProjectTypeRegistryOverride,
    Relationship,
)
from app.core.schemas_rag import LexicalHit, LexicalHits, RetrievalScope
from app.db.supabase_client import get_supabase as get_client

logger = get_logger(__name__)


class GraphStore(Protocol):
    # Projects & access
    async def get_project(self, project_id: str) -> dict[str, Any] | None: ...
    async def get_member_role(self, project_id: str, user_id: str) -> str | None: ...

    # Registry overrides
    async def get_registry_override(self, project_id: str) -> ProjectTypeRegistryOverride | None: ...
    async def save_registry_override(self, project_id: str, override: ProjectTypeRegistryOverride) -> None: ...
    async def delete_registry_override(self, project_id: str) -> None: ...
    async def list_entity_types_in_use(self, project_id: str) -> set[str]: ...
    async def list_relationship_types_in_use(self, project_id: str) -> set[str]: ...

    # Entities
    async def find_entities_by_canonical(
        self, project_id: str, canonical_name: str, entity_type: str | None = None
    ) -> list[Entity]: ...
    async def get_entity(self, entity_id: str) -> Entity | None: ...
    async def insert_entity(self, row: dict[str, Any]) -> Entity: ...
    async def update_entity(self, entity_id: str, patch: dict[str, Any]) -> Entity: ...

    # Relationships
    async def find_relationship(
        self, project_id: str, source_id: str, target_id: str, rel_type: str
    ) -> Relationship | None: ...
    async def list_entity_relationships(self, project_id: str, entity_id: str) -> list[Relationship]: ...
    async def insert_relationship(self, row: dict[str, Any]) -> Relationship: ...
    async def update_relationship(self, relationship_id: str, patch: dict[str, Any]) -> Relationship: ...

    # Side effects
    async def enqueue_embedding_job(self, project_id: str, target_type: str, target_id: str) -> None: ...
    async def emit_activity(self, record: ActivityRecord) -> None: ...

    # Documents & lexical search
    async def get_document(self, document_id: str) -> dict[str, Any] | None: ...
    async def search_lexical(
        self, project_id: str, query: str, scope: RetrievalScope, limit: int
    ) -> LexicalHits: ...


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _alias_keys(aliases: list[str] | None) -> list[str]:
    return sorted({canonicalize_name(a) for a in aliases or [] if a and a.strip()})


class SupabaseGraphStore:
    """GraphStore backed by Supabase tables and RPCs."""

    def __init__(self, client: Any | None = None):
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = get_client()
        return self._client

    # =========================================================================
    # Projects & access
    # =========================================================================

    async def get_project(self, project_id: str) -> dict[str, Any] | None:
        result = (
            self.client.table("projects")
            .select("id, owner_id, template_id")
            .eq("id", project_id)
            .limit(1)
            .execute()
        )
        return result.data[0] if result.data else None

    async def get_member_role(self, project_id: str, user_id: str) -> str | None:
        project = await self.get_project(project_id)
        if project and project.get("owner_id") == user_id:
            return "owner"
        result = (
            self.client.table("project_members")
            .select("role")
            .eq("project_id", project_id)
            .eq("user_id", user_id)
            .limit(1)
            .execute()
        )
        return result.data[0]["role"] if result.data else None

    # =========================================================================
    # Registry overrides
    # =========================================================================

    async def get_registry_override(self, project_id: str) -> ProjectTypeRegistryOverride | None:
        result = (
            self.client.table("project_type_registries")
            .select("*")
            .eq("project_id", project_id)
            .limit(1)
            .execute()
        )
        if not result.data:
            return None
        row = result.data[0]
        return ProjectTypeRegistryOverride(
            entity_types=row.get("entity_types") or [],
            relationship_types=row.get("relationship_types") or [],
            locked=bool(row.get("locked")),
            locked_at=row.get("locked_at"),
            locked_by_user_id=row.get("locked_by_user_id"),
            revision=row.get("revision") or 0,
        )

    async def save_registry_override(
        self, project_id: str, override: ProjectTypeRegistryOverride
    ) -> None:
        row = {
            "project_id": project_id,
            "entity_types": [
                e.model_dump(by_alias=True, exclude_none=True) for e in override.entity_types
            ],
            "relationship_types": [
                r.model_dump(by_alias=True, exclude_none=True) for r in override.relationship_types
            ],
            "locked": override.locked,
            "locked_at": override.locked_at.isoformat() if override.locked_at else None,
            "locked_by_user_id": override.locked_by_user_id,
            "revision": override.revision,
            "updated_at": _now(),
        }
        self.client.table("project_type_registries").upsert(row, on_conflict="project_id").execute()

    async def delete_registry_override(self, project_id: str) -> None:
        self.client.table("project_type_registries").delete().eq("project_id", project_id).execute()

    async def list_entity_types_in_use(self, project_id: str) -> set[str]:
        result = self.client.table("entities").select("type").eq("project_id", project_id).execute()
        return {row["type"] for row in result.data or []}

    async def list_relationship_types_in_use(self, project_id: str) -> set[str]:
        result = (
            self.client.table("relationships").select("type").eq("project_id", project_id).execute()
        )
        return {row["type"] for row in result.data or []}

    # =========================================================================
    # Entities
    # =========================================================================

    async def find_entities_by_canonical(
        self, project_id: str, canonical_name: str, entity_type: str | None = None
    ) -> list[Entity]:
        """Entities whose canonical name or any canonical alias matches."""
        by_name = self.client.table("entities").select("*").eq("project_id", project_id)
        by_alias = self.client.table("entities").select("*").eq("project_id", project_id)
        if entity_type:
            by_name = by_name.eq("type", entity_type)
            by_alias = by_alias.eq("type", entity_type)

        rows = by_name.eq("canonical_name", canonical_name).execute().data or []
        if not rows:
            rows = by_alias.contains("alias_keys", [canonical_name]).execute().data or []
        return [Entity.model_validate(row) for row in rows]

    async def get_entity(self, entity_id: str) -> Entity | None:
        result = self.client.table("entities").select("*").eq("id", entity_id).limit(1).execute()
        return Entity.model_validate(result.data[0]) if result.data else None

    async def insert_entity(self, row: dict[str, Any]) -> Entity:
        data = {**row, "alias_keys": _alias_keys(row.get("aliases")), "created_at": _now(), "updated_at": _now()}
        result = self.client.table("entities").insert(data).execute()
        return Entity.model_validate(result.data[0])

    async def update_entity(self, entity_id: str, patch: dict[str, Any]) -> Entity:
        data = {**patch, "updated_at": _now()}
        if "aliases" in patch:
            data["alias_keys"] = _alias_keys(patch["aliases"])
        result = self.client.table("entities").update(data).eq("id", entity_id).execute()
        return Entity.model_validate(result.data[0])

    # =========================================================================
    # Relationships
    # =========================================================================

    async def find_relationship(
        self, project_id: str, source_id: str, target_id: str, rel_type: str
    ) -> Relationship | None:
        result = (
            self.client.table("relationships")
            .select("*")
            .eq("project_id", project_id)
            .eq("source_id", source_id)
            .eq("target_id", target_id)
            .eq("type", rel_type)
            .limit(1)
            .execute()
        )
        return Relationship.model_validate(result.data[0]) if result.data else None

    async def list_entity_relationships(self, project_id: str, entity_id: str) -> list[Relationship]:
        result = (
            self.client.table("relationships")
            .select("*")
            .eq("project_id", project_id)
            .or_(f"source_id.eq.{entity_id},target_id.eq.{entity_id}")
            .execute()
        )
        return [Relationship.model_validate(row) for row in result.data or []]

    async def insert_relationship(self, row: dict[str, Any]) -> Relationship:
        result = self.client.table("relationships").insert({**row, "created_at": _now()}).execute()
        return Relationship.model_validate(result.data[0])

    async def update_relationship(self, relationship_id: str, patch: dict[str, Any]) -> Relationship:
        result = self.client.table("relationships").update(patch).eq("id", relationship_id).execute()
        return Relationship.model_validate(result.data[0])

    # =========================================================================
    # Side effects
    # =========================================================================

    async def enqueue_embedding_job(self, project_id: str, target_type: str, target_id: str) -> None:
        self.client.table("embedding_jobs").upsert(
            {
                "project_id": project_id,
                "target_type": target_type,
                "target_id": target_id,
                "status": "pending",
                "queued_at": _now(),
            },
            on_conflict="target_type,target_id",
        ).execute()

    async def emit_activity(self, record: ActivityRecord) -> None:
        self.client.table("activity_log").insert(record.model_dump(mode="json")).execute()

    # =========================================================================
    # Documents & lexical search
    # =========================================================================

    async def get_document(self, document_id: str) -> dict[str, Any] | None:
        result = (
            self.client.table("documents")
            .select("id, project_id, title, type, content_text, word_count, updated_at")
            .eq("id", document_id)
            .limit(1)
            .execute()
        )
        return result.data[0] if result.data else None

    async def search_lexical(
        self, project_id: str, query: str, scope: RetrievalScope, limit: int
    ) -> LexicalHits:
        """Full-text search over documents and entities via Postgres RPCs."""
        hits = LexicalHits()
        if scope in ("all", "documents"):
            rows = self.client.rpc(
                "search_documents_lexical",
                {"p_project_id": project_id, "p_query": query, "p_limit": limit},
            ).execute().data or []
            hits.documents = [LexicalHit.model_validate(row) for row in rows]
        if scope in ("all", "entities"):
            rows = self.client.rpc(
                "search_entities_lexical",
                {"p_project_id": project_id, "p_query": query, "p_limit": limit},
            ).execute().data or []
            hits.entities = [LexicalHit.model_validate(row) for row in rows]
        return hits


@lru_cache(maxsize=1)
def get_graph_store() -> SupabaseGraphStore:
    """Shared store instance for request handlers."""
    return SupabaseGraphStore()
