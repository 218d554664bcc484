"""Read-only tools the agent runs without approval: search_context, read_document, get_entity."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from app.core.logging import get_logger
from app.core.schemas_rag import RetrievalOptions
from app.core.schemas_tools import GraphMutationFailure

if TYPE_CHECKING:
    from app.chains.graph_tools.dispatcher import ToolExecutionContext

logger = get_logger(__name__)

_SCOPES = {"all", "documents", "entities", "memories"}
MAX_DOCUMENT_CHARS = 20_000


async def _search_context(ctx: ToolExecutionContext, params: dict[str, Any]) -> dict[str, Any]:
    query = (params.get("query") or "").strip()
    if not query:
        return {"error": "query is required"}

    scope = params.get("scope") or "all"
    if scope not in _SCOPES:
        return {"error": f"Unknown scope: {scope}"}
    limit = params.get("limit")
    if isinstance(limit, int):
        limit = max(1, limit)
    else:
        limit = None

    context = await ctx.engine.retrieve(
        query,
        ctx.project_id,
        RetrievalOptions(scope=scope, limit=limit, distinct_id=ctx.actor.user_id),
    )
    return {
        "query": query,
        "scope": scope,
        "documents": [d.model_dump(exclude_none=True) for d in context.documents],
        "entities": [e.model_dump(exclude_none=True) for e in context.entities],
        "memories": [m.model_dump(exclude_none=True) for m in context.memories],
    }


async def _read_document(ctx: ToolExecutionContext, params: dict[str, Any]) -> dict[str, Any]:
    document_id = params.get("documentId") or params.get("document_id")
    if not document_id:
        return {"error": "documentId is required"}

    document = await ctx.store.get_document(document_id)
    if document is None:
        return {"error": "Document not found"}
    if document.get("project_id") != ctx.project_id:
        return {"error": "Access denied"}

    content = document.get("content_text") or ""
    return {
        "id": document["id"],
        "title": document.get("title"),
        "type": document.get("type"),
        "content": content[:MAX_DOCUMENT_CHARS],
        "truncated": len(content) > MAX_DOCUMENT_CHARS,
        "wordCount": document.get("word_count"),
    }


async def _get_entity(ctx: ToolExecutionContext, params: dict[str, Any]) -> dict[str, Any]:
    entity_id = params.get("entityId") or params.get("entity_id")
    entity_name = params.get("entityName") or params.get("entity_name")

    if entity_id:
        entity = await ctx.store.get_entity(entity_id)
        if entity is None:
            return {"error": "Entity not found"}
        if entity.project_id != ctx.project_id:
            return {"error": "Access denied"}
    elif entity_name:
        resolved = await ctx.executor.resolve_entity(
            ctx.project_id, entity_name, params.get("entityType")
        )
        if isinstance(resolved, GraphMutationFailure):
            return {"error": resolved.message}
        entity = resolved
    else:
        return {"error": "entityId or entityName is required"}

    result: dict[str, Any] = {
        "id": entity.id,
        "type": entity.type,
        "name": entity.name,
        "aliases": entity.aliases,
        "notes": entity.notes,
        "properties": entity.properties,
    }

    if params.get("includeRelationships", True):
        relationships = await ctx.store.list_entity_relationships(ctx.project_id, entity.id)
        result["relationships"] = [
            {
                "id": r.id,
                "type": r.type,
                "direction": "outgoing" if r.source_id == entity.id else "incoming",
                "otherEntityId": r.target_id if r.source_id == entity.id else r.source_id,
                "bidirectional": r.bidirectional,
                "strength": r.strength,
                "notes": r.notes,
            }
            for r in relationships
        ]
    return result
