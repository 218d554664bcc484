"""Per-project type registry: resolve, edit, lock and unlock.

Editing raises RegistryError; str(err) is the "<CODE>: <detail>" form clients parse.
"""

from __future__ import annotations

from datetime import datetime, timezone

from app.core.graph_errors import GraphErrorCode, RegistryError
from app.core.logging import get_logger
from app.core.schemas_graph import ProjectTypeRegistryOverride, ProjectTypeRegistryResolved
from app.core.type_registry import resolve_registry, validate_registry_override
from app.db.graph_store import GraphStore

logger = get_logger(__name__)


async def load_resolved_registry(store: GraphStore, project_id: str) -> ProjectTypeRegistryResolved | None:
    """Resolve the registry for a project, or None when the project doesn't exist."""
    project = await store.get_project(project_id)
    if project is None:
        return None
    override = await store.get_registry_override(project_id)
    return resolve_registry(project.get("template_id"), override)


async def _require_unlocked(store: GraphStore, project_id: str) -> ProjectTypeRegistryOverride | None:
    existing = await store.get_registry_override(project_id)
    if existing is not None and existing.locked:
        raise RegistryError(GraphErrorCode.REGISTRY_LOCKED, "Registry is locked")
    return existing


async def upsert_registry(
    store: GraphStore,
    project_id: str,
    override: ProjectTypeRegistryOverride,
) -> ProjectTypeRegistryResolved:
    """Replace the project's override document after validating it."""
    existing = await _require_unlocked(store, project_id)

    problem = validate_registry_override(override)
    if problem:
        raise RegistryError(GraphErrorCode.INVALID_REGISTRY, problem)

    saved = override.model_copy(
        update={
            "locked": False,
            "locked_at": None,
            "locked_by_user_id": None,
            "revision": (existing.revision if existing else 0) + 1,
        }
    )
    await store.save_registry_override(project_id, saved)
    logger.info(f"Registry override saved for project {project_id} (revision {saved.revision})")

    project = await store.get_project(project_id)
    return resolve_registry(project.get("template_id") if project else None, saved)


async def reset_registry(store: GraphStore, project_id: str) -> ProjectTypeRegistryResolved:
    """Drop the override and fall back to template defaults."""
    await _require_unlocked(store, project_id)
    await store.delete_registry_override(project_id)
    logger.info(f"Registry override reset for project {project_id}")
    project = await store.get_project(project_id)
    return resolve_registry(project.get("template_id") if project else None, None)


async def lock_registry(store: GraphStore, project_id: str, user_id: str) -> ProjectTypeRegistryOverride:
    """Freeze the registry. Fails if the graph already uses types it doesn't define."""
    registry = await load_resolved_registry(store, project_id)
    if registry is None:
        raise RegistryError(GraphErrorCode.ACCESS_DENIED, "Project not found")

    missing_entities = sorted(await store.list_entity_types_in_use(project_id) - set(registry.entity_types))
    missing_relationships = sorted(
        await store.list_relationship_types_in_use(project_id) - set(registry.relationship_types)
    )
    if missing_entities or missing_relationships:
        parts = []
        if missing_entities:
            parts.append(f"missing entity types: {', '.join(missing_entities)}")
        if missing_relationships:
            parts.append(f"missing relationship types: {', '.join(missing_relationships)}")
        raise RegistryError(
            GraphErrorCode.LOCK_FAILED_UNKNOWN_TYPES,
            "; ".join(parts),
            {"entity_types": missing_entities, "relationship_types": missing_relationships},
        )

    existing = await store.get_registry_override(project_id) or ProjectTypeRegistryOverride()
    locked = existing.model_copy(
        update={
            "locked": True,
            "locked_at": datetime.now(timezone.utc),
            "locked_by_user_id": user_id,
        }
    )
    await store.save_registry_override(project_id, locked)
    logger.info(f"Registry locked for project {project_id} by {user_id}")
    return locked


async def unlock_registry(store: GraphStore, project_id: str) -> ProjectTypeRegistryOverride:
    existing = await store.get_registry_override(project_id) or ProjectTypeRegistryOverride()
    unlocked = existing.model_copy(
        update={"locked": False, "locked_at": None, "locked_by_user_id": None}
    )
    await store.save_registry_override(project_id, unlocked)
    logger.info(f"Registry unlocked for project {project_id}")
    return unlocked
