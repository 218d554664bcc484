"""Project type registry endpoints: read, replace, reset, lock and unlock."""

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException

from app.core.auth_middleware import (
    AuthContext,
    require_project_editor,
    require_project_member,
    require_project_owner,
)
from app.core.graph_errors import GraphErrorCode, RegistryError
from app.core.logging import get_logger
from app.core.schemas_graph import ProjectTypeRegistryOverride, ProjectTypeRegistryResolved
from app.db.graph_store import GraphStore, get_graph_store
from app.db.type_registry import (
    load_resolved_registry,
    lock_registry,
    reset_registry,
    unlock_registry,
    upsert_registry,
)

logger = get_logger(__name__)

router = APIRouter()

_STATUS_BY_CODE = {
    GraphErrorCode.REGISTRY_LOCKED: 409,
    GraphErrorCode.LOCK_FAILED_UNKNOWN_TYPES: 409,
    GraphErrorCode.INVALID_REGISTRY: 422,
    GraphErrorCode.ACCESS_DENIED: 404,
}


def _registry_http_error(e: RegistryError) -> HTTPException:
    return HTTPException(
        status_code=_STATUS_BY_CODE.get(e.code, 400),
        detail={"code": e.code.value, "message": str(e), "details": e.details},
    )


def _registry_response(
    registry: ProjectTypeRegistryResolved,
    override: ProjectTypeRegistryOverride | None,
) -> Dict[str, Any]:
    return {
        "registry": registry.model_dump(mode="json", by_alias=True),
        "locked": bool(override and override.locked),
        "lockedAt": override.locked_at.isoformat() if override and override.locked_at else None,
        "lockedByUserId": override.locked_by_user_id if override else None,
        "revision": override.revision if override else 0,
    }


@router.get("/projects/{project_id}/registry")
async def get_registry(
    project_id: str,
    auth: AuthContext = Depends(require_project_member),
    store: GraphStore = Depends(get_graph_store),
) -> Dict[str, Any]:
    """Resolved registry for a project, with its lock state."""
    registry = await load_resolved_registry(store, project_id)
    if registry is None:
        raise HTTPException(status_code=404, detail="Project not found")
    return _registry_response(registry, await store.get_registry_override(project_id))


@router.put("/projects/{project_id}/registry")
async def put_registry(
    project_id: str,
    override: ProjectTypeRegistryOverride,
    auth: AuthContext = Depends(require_project_editor),
    store: GraphStore = Depends(get_graph_store),
) -> Dict[str, Any]:
    try:
        registry = await upsert_registry(store, project_id, override)
    except RegistryError as e:
        logger.info(f"Registry update rejected for project {project_id}: {e}")
        raise _registry_http_error(e) from e
    return _registry_response(registry, await store.get_registry_override(project_id))


@router.delete("/projects/{project_id}/registry")
async def delete_registry(
    project_id: str,
    auth: AuthContext = Depends(require_project_editor),
    store: GraphStore = Depends(get_graph_store),
) -> Dict[str, Any]:
    """Reset the registry to the project template's defaults."""
    try:
        registry = await reset_registry(store, project_id)
    except RegistryError as e:
        raise _registry_http_error(e) from e
    return _registry_response(registry, None)


@router.post("/projects/{project_id}/registry/lock")
async def post_registry_lock(
    project_id: str,
    auth: AuthContext = Depends(require_project_owner),
    store: GraphStore = Depends(get_graph_store),
) -> Dict[str, Any]:
    try:
        override = await lock_registry(store, project_id, auth.user_id)
    except RegistryError as e:
        logger.info(f"Registry lock rejected for project {project_id}: {e}")
        raise _registry_http_error(e) from e
    registry = await load_resolved_registry(store, project_id)
    return _registry_response(registry, override)


@router.post("/projects/{project_id}/registry/unlock")
async def post_registry_unlock(
    project_id: str,
    auth: AuthContext = Depends(require_project_owner),
    store: GraphStore = Depends(get_graph_store),
) -> Dict[str, Any]:
    override = await unlock_registry(store, project_id)
    registry = await load_resolved_registry(store, project_id)
    return _registry_response(registry, override)
