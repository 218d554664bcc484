"""Best-effort previews of pending graph mutations for the approval UI.

Resolution problems never fail a preview; they become a note.
"""

from __future__ import annotations

from typing import Any

from app.chains.graph_tools.executor import GraphMutationExecutor
from app.chains.graph_tools.normalize import is_graph_tool, normalize_graph_tool_call
from app.core.logging import get_logger
from app.core.schemas_agent import ApprovalPreview, PreviewDiffRow
from app.core.schemas_graph import Entity
from app.core.schemas_tools import (
    CreateEntityArgs,
    CreateRelationshipArgs,
    GraphMutationFailure,
    UpdateEntityArgs,
    UpdateRelationshipArgs,
)
from app.db.graph_store import GraphStore

logger = get_logger(__name__)


def _row(field: str, before: Any, after: Any) -> PreviewDiffRow:
    return PreviewDiffRow(field=field, before=before, after=after)


def _dict_rows(prefix: str, before: dict[str, Any], after: dict[str, Any] | None) -> list[PreviewDiffRow]:
    if not isinstance(after, dict):
        return []
    return [
        _row(f"{prefix}.{key}", before.get(key), value)
        for key, value in after.items()
        if before.get(key) != value
    ]


async def build_approval_preview(
    store: GraphStore,
    project_id: str,
    tool_name: str,
    args: dict[str, Any] | None,
) -> ApprovalPreview:
    if not is_graph_tool(tool_name):
        return ApprovalPreview(kind="other", operation=tool_name)

    normalized = normalize_graph_tool_call(tool_name, args)
    if isinstance(normalized, GraphMutationFailure):
        return ApprovalPreview(kind="other", operation=tool_name, note=normalized.message)

    try:
        resolver = GraphMutationExecutor(store)
        if normalized.operation == "create_entity":
            return _preview_create_entity(normalized.args)
        if normalized.operation == "update_entity":
            return await _preview_update_entity(resolver, project_id, normalized.args)
        if normalized.operation == "create_relationship":
            return await _preview_create_relationship(store, resolver, project_id, normalized.args)
        return await _preview_update_relationship(store, resolver, project_id, normalized.args)
    except Exception as e:
        logger.warning(f"Approval preview failed for {tool_name}: {e}")
        return ApprovalPreview(
            kind=normalized.kind, operation=normalized.operation, note="Preview unavailable"
        )


def _preview_create_entity(args: CreateEntityArgs) -> ApprovalPreview:
    changes = [_row("name", None, args.name)]
    if args.aliases:
        changes.append(_row("aliases", None, args.aliases))
    if args.notes:
        changes.append(_row("notes", None, args.notes))
    changes.extend(_dict_rows("properties", {}, args.properties))
    return ApprovalPreview(
        kind="entity", operation="create_entity",
        entity_name=args.name, entity_type=args.type, changes=changes,
    )


async def _preview_update_entity(
    resolver: GraphMutationExecutor, project_id: str, args: UpdateEntityArgs
) -> ApprovalPreview:
    preview = ApprovalPreview(
        kind="entity", operation="update_entity",
        entity_name=args.entity_name, entity_type=args.entity_type,
    )
    resolved = await resolver.resolve_entity(project_id, args.entity_name, args.entity_type)
    updates = args.updates
    if isinstance(resolved, GraphMutationFailure):
        preview.note = resolved.message
        for field in ("name", "aliases", "notes"):
            value = getattr(updates, field)
            if value is not None:
                preview.changes.append(_row(field, None, value))
        preview.changes.extend(_dict_rows("properties", {}, updates.properties))
        return preview

    entity = resolved
    preview.entity_name = entity.name
    preview.entity_type = entity.type
    if updates.name is not None and updates.name != entity.name:
        preview.changes.append(_row("name", entity.name, updates.name))
    if updates.aliases is not None and updates.aliases != entity.aliases:
        preview.changes.append(_row("aliases", entity.aliases, updates.aliases))
    if updates.notes is not None and updates.notes != entity.notes:
        preview.changes.append(_row("notes", entity.notes, updates.notes))
    preview.changes.extend(_dict_rows("properties", entity.properties, updates.properties))
    return preview


async def _resolve_pair(
    resolver: GraphMutationExecutor, project_id: str, source_name: str, target_name: str
) -> tuple[Entity | None, Entity | None, str | None]:
    source = await resolver.resolve_entity(project_id, source_name, label="Source entity")
    target = await resolver.resolve_entity(project_id, target_name, label="Target entity")
    if isinstance(source, GraphMutationFailure):
        return None, None, source.message
    if isinstance(target, GraphMutationFailure):
        return None, None, target.message
    return source, target, None


async def _preview_create_relationship(
    store: GraphStore,
    resolver: GraphMutationExecutor,
    project_id: str,
    args: CreateRelationshipArgs,
) -> ApprovalPreview:
    preview = ApprovalPreview(
        kind="relationship", operation="create_relationship",
        source_name=args.source_name, target_name=args.target_name,
        relationship_type=args.type,
    )
    source, target, preview.note = await _resolve_pair(resolver, project_id, args.source_name, args.target_name)
    if source and target:
        preview.source_name = source.name
        preview.target_name = target.name
        if await store.find_relationship(project_id, source.id, target.id, args.type):
            preview.note = f"Relationship {source.name} → {args.type} → {target.name} already exists"

    if args.notes:
        preview.changes.append(_row("notes", None, args.notes))
    if args.strength is not None:
        preview.changes.append(_row("strength", None, args.strength))
    if args.bidirectional is not None:
        preview.changes.append(_row("bidirectional", None, args.bidirectional))
    preview.changes.extend(_dict_rows("metadata", {}, args.metadata))
    return preview


async def _preview_update_relationship(
    store: GraphStore,
    resolver: GraphMutationExecutor,
    project_id: str,
    args: UpdateRelationshipArgs,
) -> ApprovalPreview:
    preview = ApprovalPreview(
        kind="relationship", operation="update_relationship",
        source_name=args.source_name, target_name=args.target_name,
        relationship_type=args.type,
    )
    updates = args.updates
    existing = None

    source, target, preview.note = await _resolve_pair(resolver, project_id, args.source_name, args.target_name)
    if source and target:
        preview.source_name = source.name
        preview.target_name = target.name
        existing = await store.find_relationship(project_id, source.id, target.id, args.type)
        if existing is None:
            preview.note = f"Relationship {source.name} → {args.type} → {target.name} not found"

    for field in ("notes", "strength", "bidirectional"):
        value = getattr(updates, field)
        before = getattr(existing, field) if existing else None
        if value is not None and value != before:
            preview.changes.append(_row(field, before, value))
    preview.changes.extend(
        _dict_rows("metadata", existing.metadata if existing else {}, updates.metadata)
    )
    return preview
