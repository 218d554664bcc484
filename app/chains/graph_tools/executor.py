"""Graph mutation executor: access, type, name resolution, conflict, schema, persist.

Each mutation walks the same checks in order and stops at the first failure
with a typed code. Mutations for one project are serialized process-wide, so a
resolve -> check -> persist sequence can't interleave with another.
"""

from __future__ import annotations

from typing import Any

from app.chains.graph_tools.normalize import normalize_graph_tool_call
from app.core.canonicalize import canonicalize_name, normalize_aliases
from app.core.graph_errors import GraphErrorCode
from app.core.keyed_locks import keyed_lock
from app.core.logging import get_logger
from app.core.schemas_graph import (
    ActivityRecord,
    Entity,
    ProjectRole,
    ProjectTypeRegistryResolved,
)
from app.core.schemas_tools import (
    CreateEntityArgs,
    CreateRelationshipArgs,
    GraphMutationFailure,
    GraphMutationResult,
    GraphMutationSuccess,
    MutationActor,
    NormalizedGraphMutation,
    UpdateEntityArgs,
    UpdateRelationshipArgs,
    graph_failure,
)
from app.core.type_registry import validate_entity_properties, validate_relationship_metadata
from app.db.graph_store import GraphStore
from app.db.type_registry import load_resolved_registry

logger = get_logger(__name__)


def _arrow(bidirectional: bool | None) -> str:
    return "↔" if bidirectional else "→"


def _label(noun: str) -> str:
    return "Node" if noun in ("node", "edge") else "Entity"


class GraphMutationExecutor:
    """Applies normalized graph mutations through a GraphStore."""

    def __init__(self, store: GraphStore):
        self._store = store

    async def execute(
        self,
        project_id: str,
        tool_name: str,
        args: dict[str, Any] | None,
        actor: MutationActor,
    ) -> GraphMutationResult:
        """Execute any graph tool call (legacy names or graph_mutation)."""
        normalized = normalize_graph_tool_call(tool_name, args)
        if isinstance(normalized, GraphMutationFailure):
            return normalized
        return await self.execute_normalized(project_id, normalized, actor)

    async def execute_normalized(
        self,
        project_id: str,
        mutation: NormalizedGraphMutation,
        actor: MutationActor,
    ) -> GraphMutationResult:
        async with keyed_lock(f"graph:{project_id}"):
            denied = await self._check_access(project_id, actor)
            if denied:
                return denied

            registry = await load_resolved_registry(self._store, project_id)
            if registry is None:
                return graph_failure(GraphErrorCode.ACCESS_DENIED, "Project not found")

            if mutation.operation == "create_entity":
                result = await self._create_entity(project_id, registry, mutation.args, mutation.noun, actor)
            elif mutation.operation == "update_entity":
                result = await self._update_entity(project_id, registry, mutation.args, mutation.noun, actor)
            elif mutation.operation == "create_relationship":
                result = await self._create_relationship(project_id, registry, mutation.args, mutation.noun, actor)
            else:
                result = await self._update_relationship(project_id, registry, mutation.args, mutation.noun, actor)

        if isinstance(result, GraphMutationFailure):
            logger.info(
                f"Graph mutation {mutation.operation} rejected for project {project_id}: "
                f"{result.code.value} {result.message}"
            )
        return result

    # =========================================================================
    # Shared checks
    # =========================================================================

    async def _check_access(self, project_id: str, actor: MutationActor) -> GraphMutationFailure | None:
        if not actor.user_id:
            return graph_failure(GraphErrorCode.ACCESS_DENIED, "Actor user id is required")
        project = await self._store.get_project(project_id)
        if project is None:
            return graph_failure(GraphErrorCode.ACCESS_DENIED, "Project not found")
        role = await self._store.get_member_role(project_id, actor.user_id)
        if role is None:
            return graph_failure(GraphErrorCode.ACCESS_DENIED, "Access denied")
        if role == ProjectRole.VIEWER.value:
            return graph_failure(GraphErrorCode.ACCESS_DENIED, "Edit access denied")
        return None

    async def resolve_entity(
        self,
        project_id: str,
        name: str,
        entity_type: str | None = None,
        label: str = "Entity",
    ) -> Entity | GraphMutationFailure:
        """Find one entity by canonical name or alias: in-type first, then project-wide."""
        canonical = canonicalize_name(name)
        matches: list[Entity] = []
        if entity_type:
            matches = await self._store.find_entities_by_canonical(project_id, canonical, entity_type)
        if not matches:
            matches = await self._store.find_entities_by_canonical(project_id, canonical)

        if not matches:
            return graph_failure(GraphErrorCode.NOT_FOUND, f'{label} "{name}" not found')
        if len(matches) > 1:
            types = sorted({m.type for m in matches})
            return graph_failure(
                GraphErrorCode.CONFLICT,
                f'Multiple entities named "{name}" found ({", ".join(types)})',
                {"candidates": [{"id": m.id, "type": m.type, "name": m.name} for m in matches]},
            )
        return matches[0]

    async def _after_write(
        self,
        project_id: str,
        actor: MutationActor,
        action: str,
        summary: str,
        metadata: dict[str, Any],
        embed_target: tuple[str, str] | None = None,
    ) -> None:
        """Re-embedding and activity are best-effort once the write has landed."""
        if embed_target:
            try:
                await self._store.enqueue_embedding_job(project_id, *embed_target)
            except Exception as e:
                logger.warning(f"Failed to enqueue embedding job for {embed_target}: {e}")
        try:
            await self._store.emit_activity(
                ActivityRecord(
                    project_id=project_id,
                    actor_type=actor.actor_type,
                    actor_user_id=actor.user_id,
                    actor_name=actor.name,
                    action=action,
                    summary=summary,
                    metadata=metadata,
                )
            )
        except Exception as e:
            logger.warning(f"Failed to emit activity '{action}' for project {project_id}: {e}")

    # =========================================================================
    # Entities
    # =========================================================================

    async def _create_entity(
        self,
        project_id: str,
        registry: ProjectTypeRegistryResolved,
        args: CreateEntityArgs,
        noun: str,
        actor: MutationActor,
    ) -> GraphMutationResult:
        type_def = registry.entity_type(args.type)
        if type_def is None:
            return graph_failure(GraphErrorCode.INVALID_TYPE, f'Unknown entity type "{args.type}"')

        name = args.name.strip()
        if not name:
            return graph_failure(GraphErrorCode.SCHEMA_VALIDATION_FAILED, f"{_label(noun)} name is required")
        canonical = canonicalize_name(name)

        existing = await self._store.find_entities_by_canonical(project_id, canonical, args.type)
        if existing:
            return graph_failure(
                GraphErrorCode.CONFLICT,
                f'{_label(noun)} "{name}" already exists as {args.type}',
                {"existing_id": existing[0].id},
            )

        check = validate_entity_properties(type_def, args.properties)
        if not check.ok:
            return graph_failure(
                GraphErrorCode.SCHEMA_VALIDATION_FAILED, check.message, {"errors": check.errors}
            )

        entity = await self._store.insert_entity(
            {
                "project_id": project_id,
                "type": args.type,
                "name": name,
                "canonical_name": canonical,
                "aliases": normalize_aliases(args.aliases, exclude=canonical),
                "properties": check.value,
                "notes": args.notes,
            }
        )

        summary = f'Created {args.type} "{name}"'
        await self._after_write(
            project_id, actor, "entity_created", summary,
            {"entity_id": entity.id, "entity_type": args.type},
            embed_target=("entity", entity.id),
        )
        return GraphMutationSuccess(target_id=entity.id, message=summary, kind="entity")

    async def _update_entity(
        self,
        project_id: str,
        registry: ProjectTypeRegistryResolved,
        args: UpdateEntityArgs,
        noun: str,
        actor: MutationActor,
    ) -> GraphMutationResult:
        if args.entity_type and registry.entity_type(args.entity_type) is None:
            return graph_failure(GraphErrorCode.INVALID_TYPE, f'Unknown entity type "{args.entity_type}"')

        resolved = await self.resolve_entity(project_id, args.entity_name, args.entity_type, _label(noun))
        if isinstance(resolved, GraphMutationFailure):
            return resolved
        entity = resolved

        type_def = registry.entity_type(entity.type)
        if type_def is None:
            return graph_failure(
                GraphErrorCode.INVALID_TYPE,
                f'Entity type "{entity.type}" is not defined for this project',
            )

        updates = args.updates
        patch: dict[str, Any] = {}
        final_canonical = entity.canonical_name

        if updates.name is not None:
            new_name = updates.name.strip()
            if not new_name:
                return graph_failure(
                    GraphErrorCode.SCHEMA_VALIDATION_FAILED, f"{_label(noun)} name cannot be empty"
                )
            new_canonical = canonicalize_name(new_name)
            if new_canonical != entity.canonical_name:
                clashes = [
                    e for e in await self._store.find_entities_by_canonical(
                        project_id, new_canonical, entity.type
                    )
                    if e.id != entity.id
                ]
                if clashes:
                    return graph_failure(
                        GraphErrorCode.CONFLICT,
                        f'{_label(noun)} "{new_name}" already exists as {entity.type}',
                        {"existing_id": clashes[0].id},
                    )
            if new_name != entity.name:
                patch["name"] = new_name
                patch["canonical_name"] = new_canonical
            final_canonical = new_canonical

        if updates.aliases is not None:
            patch["aliases"] = normalize_aliases(updates.aliases, exclude=final_canonical)
        if updates.notes is not None:
            patch["notes"] = updates.notes
        if updates.properties is not None:
            merged = {**entity.properties, **updates.properties}
            check = validate_entity_properties(type_def, merged)
            if not check.ok:
                return graph_failure(
                    GraphErrorCode.SCHEMA_VALIDATION_FAILED, check.message, {"errors": check.errors}
                )
            patch["properties"] = check.value

        display_name = patch.get("name", entity.name)
        if not patch:
            return GraphMutationSuccess(
                target_id=entity.id,
                message=f'No changes for {entity.type} "{entity.name}"',
                kind="entity",
            )

        await self._store.update_entity(entity.id, patch)
        fields = [f for f in ("name", "aliases", "notes", "properties") if f in patch]
        summary = f'Updated {entity.type} "{display_name}": {", ".join(fields)}'
        await self._after_write(
            project_id, actor, "entity_updated", summary,
            {"entity_id": entity.id, "entity_type": entity.type, "fields": fields},
            embed_target=("entity", entity.id),
        )
        return GraphMutationSuccess(target_id=entity.id, message=summary, kind="entity")

    # =========================================================================
    # Relationships
    # =========================================================================

    async def _resolve_endpoints(self, project_id: str, source_name: str, target_name: str, noun: str):
        label = _label(noun)
        source = await self.resolve_entity(project_id, source_name, label=f"Source {label.lower()}")
        if isinstance(source, GraphMutationFailure):
            return source, None
        target = await self.resolve_entity(project_id, target_name, label=f"Target {label.lower()}")
        if isinstance(target, GraphMutationFailure):
            return target, None
        return source, target

    async def _create_relationship(
        self,
        project_id: str,
        registry: ProjectTypeRegistryResolved,
        args: CreateRelationshipArgs,
        noun: str,
        actor: MutationActor,
    ) -> GraphMutationResult:
        type_def = registry.relationship_type(args.type)
        if type_def is None:
            return graph_failure(GraphErrorCode.INVALID_TYPE, f'Unknown relationship type "{args.type}"')

        source, target = await self._resolve_endpoints(project_id, args.source_name, args.target_name, noun)
        if isinstance(source, GraphMutationFailure):
            return source

        description = f"{source.name} {_arrow(args.bidirectional)} {args.type} {_arrow(args.bidirectional)} {target.name}"
        if await self._store.find_relationship(project_id, source.id, target.id, args.type):
            return graph_failure(
                GraphErrorCode.CONFLICT, f"Relationship {description} already exists"
            )

        check = validate_relationship_metadata(type_def, args.metadata)
        if not check.ok:
            return graph_failure(
                GraphErrorCode.SCHEMA_VALIDATION_FAILED, check.message, {"errors": check.errors}
            )

        relationship = await self._store.insert_relationship(
            {
                "project_id": project_id,
                "source_id": source.id,
                "target_id": target.id,
                "type": args.type,
                "bidirectional": bool(args.bidirectional),
                "strength": args.strength,
                "notes": args.notes,
                "metadata": check.value,
            }
        )

        summary = f"Created relationship: {description}"
        await self._after_write(
            project_id, actor, "relationship_created", summary,
            {"relationship_id": relationship.id, "relationship_type": args.type},
        )
        return GraphMutationSuccess(target_id=relationship.id, message=summary, kind="relationship")

    async def _update_relationship(
        self,
        project_id: str,
        registry: ProjectTypeRegistryResolved,
        args: UpdateRelationshipArgs,
        noun: str,
        actor: MutationActor,
    ) -> GraphMutationResult:
        type_def = registry.relationship_type(args.type)
        if type_def is None:
            return graph_failure(GraphErrorCode.INVALID_TYPE, f'Unknown relationship type "{args.type}"')

        source, target = await self._resolve_endpoints(project_id, args.source_name, args.target_name, noun)
        if isinstance(source, GraphMutationFailure):
            return source

        relationship = await self._store.find_relationship(project_id, source.id, target.id, args.type)
        description = f"{source.name} → {args.type} → {target.name}"
        if relationship is None:
            return graph_failure(GraphErrorCode.NOT_FOUND, f"Relationship {description} not found")

        updates = args.updates
        patch: dict[str, Any] = {}
        if updates.notes is not None:
            patch["notes"] = updates.notes
        if updates.strength is not None:
            patch["strength"] = updates.strength
        if updates.bidirectional is not None:
            patch["bidirectional"] = updates.bidirectional
        if updates.metadata is not None:
            merged = {**relationship.metadata, **updates.metadata}
            check = validate_relationship_metadata(type_def, merged)
            if not check.ok:
                return graph_failure(
                    GraphErrorCode.SCHEMA_VALIDATION_FAILED, check.message, {"errors": check.errors}
                )
            patch["metadata"] = check.value

        if not patch:
            return GraphMutationSuccess(
                target_id=relationship.id,
                message=f"No changes for relationship {description}",
                kind="relationship",
            )

        await self._store.update_relationship(relationship.id, patch)
        fields = list(patch)
        summary = f"Updated relationship {description}: {', '.join(fields)}"
        await self._after_write(
            project_id, actor, "relationship_updated", summary,
            {"relationship_id": relationship.id, "relationship_type": args.type, "fields": fields},
        )
        return GraphMutationSuccess(target_id=relationship.id, message=summary, kind="relationship")
