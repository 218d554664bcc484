"""Reduce every world-graph tool shape to one of four mutation operations.

create_entity / create_node, update_entity / update_node, create_relationship /
create_edge, update_relationship / update_edge and the unified graph_mutation
tool all normalize here. The policy classifier and the executor share it.
"""

from __future__ import annotations

from typing import Any

from pydantic import TypeAdapter, ValidationError

from app.core.graph_errors import GraphErrorCode
from app.core.schemas_tools import (
    CreateEntityArgs,
    CreateRelationshipArgs,
    GraphCreateEntity,
    GraphCreateRelationship,
    GraphDeleteEntity,
    GraphDeleteRelationship,
    GraphMutationArgs,
    GraphMutationFailure,
    GraphUpdateEntity,
    NormalizedGraphMutation,
    UpdateEntityArgs,
    UpdateNodeArgs,
    UpdateRelationshipArgs,
    graph_failure,
)

GRAPH_MUTATION_TOOL = "graph_mutation"

LEGACY_GRAPH_TOOLS: dict[str, tuple[str, str]] = {
    "create_entity": ("create_entity", "entity"),
    "create_node": ("create_entity", "node"),
    "update_entity": ("update_entity", "entity"),
    "update_node": ("update_entity", "node"),
    "create_relationship": ("create_relationship", "relationship"),
    "create_edge": ("create_relationship", "edge"),
    "update_relationship": ("update_relationship", "relationship"),
    "update_edge": ("update_relationship", "edge"),
}

GRAPH_TOOL_NAMES = frozenset({GRAPH_MUTATION_TOOL, *LEGACY_GRAPH_TOOLS})

_ACTIONS = {"create", "update", "delete"}
_TARGETS = {"entity", "node", "relationship", "edge"}

_graph_mutation_adapter: TypeAdapter[GraphMutationArgs] = TypeAdapter(GraphMutationArgs)


def is_graph_tool(tool_name: str) -> bool:
    return tool_name in GRAPH_TOOL_NAMES


def _validation_failure(e: ValidationError) -> GraphMutationFailure:
    errors = [
        {"path": "/" + "/".join(str(p) for p in err["loc"]), "message": err["msg"]}
        for err in e.errors()
    ]
    message = "; ".join(f"{err['path']}: {err['message']}" for err in errors)
    return graph_failure(
        GraphErrorCode.SCHEMA_VALIDATION_FAILED,
        f"Invalid tool arguments: {message}",
        {"errors": errors},
    )


def _kind_for(operation: str) -> str:
    return "entity" if operation.endswith("_entity") else "relationship"


def _normalize_legacy(tool_name: str, args: dict[str, Any]) -> NormalizedGraphMutation:
    operation, noun = LEGACY_GRAPH_TOOLS[tool_name]
    if operation == "create_entity":
        parsed = CreateEntityArgs.model_validate(args)
    elif operation == "update_entity" and noun == "node":
        node = UpdateNodeArgs.model_validate(args)
        parsed = UpdateEntityArgs(
            entity_name=node.node_name,
            entity_type=node.node_type,
            updates=node.updates,
            citations=node.citations,
        )
    elif operation == "update_entity":
        parsed = UpdateEntityArgs.model_validate(args)
    elif operation == "create_relationship":
        parsed = CreateRelationshipArgs.model_validate(args)
    else:
        parsed = UpdateRelationshipArgs.model_validate(args)
    return NormalizedGraphMutation(
        operation=operation, noun=noun, kind=_kind_for(operation), args=parsed
    )


def _normalize_unified(args: dict[str, Any]) -> NormalizedGraphMutation | GraphMutationFailure:
    if args.get("action") not in _ACTIONS or args.get("target") not in _TARGETS:
        return graph_failure(GraphErrorCode.INVALID_TYPE, "Unsupported graph mutation target.")

    parsed = _graph_mutation_adapter.validate_python(args)
    if isinstance(parsed, (GraphDeleteEntity, GraphDeleteRelationship)):
        return graph_failure(GraphErrorCode.NOT_IMPLEMENTED, "Graph deletion is not available yet.")

    noun = parsed.target
    # Strip the tag fields so executors see the plain argument models
    if isinstance(parsed, GraphCreateEntity):
        operation = "create_entity"
        canonical = CreateEntityArgs.model_validate(parsed.model_dump(exclude={"action", "target"}))
    elif isinstance(parsed, GraphUpdateEntity):
        operation = "update_entity"
        canonical = UpdateEntityArgs.model_validate(parsed.model_dump(exclude={"action", "target"}))
    elif isinstance(parsed, GraphCreateRelationship):
        operation = "create_relationship"
        canonical = CreateRelationshipArgs.model_validate(parsed.model_dump(exclude={"action", "target"}))
    else:
        operation = "update_relationship"
        canonical = UpdateRelationshipArgs.model_validate(parsed.model_dump(exclude={"action", "target"}))

    return NormalizedGraphMutation(
        operation=operation, noun=noun, kind=_kind_for(operation), args=canonical
    )


def normalize_graph_tool_call(
    tool_name: str, args: dict[str, Any] | None
) -> NormalizedGraphMutation | GraphMutationFailure:
    """Normalize a graph tool call, or describe why it can't be.

    Failures: INVALID_TYPE for unknown tools/targets, NOT_IMPLEMENTED for delete,
    SCHEMA_VALIDATION_FAILED for arguments that break the tool contract.
    """
    if not isinstance(args, dict):
        return graph_failure(GraphErrorCode.SCHEMA_VALIDATION_FAILED, "Tool arguments must be an object")
    try:
        if tool_name == GRAPH_MUTATION_TOOL:
            return _normalize_unified(args)
        if tool_name in LEGACY_GRAPH_TOOLS:
            return _normalize_legacy(tool_name, args)
    except ValidationError as e:
        return _validation_failure(e)
    return graph_failure(GraphErrorCode.INVALID_TYPE, f"Unknown graph tool: {tool_name}")
