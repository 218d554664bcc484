"""Tool argument contracts for world-graph tools and graph mutation results.

Arguments arrive from the model in camelCase (entityName, sourceName).
"""

from __future__ import annotations

from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.core.graph_errors import GraphErrorCode

GraphOperation = Literal["create_entity", "update_entity", "create_relationship", "update_relationship"]
GraphNoun = Literal["entity", "node", "relationship", "edge"]
MutationKind = Literal["entity", "relationship"]


class _ToolArgs(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# =============================================================================
# Entity / node arguments
# =============================================================================


class EntityUpdates(_ToolArgs):
    name: str | None = None
    aliases: list[str] | None = None
    notes: str | None = None
    properties: dict[str, Any] | None = None


class CreateEntityArgs(_ToolArgs):
    type: str
    name: str = Field(min_length=1)
    aliases: list[str] | None = None
    notes: str | None = None
    properties: Any = None
    citations: list[dict[str, Any]] | None = None


class UpdateEntityArgs(_ToolArgs):
    entity_name: str = Field(min_length=1)
    entity_type: str | None = None
    updates: EntityUpdates
    citations: list[dict[str, Any]] | None = None


class UpdateNodeArgs(_ToolArgs):
    node_name: str = Field(min_length=1)
    node_type: str | None = None
    updates: EntityUpdates
    citations: list[dict[str, Any]] | None = None


# =============================================================================
# Relationship / edge arguments
# =============================================================================


class RelationshipUpdates(_ToolArgs):
    notes: str | None = None
    strength: float | None = Field(default=None, ge=0, le=1)
    bidirectional: bool | None = None
    metadata: dict[str, Any] | None = None


class CreateRelationshipArgs(_ToolArgs):
    type: str
    source_name: str = Field(min_length=1)
    target_name: str = Field(min_length=1)
    bidirectional: bool | None = None
    notes: str | None = None
    strength: float | None = Field(default=None, ge=0, le=1)
    metadata: Any = None
    citations: list[dict[str, Any]] | None = None


class UpdateRelationshipArgs(_ToolArgs):
    type: str
    source_name: str = Field(min_length=1)
    target_name: str = Field(min_length=1)
    updates: RelationshipUpdates
    citations: list[dict[str, Any]] | None = None


# =============================================================================
# graph_mutation: tagged union over action x target
# =============================================================================


class GraphCreateEntity(CreateEntityArgs):
    action: Literal["create"]
    target: Literal["entity", "node"]


class GraphUpdateEntity(UpdateEntityArgs):
    action: Literal["update"]
    target: Literal["entity", "node"]


class GraphDeleteEntity(_ToolArgs):
    action: Literal["delete"]
    target: Literal["entity", "node"]
    entity_name: str
    reason: str | None = None


class GraphCreateRelationship(CreateRelationshipArgs):
    action: Literal["create"]
    target: Literal["relationship", "edge"]


class GraphUpdateRelationship(UpdateRelationshipArgs):
    action: Literal["update"]
    target: Literal["relationship", "edge"]


class GraphDeleteRelationship(_ToolArgs):
    action: Literal["delete"]
    target: Literal["relationship", "edge"]
    type: str
    source_name: str
    target_name: str
    reason: str | None = None


GraphMutationArgs = Union[
    GraphCreateEntity,
    GraphUpdateEntity,
    GraphDeleteEntity,
    GraphCreateRelationship,
    GraphUpdateRelationship,
    GraphDeleteRelationship,
]


class NormalizedGraphMutation(BaseModel):
    """Any graph tool shape reduced to one of four operations."""

    operation: GraphOperation
    noun: GraphNoun
    kind: MutationKind
    args: Union[CreateEntityArgs, UpdateEntityArgs, CreateRelationshipArgs, UpdateRelationshipArgs]


class MutationActor(BaseModel):
    """Who a mutation is attributed to. The user id drives the access check."""

    user_id: str | None = None
    actor_type: Literal["user", "ai", "system"] = "ai"
    name: str | None = None


# =============================================================================
# Results
# =============================================================================


class GraphMutationSuccess(BaseModel):
    success: Literal[True] = True
    target_id: str
    message: str
    kind: MutationKind

    def to_tool_result(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class GraphMutationFailure(BaseModel):
    success: Literal[False] = False
    code: GraphErrorCode
    message: str
    details: Any = None

    def to_tool_result(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


GraphMutationResult = Union[GraphMutationSuccess, GraphMutationFailure]


def graph_failure(code: GraphErrorCode, message: str, details: Any = None) -> GraphMutationFailure:
    return GraphMutationFailure(code=code, message=message, details=details)
