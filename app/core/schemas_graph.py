"""Pydantic models for the project type registry and the knowledge graph.

Registry documents travel in camelCase (displayName, riskLevel) and are
exposed in Python as snake_case attributes.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

RiskLevel = Literal["low", "high", "core"]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Type registry
# =============================================================================


class ApprovalConfig(_CamelModel):
    """Per-type approval policy. Only templates define it."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    create_requires_approval: bool = False
    update_always_requires_approval: bool = False
    identity_fields: tuple[str, ...] = ()


class RelationshipTypeDef(_CamelModel):
    """A relationship type as resolved for one project."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    type: str
    display_name: str
    risk_level: RiskLevel = "low"
    properties_schema: dict[str, Any] | None = Field(default=None, alias="schema")
    approval: ApprovalConfig | None = None


class TypeDef(RelationshipTypeDef):
    """An entity type as resolved for one project."""

    icon: str | None = None
    color: str | None = None


class ProjectTypeRegistryResolved(BaseModel):
    """Template defaults merged with the project override. Never persisted."""

    model_config = ConfigDict(frozen=True)

    entity_types: dict[str, TypeDef] = Field(default_factory=dict)
    relationship_types: dict[str, RelationshipTypeDef] = Field(default_factory=dict)

    def entity_type(self, type_name: str | None) -> TypeDef | None:
        if not type_name:
            return None
        return self.entity_types.get(type_name)

    def relationship_type(self, type_name: str | None) -> RelationshipTypeDef | None:
        if not type_name:
            return None
        return self.relationship_types.get(type_name)


class RegistryOverrideEntry(_CamelModel):
    """One entry of a per-project override document, as edited by users."""

    type: str | None = None
    display_name: str | None = None
    risk_level: RiskLevel | None = None
    properties_schema: Any = Field(default=None, alias="schema")
    icon: str | None = None
    color: str | None = None


class ProjectTypeRegistryOverride(_CamelModel):
    """Persisted override document for one project."""

    entity_types: list[RegistryOverrideEntry] = Field(default_factory=list)
    relationship_types: list[RegistryOverrideEntry] = Field(default_factory=list)
    locked: bool = False
    locked_at: datetime | None = None
    locked_by_user_id: str | None = None
    revision: int = 0


# =============================================================================
# Graph records
# =============================================================================


class Entity(BaseModel):
    """A node of the project knowledge graph."""

    id: str
    project_id: str
    type: str
    name: str
    canonical_name: str
    aliases: list[str] = Field(default_factory=list)
    properties: dict[str, Any] = Field(default_factory=dict)
    notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class Relationship(BaseModel):
    """A directed (or bidirectional) typed edge between two entities."""

    id: str
    project_id: str
    source_id: str
    target_id: str
    type: str
    bidirectional: bool = False
    strength: float | None = Field(default=None, ge=0, le=1)
    notes: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None


class ProjectRole(str, Enum):
    """Membership roles. Viewers are read-only."""

    OWNER = "owner"
    EDITOR = "editor"
    VIEWER = "viewer"


class ActivityRecord(BaseModel):
    """Activity-log entry emitted after graph mutations and tool executions."""

    project_id: str
    actor_type: Literal["user", "ai", "system"] = "ai"
    actor_user_id: str | None = None
    actor_name: str | None = None
    action: str
    summary: str
    metadata: dict[str, Any] = Field(default_factory=dict)
