"""Project type registry: template defaults, override merge and payload validation."""

from __future__ import annotations

from typing import Any

from pydantic import ValidationError

from app.core.json_schema import SchemaCheck, check_schema_definition, validate_against_schema
from app.core.project_templates import get_project_template
from app.core.schemas_graph import (
    ProjectTypeRegistryOverride,
    ProjectTypeRegistryResolved,
    RegistryOverrideEntry,
    RelationshipTypeDef,
    TypeDef,
)


def humanize_type(type_name: str) -> str:
    """magic_system -> Magic System."""
    return " ".join(part[:1].upper() + part[1:] for part in type_name.split("_") if part)


def _template_entity_def(raw: dict[str, Any]) -> TypeDef:
    data = dict(raw)
    data.setdefault("displayName", humanize_type(data["type"]))
    data.setdefault("riskLevel", "low")
    return TypeDef.model_validate(data)


def _template_relationship_def(raw: dict[str, Any]) -> RelationshipTypeDef:
    data = dict(raw)
    data.setdefault("displayName", humanize_type(data["type"]))
    data.setdefault("riskLevel", "low")
    return RelationshipTypeDef.model_validate(data)


def get_default_registry_for_template(template_id: str | None) -> ProjectTypeRegistryResolved:
    """Resolve a template's built-in types with no override applied."""
    template = get_project_template(template_id)
    return ProjectTypeRegistryResolved(
        entity_types={t["type"]: _template_entity_def(t) for t in template["entity_types"]},
        relationship_types={
            t["type"]: _template_relationship_def(t) for t in template["relationship_types"]
        },
    )


def _merge_entry(base: RelationshipTypeDef | None, entry: RegistryOverrideEntry, cls):
    """Apply one override entry. approval always comes from the template."""
    updates: dict[str, Any] = {}
    if entry.display_name:
        updates["display_name"] = entry.display_name
    if entry.risk_level:
        updates["risk_level"] = entry.risk_level
    if entry.properties_schema is not None:
        updates["properties_schema"] = entry.properties_schema
    if cls is TypeDef:
        if entry.icon is not None:
            updates["icon"] = entry.icon
        if entry.color is not None:
            updates["color"] = entry.color

    if base is None:
        return cls(
            type=entry.type,
            display_name=updates.pop("display_name", None) or humanize_type(entry.type),
            **updates,
        )
    return base.model_copy(update=updates)


def resolve_registry(
    template_id: str | None,
    override: ProjectTypeRegistryOverride | dict[str, Any] | None,
) -> ProjectTypeRegistryResolved:
    """Merge the project override onto the template defaults.

    Unknown override types become registry extensions with no approval config.
    """
    defaults = get_default_registry_for_template(template_id)
    if override is None:
        return defaults
    if isinstance(override, dict):
        override = ProjectTypeRegistryOverride.model_validate(override)

    entity_types = dict(defaults.entity_types)
    for entry in override.entity_types:
        if not entry.type:
            continue
        entity_types[entry.type] = _merge_entry(entity_types.get(entry.type), entry, TypeDef)

    relationship_types = dict(defaults.relationship_types)
    for entry in override.relationship_types:
        if not entry.type:
            continue
        relationship_types[entry.type] = _merge_entry(
            relationship_types.get(entry.type), entry, RelationshipTypeDef
        )

    return ProjectTypeRegistryResolved(
        entity_types=entity_types,
        relationship_types=relationship_types,
    )


def validate_registry_override(override: ProjectTypeRegistryOverride | dict[str, Any]) -> str | None:
    """Validate an override document. Returns an error message, or None when valid."""
    if isinstance(override, dict):
        try:
            override = ProjectTypeRegistryOverride.model_validate(override)
        except ValidationError as e:
            return f"Registry document is malformed: {e.errors()[0]['msg']}"

    for label, entries in (
        ("Entity", override.entity_types),
        ("Relationship", override.relationship_types),
    ):
        seen: set[str] = set()
        for entry in entries:
            type_name = (entry.type or "").strip()
            if not type_name:
                return f"{label} type is required"
            if not (entry.display_name or "").strip():
                return f'{label} type "{type_name}" must have a display name'
            if type_name in seen:
                return f'Duplicate {label.lower()} type "{type_name}"'
            seen.add(type_name)

            if entry.properties_schema is None:
                continue
            if not isinstance(entry.properties_schema, dict):
                return f'{label} type "{type_name}" schema must be an object'
            problems = check_schema_definition(entry.properties_schema)
            if problems:
                return f'{label} type "{type_name}" schema is invalid: {"; ".join(problems)}'

    return None


def _validate_object(
    schema: dict[str, Any] | None, value: Any, label: str
) -> SchemaCheck:
    if value is None:
        value = {}
    if not isinstance(value, dict):
        return SchemaCheck(ok=False, message=f"{label} must be an object")
    if not schema:
        return SchemaCheck(ok=True, value=value)
    return validate_against_schema(schema, value)


def validate_entity_properties(type_def: TypeDef, properties: Any) -> SchemaCheck:
    """Validate entity properties against the type's schema (if any)."""
    return _validate_object(type_def.properties_schema, properties, "Entity properties")


def validate_relationship_metadata(type_def: RelationshipTypeDef, metadata: Any) -> SchemaCheck:
    """Validate relationship metadata against the type's schema (if any)."""
    return _validate_object(type_def.properties_schema, metadata, "Relationship metadata")
