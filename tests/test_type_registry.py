"""Tests for registry resolution, override validation and payload validation."""

import pytest

from app.core.graph_errors import GraphErrorCode, RegistryError, describe_graph_error, parse_graph_error
from app.core.project_templates import list_template_ids
from app.core.schemas_graph import ProjectTypeRegistryOverride
from app.core.type_registry import (
    get_default_registry_for_template,
    humanize_type,
    resolve_registry,
    validate_entity_properties,
    validate_registry_override,
    validate_relationship_metadata,
)
from app.db.type_registry import (
    load_resolved_registry,
    lock_registry,
    reset_registry,
    unlock_registry,
    upsert_registry,
)
from tests.conftest import OWNER_ID, PROJECT_ID

AGE_SCHEMA = {
    "type": "object",
    "properties": {"age": {"type": "integer", "minimum": 0}},
    "required": ["age"],
}


def _override(**fields) -> ProjectTypeRegistryOverride:
    return ProjectTypeRegistryOverride.model_validate(fields)


class TestResolution:
    def test_unknown_template_falls_back_to_writer(self):
        assert get_default_registry_for_template("nope") == get_default_registry_for_template("writer")

    def test_every_template_resolves(self):
        for template_id in list_template_ids():
            registry = get_default_registry_for_template(template_id)
            for name, type_def in registry.entity_types.items():
                assert type_def.type == name
                assert type_def.display_name

    def test_override_changes_display_risk_and_schema(self):
        registry = resolve_registry(
            "writer",
            _override(entityTypes=[
                {"type": "character", "displayName": "Person", "riskLevel": "low", "schema": AGE_SCHEMA}
            ]),
        )
        character = registry.entity_type("character")
        assert character.display_name == "Person"
        assert character.risk_level == "low"
        assert character.properties_schema == AGE_SCHEMA
        # Approval config always comes from the template
        assert character.approval.identity_fields == ("name", "properties")
        assert character.icon == "User"

    def test_unknown_override_type_becomes_extension(self):
        registry = resolve_registry(
            "writer", _override(relationshipTypes=[{"type": "mentor_of", "displayName": "Mentor Of"}])
        )
        mentor = registry.relationship_type("mentor_of")
        assert mentor.risk_level == "low"
        assert mentor.approval is None
        assert "knows" in registry.relationship_types

    def test_resolution_is_deterministic(self):
        override = _override(entityTypes=[{"type": "spell", "displayName": "Spell", "riskLevel": "high"}])
        assert resolve_registry("writer", override) == resolve_registry("writer", override)

    def test_humanize_type(self):
        assert humanize_type("magic_system") == "Magic System"


class TestOverrideValidation:
    def test_valid_override(self):
        assert validate_registry_override(
            _override(entityTypes=[{"type": "spell", "displayName": "Spell", "schema": AGE_SCHEMA}])
        ) is None

    def test_missing_type(self):
        assert validate_registry_override({"entityTypes": [{"displayName": "Spell"}]}) == "Entity type is required"

    def test_missing_display_name(self):
        assert validate_registry_override({"relationshipTypes": [{"type": "mentor_of"}]}) == (
            'Relationship type "mentor_of" must have a display name'
        )

    def test_duplicate_type(self):
        message = validate_registry_override({
            "entityTypes": [
                {"type": "spell", "displayName": "Spell"},
                {"type": "spell", "displayName": "Spell Again"},
            ]
        })
        assert message == 'Duplicate entity type "spell"'

    def test_schema_must_be_object(self):
        message = validate_registry_override(
            {"entityTypes": [{"type": "spell", "displayName": "Spell", "schema": ["not", "a", "schema"]}]}
        )
        assert message == 'Entity type "spell" schema must be an object'

    def test_invalid_schema_is_rejected(self):
        message = validate_registry_override(
            {"entityTypes": [{"type": "spell", "displayName": "Spell", "schema": {"type": "banana"}}]}
        )
        assert message.startswith('Entity type "spell" schema is invalid:')


class TestPayloadValidation:
    def test_no_schema_accepts_any_object(self):
        type_def = get_default_registry_for_template("writer").entity_type("item")
        check = validate_entity_properties(type_def, {"anything": [1, 2]})
        assert check.ok
        assert check.value == {"anything": [1, 2]}

    def test_missing_properties_become_empty_object(self):
        type_def = get_default_registry_for_template("writer").entity_type("item")
        assert validate_entity_properties(type_def, None).value == {}

    def test_non_object_properties_rejected(self):
        type_def = get_default_registry_for_template("writer").entity_type("item")
        check = validate_entity_properties(type_def, "sharp")
        assert not check.ok
        assert check.message == "Entity properties must be an object"

    def test_schema_errors_are_reported_with_paths(self):
        registry = resolve_registry(
            "writer", _override(entityTypes=[{"type": "character", "displayName": "Character", "schema": AGE_SCHEMA}])
        )
        check = validate_entity_properties(registry.entity_type("character"), {"age": -3})
        assert not check.ok
        assert check.errors[0]["path"] == "/age"

    def test_no_coercion(self):
        registry = resolve_registry(
            "writer", _override(relationshipTypes=[{"type": "knows", "displayName": "Knows", "schema": AGE_SCHEMA}])
        )
        check = validate_relationship_metadata(registry.relationship_type("knows"), {"age": "12"})
        assert not check.ok


class TestGraphErrors:
    def test_registry_error_string_protocol(self):
        err = RegistryError(GraphErrorCode.REGISTRY_LOCKED, "Registry is locked")
        assert str(err) == "REGISTRY_LOCKED: Registry is locked"
        assert parse_graph_error(str(err)) == (GraphErrorCode.REGISTRY_LOCKED, "Registry is locked")

    def test_unknown_prefix_is_passed_through(self):
        assert parse_graph_error("SOMETHING: else") == (None, "SOMETHING: else")
        assert describe_graph_error("plain failure") == "plain failure"

    def test_describe_known_code(self):
        assert describe_graph_error("INVALID_TYPE: spaceship").startswith("That type isn't defined")


class TestRegistryService:
    @pytest.mark.asyncio
    async def test_upsert_bumps_revision(self, store):
        override = _override(entityTypes=[{"type": "spell", "displayName": "Spell"}])
        await upsert_registry(store, PROJECT_ID, override)
        registry = await upsert_registry(store, PROJECT_ID, override)
        assert "spell" in registry.entity_types
        assert store.overrides[PROJECT_ID].revision == 2

    @pytest.mark.asyncio
    async def test_upsert_invalid_override(self, store):
        with pytest.raises(RegistryError) as exc_info:
            await upsert_registry(store, PROJECT_ID, _override(entityTypes=[{"type": "spell"}]))
        assert exc_info.value.code == GraphErrorCode.INVALID_REGISTRY

    @pytest.mark.asyncio
    async def test_locked_registry_rejects_edits(self, store):
        await lock_registry(store, PROJECT_ID, OWNER_ID)
        with pytest.raises(RegistryError) as exc_info:
            await upsert_registry(store, PROJECT_ID, _override())
        assert str(exc_info.value).startswith("REGISTRY_LOCKED")
        with pytest.raises(RegistryError):
            await reset_registry(store, PROJECT_ID)

        await unlock_registry(store, PROJECT_ID)
        await reset_registry(store, PROJECT_ID)
        assert PROJECT_ID not in store.overrides

    @pytest.mark.asyncio
    async def test_lock_fails_when_graph_uses_unknown_types(self, store):
        store.add_entity(PROJECT_ID, "spaceship", "Nomad")
        with pytest.raises(RegistryError) as exc_info:
            await lock_registry(store, PROJECT_ID, OWNER_ID)
        err = exc_info.value
        assert err.code == GraphErrorCode.LOCK_FAILED_UNKNOWN_TYPES
        assert "spaceship" in err.message
        assert err.details["entity_types"] == ["spaceship"]

    @pytest.mark.asyncio
    async def test_lock_records_who_and_when(self, store):
        locked = await lock_registry(store, PROJECT_ID, OWNER_ID)
        assert locked.locked is True
        assert locked.locked_by_user_id == OWNER_ID
        assert locked.locked_at is not None

    @pytest.mark.asyncio
    async def test_missing_project_resolves_to_none(self, store):
        assert await load_resolved_registry(store, "missing") is None
