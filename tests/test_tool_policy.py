"""Tests for tool policy classification.

Covers:
- Static tool tables (auto, always-approve, unknown)
- Graph tools against the writer registry: risk, identity, strength, bidirectional
- Fail-closed behaviour for malformed calls, delete and missing registries
"""

import pytest

from app.core.schemas_graph import ProjectTypeRegistryOverride
from app.core.tool_policy import classify_tool_call, get_danger, needs_tool_approval
from app.core.type_registry import get_default_registry_for_template, resolve_registry


@pytest.fixture
def registry():
    return get_default_registry_for_template("writer")


class TestStaticTools:
    @pytest.mark.parametrize("tool_name", ["search_context", "read_document", "get_entity"])
    def test_read_only_tools_auto_execute(self, registry, tool_name):
        decision = classify_tool_call(registry, tool_name, {})
        assert decision.auto_execute is True
        assert decision.requires_approval is False
        assert decision.danger == "safe"

    def test_ask_question_needs_input(self, registry):
        decision = classify_tool_call(registry, "ask_question", {"question": "Which ending?"})
        assert decision.requires_approval is True
        assert decision.approval_type == "input"

    def test_write_content_short_is_safe_apply(self, registry):
        decision = classify_tool_call(registry, "write_content", {"content": "A line."})
        assert decision.requires_approval is True
        assert decision.approval_type == "apply"
        assert decision.danger == "safe"

    def test_write_content_long_or_append_is_costly(self):
        assert get_danger("write_content", {"content": "x" * 801}) == "costly"
        assert get_danger("write_content", {"content": "x", "operation": "append_document"}) == "costly"

    def test_unknown_tool_fails_closed(self, registry):
        decision = classify_tool_call(registry, "drop_everything", {})
        assert decision.requires_approval is True
        assert decision.approval_reasons == ["mutation_unresolved"]


class TestEntityPolicy:
    def test_core_entity_update_notes_only_requires_approval(self, registry):
        decision = classify_tool_call(
            registry,
            "update_entity",
            {"entityName": "Aria", "entityType": "character", "updates": {"notes": "Scar on left hand"}},
        )
        assert decision.requires_approval is True
        assert decision.risk_level == "core"
        assert "risk_core" in decision.approval_reasons
        assert "identity_change" not in decision.approval_reasons

    def test_low_risk_item_create_auto_executes(self, registry):
        decision = classify_tool_call(registry, "create_entity", {"type": "item", "name": "Silver Key"})
        assert decision.auto_execute is True
        assert decision.approval_reasons == []
        assert decision.danger == "destructive"

    def test_character_rename_is_identity_change(self, registry):
        decision = classify_tool_call(
            registry,
            "update_entity",
            {"entityName": "Aria", "entityType": "character", "updates": {"name": "Arya"}},
        )
        assert decision.approval_reasons == ["risk_core", "identity_change"]

    def test_unknown_entity_type_requires_approval(self, registry):
        decision = classify_tool_call(registry, "create_entity", {"type": "spaceship", "name": "Nomad"})
        assert decision.requires_approval is True
        assert decision.approval_reasons == ["invalid_type"]

    def test_high_risk_override_gates_create_but_not_update(self):
        override = ProjectTypeRegistryOverride.model_validate(
            {"entityTypes": [{"type": "location", "displayName": "Location", "riskLevel": "high"}]}
        )
        registry = resolve_registry("writer", override)
        create = classify_tool_call(registry, "create_entity", {"type": "location", "name": "Harbor"})
        update = classify_tool_call(
            registry,
            "update_entity",
            {"entityName": "Harbor", "entityType": "location", "updates": {"notes": "foggy"}},
        )
        assert create.approval_reasons == ["risk_high"]
        assert update.auto_execute is True

    def test_update_without_type_uses_resolved_type(self, registry):
        args = {"entityName": "Silver Key", "updates": {"notes": "tarnished"}}
        unresolved = classify_tool_call(registry, "update_entity", args)
        resolved = classify_tool_call(registry, "update_entity", args, resolved_entity_type="item")
        assert unresolved.approval_reasons == ["invalid_type"]
        assert resolved.auto_execute is True

    def test_update_node_alias_shape(self, registry):
        decision = classify_tool_call(
            registry,
            "update_node",
            {"nodeName": "Silver Key", "nodeType": "item", "updates": {"notes": "tarnished"}},
        )
        assert decision.auto_execute is True


class TestRelationshipPolicy:
    def test_low_risk_relationship_create_auto_executes(self, registry):
        decision = classify_tool_call(
            registry, "create_relationship", {"type": "knows", "sourceName": "A", "targetName": "B"}
        )
        assert decision.auto_execute is True

    def test_core_relationship_create_requires_approval(self, registry):
        decision = classify_tool_call(
            registry, "create_relationship", {"type": "killed", "sourceName": "A", "targetName": "B"}
        )
        assert decision.approval_reasons == ["risk_core"]

    def test_weak_strength_update_requires_approval(self, registry):
        args = {"type": "knows", "sourceName": "A", "targetName": "B", "updates": {"strength": 0.1}}
        assert classify_tool_call(registry, "update_relationship", args).approval_reasons == [
            "strength_sensitive"
        ]
        assert classify_tool_call(registry, "update_relationship", args, strength_threshold=0.05).auto_execute

    def test_bidirectional_change_requires_approval(self, registry):
        decision = classify_tool_call(
            registry,
            "update_edge",
            {"type": "knows", "sourceName": "A", "targetName": "B", "updates": {"bidirectional": True}},
        )
        assert decision.approval_reasons == ["bidirectional_change"]


class TestFailClosed:
    def test_graph_mutation_delete_requires_approval(self, registry):
        decision = classify_tool_call(
            registry, "graph_mutation", {"action": "delete", "target": "entity", "entityName": "Aria"}
        )
        assert decision.requires_approval is True
        assert decision.approval_reasons == ["mutation_unresolved"]

    def test_malformed_args_require_approval(self, registry):
        decision = classify_tool_call(registry, "create_entity", {"type": "item"})
        assert decision.approval_reasons == ["mutation_unresolved"]

    def test_missing_registry_requires_approval(self):
        decision = classify_tool_call(None, "create_entity", {"type": "item", "name": "Key"})
        assert decision.approval_reasons == ["registry_unknown"]

    def test_unified_shape_matches_legacy_shape(self, registry):
        legacy = classify_tool_call(registry, "create_entity", {"type": "faction", "name": "Guild"})
        unified = classify_tool_call(
            registry,
            "graph_mutation",
            {"action": "create", "target": "node", "type": "faction", "name": "Guild"},
        )
        assert legacy.approval_reasons == unified.approval_reasons == ["risk_core"]


class TestMonotonicity:
    """Raising a type's risk level never turns an approval into an auto-execute."""

    @pytest.mark.parametrize(
        "args",
        [
            {"entityName": "Harbor", "entityType": "location", "updates": {"notes": "n"}},
            {"entityName": "Harbor", "entityType": "location", "updates": {"name": "Port"}},
        ],
    )
    def test_risk_escalation_is_monotonic(self, args):
        previous_required = False
        for level in ("low", "high", "core"):
            override = ProjectTypeRegistryOverride.model_validate(
                {"entityTypes": [{"type": "location", "displayName": "Location", "riskLevel": level}]}
            )
            registry = resolve_registry("writer", override)
            required = needs_tool_approval(registry, "update_entity", args)
            assert required or not previous_required
            previous_required = required
        assert previous_required is True
