"""Tests for tool normalization, dispatch, read-only tools and approval previews."""

import pytest

from app.chains.graph_tools import (
    GRAPH_TOOL_NAMES,
    GraphMutationExecutor,
    ToolExecutionContext,
    build_approval_preview,
    execute_tool,
    get_tool_definitions,
    has_server_handler,
    normalize_graph_tool_call,
)
from app.core.graph_errors import GraphErrorCode
from app.core.retrieval import RetrievalFusionEngine
from app.core.schemas_rag import LexicalHit, LexicalHits
from app.core.schemas_tools import GraphMutationFailure, MutationActor
from tests.conftest import EDITOR_ID, PROJECT_ID
from tests.fakes.fake_providers import FakeLexicalSource


@pytest.fixture
def ctx(store, settings):
    lexical = FakeLexicalSource(LexicalHits(entities=[LexicalHit(id="e9", type="character", name="Aria", score=3.0)]))
    return ToolExecutionContext(
        project_id=PROJECT_ID,
        actor=MutationActor(user_id=EDITOR_ID),
        store=store,
        engine=RetrievalFusionEngine(lexical_source=lexical, settings=settings),
        executor=GraphMutationExecutor(store),
    )


class TestNormalize:
    def test_node_aliases_map_to_entity_operations(self):
        normalized = normalize_graph_tool_call(
            "update_node", {"nodeName": "Aria", "nodeType": "character", "updates": {"notes": "n"}}
        )
        assert normalized.operation == "update_entity"
        assert normalized.noun == "node"
        assert normalized.args.entity_name == "Aria"
        assert normalized.args.entity_type == "character"

    def test_unified_tool_strips_tags(self):
        normalized = normalize_graph_tool_call(
            "graph_mutation",
            {"action": "update", "target": "edge", "type": "knows", "sourceName": "A", "targetName": "B",
             "updates": {"strength": 0.5}},
        )
        assert normalized.operation == "update_relationship"
        assert normalized.kind == "relationship"
        assert normalized.args.updates.strength == 0.5

    def test_contract_violation(self):
        failure = normalize_graph_tool_call(
            "update_relationship",
            {"type": "knows", "sourceName": "A", "targetName": "B", "updates": {"strength": 4}},
        )
        assert isinstance(failure, GraphMutationFailure)
        assert failure.code == GraphErrorCode.SCHEMA_VALIDATION_FAILED
        assert failure.details["errors"][0]["path"] == "/updates/strength"

    def test_non_object_arguments(self):
        failure = normalize_graph_tool_call("create_entity", "Aria")
        assert failure.message == "Tool arguments must be an object"

    def test_unknown_tool(self):
        assert normalize_graph_tool_call("destroy_world", {}).code == GraphErrorCode.INVALID_TYPE


class TestDefinitions:
    def test_every_graph_tool_name_has_a_definition_or_alias(self):
        names = {d["name"] for d in get_tool_definitions()}
        assert {"search_context", "read_document", "get_entity", "graph_mutation"} <= names
        assert {"write_content", "ask_question"} <= names
        assert names & GRAPH_TOOL_NAMES

    def test_definitions_have_object_schemas(self):
        for definition in get_tool_definitions():
            assert definition["input_schema"]["type"] == "object"

    def test_server_handlers(self):
        assert has_server_handler("search_context")
        assert has_server_handler("create_edge")
        assert not has_server_handler("write_content")


class TestDispatch:
    @pytest.mark.asyncio
    async def test_unknown_tool(self, ctx):
        assert await execute_tool(ctx, "summon_dragon", {}) == {"error": "Unknown tool: summon_dragon"}

    @pytest.mark.asyncio
    async def test_graph_tool_routes_to_executor(self, ctx, store):
        result = await execute_tool(ctx, "create_node", {"type": "location", "name": "Vell"})
        assert result["success"] is True
        assert result["kind"] == "entity"
        assert [e.name for e in store.entities.values()] == ["Vell"]

    @pytest.mark.asyncio
    async def test_store_exception_becomes_error_result(self, ctx, store):
        async def broken(*args, **kwargs):
            raise RuntimeError("database is down")

        store.insert_entity = broken
        result = await execute_tool(ctx, "create_entity", {"type": "item", "name": "Rope"})
        assert result == {"success": False, "error": "database is down"}


class TestReadOnlyTools:
    @pytest.mark.asyncio
    async def test_search_context(self, ctx):
        result = await execute_tool(ctx, "search_context", {"query": "Aria", "scope": "entities", "limit": 99})
        assert result["scope"] == "entities"
        assert [e["name"] for e in result["entities"]] == ["Aria"]
        assert result["documents"] == []

    @pytest.mark.asyncio
    async def test_search_limit_cannot_widen_result_cap(self, ctx, settings):
        hits = LexicalHits(
            entities=[LexicalHit(id=f"e{i}", type="character", name=f"Sailor {i}", score=30.0 - i) for i in range(15)]
        )
        ctx.engine = RetrievalFusionEngine(lexical_source=FakeLexicalSource(hits), settings=settings)

        result = await execute_tool(ctx, "search_context", {"query": "sailor", "scope": "entities", "limit": 99})

        assert len(result["entities"]) == settings.RAG_RESULT_LIMIT

    @pytest.mark.asyncio
    async def test_search_requires_query(self, ctx):
        assert await execute_tool(ctx, "search_context", {"query": "  "}) == {"error": "query is required"}

    @pytest.mark.asyncio
    async def test_search_rejects_unknown_scope(self, ctx):
        result = await execute_tool(ctx, "search_context", {"query": "x", "scope": "galaxy"})
        assert result == {"error": "Unknown scope: galaxy"}

    @pytest.mark.asyncio
    async def test_read_document(self, ctx, store):
        store.documents["d1"] = {
            "id": "d1", "project_id": PROJECT_ID, "title": "Chapter 1", "type": "chapter",
            "content_text": "The storm broke.", "word_count": 3,
        }
        result = await execute_tool(ctx, "read_document", {"documentId": "d1"})
        assert result["content"] == "The storm broke."
        assert result["truncated"] is False
        assert result["wordCount"] == 3

    @pytest.mark.asyncio
    async def test_read_document_from_other_project(self, ctx, store):
        store.documents["d2"] = {"id": "d2", "project_id": "other", "content_text": "secret"}
        assert await execute_tool(ctx, "read_document", {"documentId": "d2"}) == {"error": "Access denied"}

    @pytest.mark.asyncio
    async def test_get_entity_by_name_with_relationships(self, ctx, store):
        aria = store.add_entity(PROJECT_ID, "character", "Aria")
        bran = store.add_entity(PROJECT_ID, "character", "Bran")
        store.add_relationship(PROJECT_ID, bran, aria, "knows", strength=0.6)

        result = await execute_tool(ctx, "get_entity", {"entityName": "aria"})

        assert result["id"] == aria.id
        assert result["relationships"][0]["direction"] == "incoming"
        assert result["relationships"][0]["otherEntityId"] == bran.id

    @pytest.mark.asyncio
    async def test_get_entity_requires_identifier(self, ctx):
        assert await execute_tool(ctx, "get_entity", {}) == {"error": "entityId or entityName is required"}


class TestApprovalPreview:
    @pytest.mark.asyncio
    async def test_update_preview_shows_before_and_after(self, store):
        store.add_entity(PROJECT_ID, "character", "Aria", properties={"age": 19})
        preview = await build_approval_preview(
            store, PROJECT_ID, "update_entity",
            {"entityName": "aria", "updates": {"name": "Aria Vance", "properties": {"age": 20}}},
        )
        assert preview.entity_type == "character"
        assert [(c.field, c.before, c.after) for c in preview.changes] == [
            ("name", "Aria", "Aria Vance"),
            ("properties.age", 19, 20),
        ]

    @pytest.mark.asyncio
    async def test_unresolved_target_becomes_note(self, store):
        preview = await build_approval_preview(
            store, PROJECT_ID, "update_entity", {"entityName": "Nobody", "updates": {"notes": "n"}}
        )
        assert preview.note == 'Entity "Nobody" not found'
        assert preview.changes[0].after == "n"

    @pytest.mark.asyncio
    async def test_relationship_update_preview(self, store):
        a = store.add_entity(PROJECT_ID, "character", "A")
        b = store.add_entity(PROJECT_ID, "character", "B")
        store.add_relationship(PROJECT_ID, a, b, "knows", strength=0.9)
        preview = await build_approval_preview(
            store, PROJECT_ID, "update_relationship",
            {"type": "knows", "sourceName": "A", "targetName": "B", "updates": {"strength": 0.1}},
        )
        assert [(c.field, c.before, c.after) for c in preview.changes] == [("strength", 0.9, 0.1)]

    @pytest.mark.asyncio
    async def test_relationship_create_preview_notes_missing_endpoint(self, store):
        preview = await build_approval_preview(
            store, PROJECT_ID, "create_relationship", {"type": "ally", "sourceName": "Ghost", "targetName": "Nobody"}
        )
        assert preview.note == 'Source entity "Ghost" not found'
        assert preview.source_name == "Ghost"

    @pytest.mark.asyncio
    async def test_relationship_create_preview_shows_resolved_names(self, store):
        store.add_entity(PROJECT_ID, "character", "Aria Vance", aliases=["Ari"])
        store.add_entity(PROJECT_ID, "character", "Bran")
        preview = await build_approval_preview(
            store, PROJECT_ID, "create_relationship",
            {"type": "ally", "sourceName": "ari", "targetName": "bran", "strength": 0.8},
        )
        assert preview.note is None
        assert (preview.source_name, preview.target_name) == ("Aria Vance", "Bran")
        assert [(c.field, c.after) for c in preview.changes] == [("strength", 0.8)]

    @pytest.mark.asyncio
    async def test_relationship_create_preview_notes_ambiguous_endpoint(self, store):
        store.add_entity(PROJECT_ID, "character", "Vell")
        store.add_entity(PROJECT_ID, "location", "Vell")
        store.add_entity(PROJECT_ID, "character", "Bran")
        preview = await build_approval_preview(
            store, PROJECT_ID, "create_relationship", {"type": "ally", "sourceName": "Bran", "targetName": "Vell"}
        )
        assert preview.note == 'Multiple entities named "Vell" found (character, location)'

    @pytest.mark.asyncio
    async def test_relationship_create_preview_notes_existing_relationship(self, store):
        a = store.add_entity(PROJECT_ID, "character", "A")
        b = store.add_entity(PROJECT_ID, "character", "B")
        store.add_relationship(PROJECT_ID, a, b, "ally")
        preview = await build_approval_preview(
            store, PROJECT_ID, "create_relationship", {"type": "ally", "sourceName": "A", "targetName": "B"}
        )
        assert preview.note == "Relationship A → ally → B already exists"

    @pytest.mark.asyncio
    async def test_non_graph_tool_preview(self, store):
        preview = await build_approval_preview(store, PROJECT_ID, "write_content", {"content": "x"})
        assert preview.kind == "other"
        assert preview.operation == "write_content"
