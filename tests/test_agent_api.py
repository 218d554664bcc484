"""Tests for the agent streaming, suggestion resolution and search endpoints."""

import json
from typing import List

from app.core.schemas_agent import KnowledgeSuggestion, SuggestionStatus, ToolCall
from app.core.schemas_rag import LexicalHit, LexicalHits
from tests.conftest import EDITOR_ID, OWNER_ID, PROJECT_ID, VIEWER_ID
from tests.fakes.fake_llm import text_step, tool_step

BASE = f"/v1/projects/{PROJECT_ID}"


def parse_sse_events(text: str) -> List[dict]:
    """Parse SSE response body into a list of event dicts."""
    return [json.loads(line[6:]) for line in text.split("\n") if line.startswith("data: ")]


def _suggestion(agent_store, tool_name="create_entity", args=None, status=SuggestionStatus.PENDING, **fields):
    suggestion = KnowledgeSuggestion(
        id=fields.pop("id", "sug-1"),
        project_id=fields.pop("project_id", PROJECT_ID),
        tool_call_id="call-1",
        tool_name=tool_name,
        approval_type="execution",
        danger="destructive",
        proposed_patch=args or {"type": "character", "name": "Aria"},
        stream_id="stream-1",
        thread_id="thread-1",
        status=status,
        **fields,
    )
    agent_store.suggestions[suggestion.id] = suggestion
    return suggestion


class TestStream:
    def test_text_turn_streams_to_complete(self, api):
        api.use_model([text_step("Aria is a smuggler.")])

        response = api.client.post(
            f"{BASE}/agent/stream",
            json={"thread_id": "thread-1", "prompt": "Who is Aria?", "stream_id": "stream-1"},
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        events = parse_sse_events(response.text)
        assert [e["type"] for e in events] == ["context", "delta", "complete"]
        assert events[1]["content"] == "Aria is a smuggler."

    def test_approval_pauses_stream(self, api):
        api.act_as(EDITOR_ID)
        call = ToolCall(tool_call_id="call-1", tool_name="create_entity", args={"type": "character", "name": "Aria"})
        api.use_model([tool_step(call)])

        response = api.client.post(f"{BASE}/agent/stream", json={"thread_id": "thread-1", "prompt": "Add Aria"})

        events = parse_sse_events(response.text)
        assert [e["type"] for e in events] == ["context", "tool-approval-request"]
        assert events[1]["approval_id"] == "call-1"
        assert len(api.agent_store.suggestions) == 1

    def test_viewer_can_chat(self, api):
        api.act_as(VIEWER_ID)
        api.use_model([text_step("Hello.")])
        response = api.client.post(f"{BASE}/agent/stream", json={"thread_id": "t", "prompt": "hi"})
        assert response.status_code == 200

    def test_model_failure_ends_with_fail(self, api):
        api.use_model([])
        response = api.client.post(f"{BASE}/agent/stream", json={"thread_id": "t", "prompt": "hi"})
        events = parse_sse_events(response.text)
        assert events[-1]["type"] == "fail"


class TestResolve:
    def test_approve_applies_and_resumes(self, api):
        api.act_as(OWNER_ID)
        _suggestion(api.agent_store)
        api.agent_store.stream_contexts["stream-1"] = {
            "project_id": PROJECT_ID,
            "thread_id": "thread-1",
            "actor_user_id": EDITOR_ID,
            "system": "You are Saga.",
        }
        api.use_model([text_step("Aria is in the graph now.")])

        response = api.client.post(f"{BASE}/agent/suggestions/sug-1/resolve", json={"decision": "approve"})

        assert response.status_code == 200
        events = parse_sse_events(response.text)
        assert [e["type"] for e in events] == ["tool", "delta", "complete"]
        assert events[0]["data"]["success"] is True
        assert [e.name for e in api.store.entities.values()] == ["Aria"]
        assert api.agent_store.suggestions["sug-1"].status == SuggestionStatus.APPLIED

    def test_missing_suggestion(self, api):
        response = api.client.post(f"{BASE}/agent/suggestions/nope/resolve", json={"decision": "reject"})
        assert response.status_code == 404

    def test_suggestion_from_other_project(self, api):
        _suggestion(api.agent_store, project_id="other-project")
        response = api.client.post(f"{BASE}/agent/suggestions/sug-1/resolve", json={"decision": "reject"})
        assert response.status_code == 404

    def test_already_resolved(self, api):
        _suggestion(api.agent_store, status=SuggestionStatus.APPLIED)
        response = api.client.post(f"{BASE}/agent/suggestions/sug-1/resolve", json={"decision": "reject"})
        assert response.status_code == 409
        assert response.json()["detail"] == "Suggestion is already applied"

    def test_client_tool_needs_result(self, api):
        _suggestion(api.agent_store, tool_name="ask_question", args={"question": "Which city?"})
        response = api.client.post(f"{BASE}/agent/suggestions/sug-1/resolve", json={"decision": "approve"})
        assert response.status_code == 422

    def test_viewer_cannot_resolve(self, api):
        api.act_as(VIEWER_ID)
        _suggestion(api.agent_store)
        response = api.client.post(f"{BASE}/agent/suggestions/sug-1/resolve", json={"decision": "approve"})
        assert response.status_code == 403
        assert api.agent_store.suggestions["sug-1"].status == SuggestionStatus.PENDING

    def test_losing_a_resolution_race_ends_with_fail(self, api):
        stale = _suggestion(api.agent_store)
        api.agent_store.suggestions["sug-1"] = stale.model_copy(update={"status": SuggestionStatus.APPLIED})

        async def stale_get(_suggestion_id):
            return stale

        api.agent_store.get_suggestion = stale_get

        response = api.client.post(f"{BASE}/agent/suggestions/sug-1/resolve", json={"decision": "approve"})

        assert response.status_code == 200
        events = parse_sse_events(response.text)
        assert [e["type"] for e in events] == ["fail"]
        assert "resolved by another request" in events[0]["content"]
        assert api.store.entities == {}


class TestSearch:
    def test_lexical_search(self, api):
        api.store.lexical_hits = LexicalHits(
            entities=[LexicalHit(id="e1", type="character", name="Aria", score=4.0)]
        )
        response = api.client.post(f"{BASE}/search", json={"query": "Aria", "scope": "entities"})
        assert response.status_code == 200
        body = response.json()
        assert [e["name"] for e in body["entities"]] == ["Aria"]
        assert body["documents"] == []

    def test_limit_is_validated(self, api):
        response = api.client.post(f"{BASE}/search", json={"query": "Aria", "limit": 500})
        assert response.status_code == 422

    def test_limit_above_result_cap_is_rejected(self, api):
        response = api.client.post(f"{BASE}/search", json={"query": "Aria", "limit": 11})
        assert response.status_code == 422
