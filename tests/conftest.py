"""Pytest configuration and fixtures."""

import os

import pytest

from tests.fakes.fake_graph_store import FakeAgentStore, FakeGraphStore

PROJECT_ID = "proj-1"
OWNER_ID = "user-owner"
EDITOR_ID = "user-editor"
VIEWER_ID = "user-viewer"


@pytest.fixture(scope="session", autouse=True)
def setup_test_env():
    """Set up test environment variables."""
    os.environ["SUPABASE_URL"] = "https://test.supabase.co"
    os.environ["SUPABASE_SERVICE_ROLE_KEY"] = "test-key"
    os.environ["SAGA_ENV"] = "test"
    for key in ("POSTHOG_API_KEY", "COHERE_API_KEY", "QDRANT_URL", "EMBEDDING_API_KEY"):
        os.environ.pop(key, None)


@pytest.fixture
def settings():
    from app.core.config import Settings

    return Settings()


@pytest.fixture
def store():
    """Writer project with an owner, an editor and a viewer."""
    fake = FakeGraphStore()
    fake.add_project(PROJECT_ID, owner_id=OWNER_ID, template_id="writer")
    fake.add_member(PROJECT_ID, EDITOR_ID, "editor")
    fake.add_member(PROJECT_ID, VIEWER_ID, "viewer")
    return fake


@pytest.fixture
def agent_store():
    return FakeAgentStore()


class ApiHarness:
    """TestClient wired to in-memory stores, acting as one configurable caller."""

    def __init__(self, client, store, agent_store, settings):
        self.client = client
        self.store = store
        self.agent_store = agent_store
        self.settings = settings
        self.user_id = OWNER_ID
        self.model = None

    def act_as(self, user_id):
        self.user_id = user_id

    def use_model(self, steps):
        from tests.fakes.fake_llm import ScriptedLanguageModel

        self.model = ScriptedLanguageModel(steps)
        return self.model


@pytest.fixture
def api(store, agent_store, settings):
    """FastAPI app with auth, stores, retrieval and the model overridden."""
    from fastapi.testclient import TestClient

    from app.api.agent import get_engine, get_runtime_builder, get_stream_mirror
    from app.core.agent_runtime import AgentRuntime
    from app.core.auth_middleware import AuthContext, get_current_user
    from app.core.retrieval import RetrievalFusionEngine
    from app.db.agent_store import get_agent_store
    from app.db.graph_store import get_graph_store
    from app.main import app

    engine = RetrievalFusionEngine(lexical_source=store, settings=settings)
    harness = ApiHarness(TestClient(app), store, agent_store, settings)

    def current_user():
        if harness.user_id is None:
            return None
        return AuthContext(user_id=harness.user_id, token="test-token")

    def runtime_builder():
        def build(sink):
            return AgentRuntime(
                store=store,
                agent_store=agent_store,
                model=harness.model,
                engine=engine,
                sink=sink,
                settings=settings,
            )

        return build

    app.dependency_overrides[get_current_user] = current_user
    app.dependency_overrides[get_graph_store] = lambda: store
    app.dependency_overrides[get_agent_store] = lambda: agent_store
    app.dependency_overrides[get_engine] = lambda: engine
    app.dependency_overrides[get_stream_mirror] = lambda: None
    app.dependency_overrides[get_runtime_builder] = runtime_builder
    yield harness
    app.dependency_overrides.clear()
