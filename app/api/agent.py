"""Writing-agent endpoints: streamed turns, suggestion resolution and context search."""

import asyncio
import uuid
from typing import Any, AsyncGenerator, Callable, Coroutine, Dict, List, Literal

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from app.chains.graph_tools import has_server_handler
from app.core.agent_runtime import AgentRuntime, SuggestionError
from app.core.agent_stream import QueueStreamSink, StreamSink
from app.core.auth_middleware import AuthContext, require_project_editor, require_project_member
from app.core.llm import AnthropicLanguageModel
from app.core.logging import get_logger
from app.core.retrieval import RetrievalFusionEngine, get_retrieval_engine
from app.core.schemas_agent import AgentTurnRequest, EditorContext, SuggestionStatus
from app.core.schemas_rag import RAGContext, RetrievalOptions, RetrievalScope
from app.db.agent_store import AgentStore, get_agent_store
from app.db.agent_streams import SupabaseStreamSink
from app.db.graph_store import GraphStore, get_graph_store

logger = get_logger(__name__)

router = APIRouter()

RuntimeBuilder = Callable[[StreamSink], AgentRuntime]

# Turns keep running after the client disconnects; hold references until done.
_background_tasks: set[asyncio.Task] = set()

_SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class AgentStreamRequest(BaseModel):
    """Request to start an agent turn."""

    thread_id: str
    prompt: str
    stream_id: str | None = None
    prompt_message_id: str | None = None
    mode: str | None = None
    editor: EditorContext | None = None
    document_id: str | None = None


class ResolveSuggestionRequest(BaseModel):
    decision: Literal["approve", "reject"]
    result: Any = None


class SearchRequest(BaseModel):
    query: str
    scope: RetrievalScope = "all"
    limit: int | None = Field(default=None, ge=1, le=10)
    document_types: List[str] | None = None
    entity_types: List[str] | None = None


# =============================================================================
# Dependencies
# =============================================================================


def get_engine(store: GraphStore = Depends(get_graph_store)) -> RetrievalFusionEngine:
    return get_retrieval_engine(lexical_source=store)


def get_stream_mirror() -> StreamSink | None:
    """Durable sink every streamed chunk is also written to."""
    return SupabaseStreamSink()


def get_runtime_builder(
    store: GraphStore = Depends(get_graph_store),
    agent_store: AgentStore = Depends(get_agent_store),
    engine: RetrievalFusionEngine = Depends(get_engine),
) -> RuntimeBuilder:
    def build(sink: StreamSink) -> AgentRuntime:
        return AgentRuntime(
            store=store,
            agent_store=agent_store,
            model=AnthropicLanguageModel(),
            engine=engine,
            sink=sink,
        )

    return build


def _spawn(sink: QueueStreamSink, work: Coroutine[Any, Any, Any]) -> None:
    async def run() -> None:
        try:
            await work
        except Exception as e:
            logger.error(f"Agent background work failed: {e}", exc_info=True)
        finally:
            await sink.close()

    task = asyncio.create_task(run())
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)


def _sse_response(sink: QueueStreamSink) -> StreamingResponse:
    async def generate() -> AsyncGenerator[str, None]:
        async for event in sink.events():
            yield event

    return StreamingResponse(generate(), media_type="text/event-stream", headers=_SSE_HEADERS)


# =============================================================================
# Routes
# =============================================================================


@router.post("/projects/{project_id}/agent/stream")
async def stream_agent_turn(
    project_id: str,
    request: AgentStreamRequest,
    auth: AuthContext = Depends(require_project_member),
    build_runtime: RuntimeBuilder = Depends(get_runtime_builder),
    mirror: StreamSink | None = Depends(get_stream_mirror),
) -> StreamingResponse:
    """
    Run one agent turn and stream its chunks as Server-Sent Events.

    The stream ends on `complete`, on `fail`, or after the last
    `tool-approval-request` when the turn pauses for approval.
    """
    stream_id = request.stream_id or str(uuid.uuid4())
    turn = AgentTurnRequest(
        project_id=project_id,
        thread_id=request.thread_id,
        stream_id=stream_id,
        actor_user_id=auth.user_id,
        prompt=request.prompt,
        prompt_message_id=request.prompt_message_id,
        mode=request.mode,
        editor=request.editor,
        document_id=request.document_id,
    )
    logger.info(f"Starting agent turn {stream_id} for project {project_id}")

    sink = QueueStreamSink(mirror=mirror)
    _spawn(sink, build_runtime(sink).run_turn(turn))
    return _sse_response(sink)


@router.post("/projects/{project_id}/agent/suggestions/{suggestion_id}/resolve")
async def resolve_suggestion(
    project_id: str,
    suggestion_id: str,
    request: ResolveSuggestionRequest,
    auth: AuthContext = Depends(require_project_editor),
    agent_store: AgentStore = Depends(get_agent_store),
    build_runtime: RuntimeBuilder = Depends(get_runtime_builder),
    mirror: StreamSink | None = Depends(get_stream_mirror),
) -> StreamingResponse:
    """Approve or reject a knowledge suggestion and stream the resumed turn."""
    suggestion = await agent_store.get_suggestion(suggestion_id)
    if suggestion is None or suggestion.project_id != project_id:
        raise HTTPException(status_code=404, detail="Suggestion not found")
    if suggestion.status != SuggestionStatus.PENDING:
        raise HTTPException(status_code=409, detail=f"Suggestion is already {suggestion.status.value}")
    if request.decision == "approve" and request.result is None and not has_server_handler(suggestion.tool_name):
        raise HTTPException(status_code=422, detail=f"Approving {suggestion.tool_name} requires a result")

    sink = QueueStreamSink(mirror=mirror)
    runtime = build_runtime(sink)

    async def work() -> None:
        try:
            await runtime.resolve_suggestion(
                suggestion_id, request.decision, auth.user_id, result=request.result
            )
        except SuggestionError as e:
            logger.warning(f"Suggestion {suggestion_id} could not be resolved: {e}")
            await sink.fail_request(str(e))

    _spawn(sink, work())
    return _sse_response(sink)


@router.post("/projects/{project_id}/search")
async def search_project_context(
    project_id: str,
    request: SearchRequest,
    auth: AuthContext = Depends(require_project_member),
    engine: RetrievalFusionEngine = Depends(get_engine),
) -> Dict[str, Any]:
    """Hybrid search over the project's documents, entities and memories."""
    context: RAGContext = await engine.retrieve(
        request.query,
        project_id,
        RetrievalOptions(
            scope=request.scope,
            limit=request.limit,
            document_types=request.document_types,
            entity_types=request.entity_types,
            distinct_id=auth.user_id,
        ),
    )
    return context.model_dump(mode="json", exclude_none=True)
