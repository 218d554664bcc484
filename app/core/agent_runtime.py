"""Agent orchestration loop for one conversational turn.

streaming -> awaiting_tool_results -> (streaming | awaiting_approval | complete)

A turn retrieves context, streams model output as delta chunks, runs
auto-approved tool calls, and turns the rest into knowledge suggestions.
Any pending suggestion stops the loop. Resolving the last pending
suggestion of a stream resumes it.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

from app.chains.graph_tools import (
    GraphMutationExecutor,
    ToolExecutionContext,
    build_approval_preview,
    execute_tool,
    get_tool_definitions,
    has_server_handler,
    is_graph_tool,
    normalize_graph_tool_call,
)
from app.core.agent_stream import StreamSink
from app.core.analytics import track_server_event
from app.core.config import Settings, get_settings
from app.core.keyed_locks import keyed_lock
from app.core.llm import LanguageModel, ModelStepResult, ModelTextDelta
from app.core.logging import get_logger, log_with_context
from app.core.retrieval import RetrievalFusionEngine
from app.core.schemas_agent import (
    AgentTurnRequest,
    AgentTurnState,
    ApprovalPreview,
    KnowledgeSuggestion,
    StreamChunk,
    SuggestionStatus,
    ToolCall,
    ToolPolicyDecision,
)
from app.core.schemas_graph import ActivityRecord, ProjectTypeRegistryResolved
from app.core.schemas_rag import RetrievalOptions
from app.core.schemas_tools import MutationActor, NormalizedGraphMutation
from app.core.system_prompt import build_system_prompt
from app.core.tool_policy import classify_tool_call
from app.db.agent_store import AgentStore
from app.db.graph_store import GraphStore
from app.db.type_registry import load_resolved_registry

logger = get_logger(__name__)

ApprovalDecision = Literal["approve", "reject"]


class PresenceService(Protocol):
    async def set_ai_presence(self, project_id: str, document_id: str | None, active: bool) -> None: ...


class SuggestionError(Exception):
    """Raised when a suggestion can't be resolved (missing, already resolved, no result)."""


@dataclass
class _Turn:
    project_id: str
    thread_id: str
    stream_id: str
    actor_user_id: str
    system: str
    prompt_message_id: str | None = None
    document_id: str | None = None
    last_presence: float = 0.0

    def to_context(self) -> dict[str, Any]:
        return {
            "project_id": self.project_id,
            "thread_id": self.thread_id,
            "actor_user_id": self.actor_user_id,
            "system": self.system,
            "prompt_message_id": self.prompt_message_id,
            "document_id": self.document_id,
        }


@dataclass
class _Plan:
    auto: list[ToolCall] = field(default_factory=list)
    pending: list[tuple[ToolCall, ToolPolicyDecision, ApprovalPreview]] = field(default_factory=list)


def tool_result_message(tool_call_id: str, result: Any) -> dict[str, Any]:
    return {
        "role": "user",
        "content": [
            {
                "type": "tool_result",
                "tool_use_id": tool_call_id,
                "content": json.dumps(result, default=str),
            }
        ],
    }


def _is_tool_result_message(message: dict[str, Any]) -> bool:
    content = message.get("content")
    return (
        message.get("role") == "user"
        and isinstance(content, list)
        and bool(content)
        and all(isinstance(b, dict) and b.get("type") == "tool_result" for b in content)
    )


def coalesce_tool_results(messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Merge adjacent tool_result messages so each assistant step gets one reply."""
    merged: list[dict[str, Any]] = []
    for message in messages:
        if merged and _is_tool_result_message(message) and _is_tool_result_message(merged[-1]):
            merged[-1] = {"role": "user", "content": merged[-1]["content"] + message["content"]}
        else:
            merged.append(message)
    return merged


class AgentRuntime:
    """Drives agent turns against injected model, retrieval, persistence and sink."""

    def __init__(
        self,
        *,
        store: GraphStore,
        agent_store: AgentStore,
        model: LanguageModel,
        engine: RetrievalFusionEngine,
        sink: StreamSink,
        executor: GraphMutationExecutor | None = None,
        presence: PresenceService | None = None,
        tools: list[dict[str, Any]] | None = None,
        settings: Settings | None = None,
    ):
        self._store = store
        self._agent_store = agent_store
        self._model = model
        self._engine = engine
        self._sink = sink
        self._executor = executor or GraphMutationExecutor(store)
        self._presence = presence
        self._tools = tools if tools is not None else get_tool_definitions()
        self._settings = settings or get_settings()

    # =========================================================================
    # Entry points
    # =========================================================================

    async def run_turn(self, request: AgentTurnRequest) -> AgentTurnState:
        """Run one turn from a fresh user prompt."""
        stream_id = request.stream_id
        try:
            context = await self._engine.retrieve(
                request.prompt,
                request.project_id,
                RetrievalOptions(distinct_id=request.actor_user_id),
            )
            await self._sink.append(
                stream_id, StreamChunk(type="context", data=context.model_dump(exclude_none=True))
            )

            turn = _Turn(
                project_id=request.project_id,
                thread_id=request.thread_id,
                stream_id=stream_id,
                actor_user_id=request.actor_user_id,
                system=build_system_prompt(context, request.mode, request.editor),
                prompt_message_id=request.prompt_message_id,
                document_id=request.document_id,
            )
            await self._agent_store.set_stream_context(stream_id, turn.to_context())
            await self._agent_store.append_thread_message(
                request.thread_id, {"role": "user", "content": request.prompt}
            )
        except Exception as e:
            logger.error(f"Agent turn setup failed for stream {stream_id}: {e}", exc_info=True)
            await self._sink.fail(stream_id, str(e))
            return AgentTurnState.FAILED

        return await self._drive(turn)

    async def resolve_suggestion(
        self,
        suggestion_id: str,
        decision: ApprovalDecision,
        actor_user_id: str,
        result: Any = None,
    ) -> AgentTurnState:
        """Approve or reject a pending suggestion, then resume its stream if nothing else is pending.

        Resolutions for one stream run one at a time, and the suggestion is
        claimed out of pending before its tool runs, so a double approval
        executes the mutation and resumes the stream once.

        Raises:
            SuggestionError: Unknown or already-resolved suggestion, or an approved
                client-side tool without a result
        """
        suggestion = await self._agent_store.get_suggestion(suggestion_id)
        if suggestion is None:
            raise SuggestionError(f"Suggestion {suggestion_id} not found")

        async with keyed_lock(f"stream:{suggestion.stream_id}"):
            suggestion = await self._agent_store.get_suggestion(suggestion_id) or suggestion
            if suggestion.status != SuggestionStatus.PENDING:
                raise SuggestionError(f"Suggestion {suggestion_id} is already {suggestion.status.value}")

            server_side = decision == "approve" and has_server_handler(suggestion.tool_name)
            if decision == "reject":
                status = SuggestionStatus.REJECTED
                tool_result: Any = {"rejected": True, "message": "The author rejected this change."}
            elif server_side:
                status = SuggestionStatus.APPLIED
                tool_result = None
            else:
                if result is None:
                    raise SuggestionError(f"Approving {suggestion.tool_name} requires a client result")
                status = SuggestionStatus.APPLIED
                tool_result = result

            if not await self._agent_store.claim_suggestion(suggestion_id, status, tool_result):
                raise SuggestionError(f"Suggestion {suggestion_id} was resolved by another request")

            if server_side:
                ctx = self._tool_context(
                    suggestion.project_id, MutationActor(user_id=actor_user_id, actor_type="user")
                )
                tool_result = await execute_tool(ctx, suggestion.tool_name, suggestion.proposed_patch)
                failed = tool_result.get("success") is False or "error" in tool_result
                status = SuggestionStatus.FAILED if failed else SuggestionStatus.APPLIED
                await self._agent_store.resolve_suggestion(suggestion_id, status, tool_result)

            log_with_context(
                logger, logging.INFO, f"Suggestion {suggestion_id} resolved as {status.value}",
                project_id=suggestion.project_id, stream_id=suggestion.stream_id,
            )
            return await self.apply_tool_result_and_resume(suggestion, tool_result)

    async def apply_tool_result_and_resume(
        self, suggestion: KnowledgeSuggestion, result: Any
    ) -> AgentTurnState:
        """Record a tool result for a suggestion and resume the stream once unblocked."""
        stream_id = suggestion.stream_id
        await self._agent_store.append_thread_message(
            suggestion.thread_id, tool_result_message(suggestion.tool_call_id, result)
        )
        await self._sink.append(
            stream_id,
            StreamChunk(
                type="tool",
                tool_call_id=suggestion.tool_call_id,
                tool_name=suggestion.tool_name,
                data=result,
            ),
        )

        if await self._agent_store.count_pending_suggestions(stream_id):
            return AgentTurnState.AWAITING_APPROVAL

        context = await self._agent_store.get_stream_context(stream_id)
        if context is None:
            await self._sink.fail(stream_id, "Stream context not found")
            return AgentTurnState.FAILED

        turn = _Turn(stream_id=stream_id, **context)
        return await self._drive(turn)

    # =========================================================================
    # Loop
    # =========================================================================

    def _tool_context(self, project_id: str, actor: MutationActor) -> ToolExecutionContext:
        return ToolExecutionContext(
            project_id=project_id,
            actor=actor,
            store=self._store,
            engine=self._engine,
            executor=self._executor,
        )

    def _transition(self, turn: _Turn, state: AgentTurnState) -> AgentTurnState:
        logger.debug(f"Agent stream {turn.stream_id} -> {state.value}")
        return state

    async def _drive(self, turn: _Turn) -> AgentTurnState:
        state = AgentTurnState.STREAMING
        try:
            registry = await self._load_registry(turn.project_id)
            ctx = self._tool_context(turn.project_id, MutationActor(user_id=turn.actor_user_id))

            for step in range(self._settings.AGENT_MAX_STEPS):
                state = self._transition(turn, AgentTurnState.STREAMING)
                step_result = await self._stream_step(turn)
                await self._agent_store.append_thread_message(turn.thread_id, step_result.assistant_message)

                if not step_result.tool_calls:
                    state = self._transition(turn, AgentTurnState.COMPLETE)
                    break

                state = self._transition(turn, AgentTurnState.AWAITING_TOOL_RESULTS)
                plan = await self._partition(turn, registry, step_result.tool_calls)
                executed = await self._run_auto_calls(turn, ctx, plan.auto)
                for call, decision, preview in plan.pending:
                    await self._request_approval(turn, call, decision, preview)

                if plan.pending:
                    state = self._transition(turn, AgentTurnState.AWAITING_APPROVAL)
                    break
                if executed == 0:
                    state = self._transition(turn, AgentTurnState.COMPLETE)
                    break
            else:
                logger.warning(
                    f"Agent stream {turn.stream_id} hit {self._settings.AGENT_MAX_STEPS} steps, stopping"
                )
                state = self._transition(turn, AgentTurnState.COMPLETE)

            if state == AgentTurnState.COMPLETE:
                await self._sink.complete(turn.stream_id)
            return state

        except Exception as e:
            logger.error(f"Agent stream {turn.stream_id} failed: {e}", exc_info=True)
            await self._sink.fail(turn.stream_id, str(e))
            return self._transition(turn, AgentTurnState.FAILED)
        finally:
            await self._set_presence(turn, active=False)

    async def _load_registry(self, project_id: str) -> ProjectTypeRegistryResolved | None:
        try:
            return await load_resolved_registry(self._store, project_id)
        except Exception as e:
            logger.warning(f"Registry unavailable for project {project_id}, graph tools need approval: {e}")
            return None

    async def _stream_step(self, turn: _Turn) -> ModelStepResult:
        messages = coalesce_tool_results(await self._agent_store.list_thread_messages(turn.thread_id))
        step_result: ModelStepResult | None = None
        async for event in self._model.stream(turn.system, messages, self._tools):
            if isinstance(event, ModelTextDelta):
                await self._sink.append(turn.stream_id, StreamChunk(type="delta", content=event.text))
                await self._keep_presence_alive(turn)
            else:
                step_result = event
        if step_result is None:
            raise RuntimeError("Model stream ended without a step result")
        return step_result

    async def _partition(
        self,
        turn: _Turn,
        registry: ProjectTypeRegistryResolved | None,
        calls: list[ToolCall],
    ) -> _Plan:
        plan = _Plan()
        threshold = self._settings.RELATIONSHIP_STRENGTH_THRESHOLD
        for call in calls:
            preview: ApprovalPreview | None = None
            resolved_type: str | None = None
            if is_graph_tool(call.tool_name):
                preview = await build_approval_preview(self._store, turn.project_id, call.tool_name, call.args)
                resolved_type = preview.entity_type

            decision = classify_tool_call(
                registry, call.tool_name, call.args, threshold, resolved_entity_type=resolved_type
            )
            if decision.auto_execute and has_server_handler(call.tool_name):
                plan.auto.append(call)
            else:
                if preview is None:
                    preview = await build_approval_preview(
                        self._store, turn.project_id, call.tool_name, call.args
                    )
                plan.pending.append((call, decision, preview))
        return plan

    async def _run_auto_calls(self, turn: _Turn, ctx: ToolExecutionContext, calls: list[ToolCall]) -> int:
        if not calls:
            return 0
        results = await asyncio.gather(
            *(execute_tool(ctx, call.tool_name, call.args) for call in calls)
        )
        for call, result in zip(calls, results):
            await self._sink.append(
                turn.stream_id,
                StreamChunk(
                    type="tool",
                    tool_call_id=call.tool_call_id,
                    tool_name=call.tool_name,
                    args=call.args,
                    data=result,
                ),
            )
            await self._agent_store.append_thread_message(
                turn.thread_id, tool_result_message(call.tool_call_id, result)
            )
            track_server_event(
                turn.actor_user_id,
                "ai_tool_executed",
                {"project_id": turn.project_id, "tool_name": call.tool_name},
            )
        return len(calls)

    async def _request_approval(
        self,
        turn: _Turn,
        call: ToolCall,
        decision: ToolPolicyDecision,
        preview: ApprovalPreview,
    ) -> None:
        normalized = normalize_graph_tool_call(call.tool_name, call.args) if is_graph_tool(call.tool_name) else None
        suggestion = KnowledgeSuggestion(
            id=str(uuid.uuid4()),
            project_id=turn.project_id,
            tool_call_id=call.tool_call_id,
            tool_name=call.tool_name,
            approval_type=decision.approval_type,
            danger=decision.danger,
            risk_level=decision.risk_level,
            approval_reasons=decision.approval_reasons,
            preview=preview,
            proposed_patch=call.args,
            actor_user_id=turn.actor_user_id,
            stream_id=turn.stream_id,
            thread_id=turn.thread_id,
            prompt_message_id=turn.prompt_message_id,
        )
        await self._agent_store.insert_suggestion(suggestion)

        await self._sink.append(
            turn.stream_id,
            StreamChunk(
                type="tool-approval-request",
                tool_call_id=call.tool_call_id,
                tool_name=call.tool_name,
                approval_id=call.tool_call_id,
                approval_type=decision.approval_type,
                danger=decision.danger,
                args=call.args,
                data={
                    "suggestionId": suggestion.id,
                    "riskLevel": decision.risk_level,
                    "approvalReasons": decision.approval_reasons,
                    "operation": normalized.operation if isinstance(normalized, NormalizedGraphMutation) else None,
                    "preview": preview.model_dump(mode="json", exclude_none=True),
                },
            ),
        )

        try:
            await self._store.emit_activity(
                ActivityRecord(
                    project_id=turn.project_id,
                    actor_type="ai",
                    actor_user_id=turn.actor_user_id,
                    action="ai_tool_approval_requested",
                    summary=f"Approval requested for {call.tool_name}",
                    metadata={
                        "suggestion_id": suggestion.id,
                        "tool_name": call.tool_name,
                        "approval_reasons": list(decision.approval_reasons),
                    },
                )
            )
        except Exception as e:
            logger.warning(f"Failed to emit approval activity for {call.tool_name}: {e}")

    # =========================================================================
    # Presence
    # =========================================================================

    async def _keep_presence_alive(self, turn: _Turn) -> None:
        if self._presence is None:
            return
        now = time.monotonic()
        if turn.last_presence and now - turn.last_presence < self._settings.PRESENCE_KEEPALIVE_SECONDS:
            return
        turn.last_presence = now
        await self._set_presence(turn, active=True)

    async def _set_presence(self, turn: _Turn, active: bool) -> None:
        if self._presence is None or (not active and not turn.last_presence):
            return
        try:
            await self._presence.set_ai_presence(turn.project_id, turn.document_id, active)
        except Exception as e:
            logger.debug(f"AI presence update failed for project {turn.project_id}: {e}")
