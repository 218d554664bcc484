"""Pydantic models for the agent loop: tool calls, suggestions, stream chunks."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field

from app.core.schemas_graph import RiskLevel

ApprovalType = Literal["execution", "input", "apply"]
Danger = Literal["safe", "costly", "destructive"]

ApprovalReason = Literal[
    "invalid_type",
    "risk_core",
    "risk_high",
    "create_requires_approval",
    "update_requires_approval",
    "identity_change",
    "bidirectional_change",
    "strength_sensitive",
    "mutation_unresolved",
    "registry_unknown",
]


class ToolCall(BaseModel):
    """A tool invocation decoded from the model's output."""

    tool_call_id: str
    tool_name: str
    args: dict[str, Any] = Field(default_factory=dict)


class ToolPolicyDecision(BaseModel):
    auto_execute: bool
    requires_approval: bool
    risk_level: RiskLevel | None = None
    approval_reasons: list[ApprovalReason] = Field(default_factory=list)
    approval_type: ApprovalType = "execution"
    danger: Danger = "safe"


# =============================================================================
# Approval preview
# =============================================================================


class PreviewDiffRow(BaseModel):
    field: str
    before: Any = None
    after: Any = None


class ApprovalPreview(BaseModel):
    """What a pending graph mutation would change, for the approval UI."""

    kind: Literal["entity", "relationship", "other"]
    operation: str
    entity_name: str | None = None
    entity_type: str | None = None
    source_name: str | None = None
    target_name: str | None = None
    relationship_type: str | None = None
    changes: list[PreviewDiffRow] = Field(default_factory=list)
    note: str | None = None


# =============================================================================
# Knowledge suggestions
# =============================================================================


class SuggestionStatus(str, Enum):
    PENDING = "pending"
    APPLIED = "applied"
    REJECTED = "rejected"
    FAILED = "failed"


class KnowledgeSuggestion(BaseModel):
    """A pending (or resolved) approval request for one tool call."""

    id: str
    project_id: str
    tool_call_id: str
    tool_name: str
    approval_type: ApprovalType
    danger: Danger
    risk_level: RiskLevel | None = None
    approval_reasons: list[ApprovalReason] = Field(default_factory=list)
    preview: ApprovalPreview | None = None
    proposed_patch: dict[str, Any] = Field(default_factory=dict)
    actor_user_id: str | None = None
    stream_id: str
    thread_id: str
    prompt_message_id: str | None = None
    status: SuggestionStatus = SuggestionStatus.PENDING
    result: Any = None
    created_at: datetime | None = None
    resolved_at: datetime | None = None


# =============================================================================
# Stream chunks
# =============================================================================

StreamChunkType = Literal["context", "delta", "tool", "tool-approval-request", "complete", "fail"]


class StreamChunk(BaseModel):
    """One append-only element of a generation stream."""

    type: StreamChunkType
    content: str = ""
    tool_call_id: str | None = None
    tool_name: str | None = None
    approval_id: str | None = None
    approval_type: ApprovalType | None = None
    danger: Danger | None = None
    args: dict[str, Any] | None = None
    data: Any = None


# =============================================================================
# Turn requests
# =============================================================================


class EditorContext(BaseModel):
    document_title: str | None = None
    document_excerpt: str | None = None
    selection_text: str | None = None


class AgentTurnRequest(BaseModel):
    """Inputs for one conversational turn."""

    project_id: str
    thread_id: str
    stream_id: str
    actor_user_id: str
    prompt: str
    prompt_message_id: str | None = None
    mode: str | None = None
    editor: EditorContext | None = None
    document_id: str | None = None


class AgentTurnState(str, Enum):
    STREAMING = "streaming"
    AWAITING_TOOL_RESULTS = "awaiting_tool_results"
    AWAITING_APPROVAL = "awaiting_approval"
    COMPLETE = "complete"
    FAILED = "failed"
