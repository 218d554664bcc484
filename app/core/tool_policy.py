"""Tool policy: decide whether a tool call runs automatically or waits for approval.

Graph tools are classified against the project's resolved type registry; every
other tool comes from a static table. Anything that can't be classified
requires approval.
"""

from __future__ import annotations

from typing import Any

from app.chains.graph_tools.normalize import is_graph_tool, normalize_graph_tool_call
from app.core.schemas_agent import ApprovalReason, ApprovalType, Danger, ToolPolicyDecision
from app.core.schemas_graph import ProjectTypeRegistryResolved, RelationshipTypeDef
from app.core.schemas_tools import (
    CreateEntityArgs,
    CreateRelationshipArgs,
    GraphMutationFailure,
    UpdateEntityArgs,
    UpdateRelationshipArgs,
)

DEFAULT_STRENGTH_THRESHOLD = 0.3
WRITE_CONTENT_COSTLY_CHARS = 800

AUTO_TOOLS = frozenset({"search_context", "read_document", "get_entity"})

ALWAYS_APPROVE_TOOLS = frozenset({
    "write_content",
    "ask_question",
    "commit_decision",
    "add_comment",
    "delete_document",
    "project_manage",
    "evidence_mutation",
})


def get_approval_type(tool_name: str) -> ApprovalType:
    if tool_name == "ask_question":
        return "input"
    if tool_name == "write_content":
        return "apply"
    return "execution"


def get_danger(tool_name: str, args: dict[str, Any] | None) -> Danger:
    if tool_name == "write_content":
        args = args or {}
        content = args.get("content") or ""
        if args.get("operation") == "append_document" or len(content) > WRITE_CONTENT_COSTLY_CHARS:
            return "costly"
        return "safe"
    if is_graph_tool(tool_name):
        return "destructive"
    return "safe"


def _risk_reasons(type_def: RelationshipTypeDef, include_high: bool) -> list[ApprovalReason]:
    if type_def.risk_level == "core":
        return ["risk_core"]
    if include_high and type_def.risk_level == "high":
        return ["risk_high"]
    return []


def _entity_create_reasons(registry, args: CreateEntityArgs):
    type_def = registry.entity_type(args.type)
    if type_def is None:
        return None, ["invalid_type"]
    reasons: list[ApprovalReason] = []
    if type_def.approval and type_def.approval.create_requires_approval:
        reasons.append("create_requires_approval")
    reasons.extend(_risk_reasons(type_def, include_high=True))
    return type_def, reasons


def _entity_update_reasons(registry, args: UpdateEntityArgs, resolved_entity_type: str | None):
    type_def = registry.entity_type(args.entity_type or resolved_entity_type)
    if type_def is None:
        return None, ["invalid_type"]
    reasons: list[ApprovalReason] = list(_risk_reasons(type_def, include_high=False))
    approval = type_def.approval
    if approval and approval.update_always_requires_approval:
        reasons.append("update_requires_approval")
    touched = set(args.updates.model_dump(exclude_none=True))
    if approval and touched.intersection(approval.identity_fields):
        reasons.append("identity_change")
    return type_def, reasons


def _relationship_create_reasons(registry, args: CreateRelationshipArgs):
    type_def = registry.relationship_type(args.type)
    if type_def is None:
        return None, ["invalid_type"]
    return type_def, _risk_reasons(type_def, include_high=True)


def _relationship_update_reasons(registry, args: UpdateRelationshipArgs, threshold: float):
    type_def = registry.relationship_type(args.type)
    if type_def is None:
        return None, ["invalid_type"]
    reasons: list[ApprovalReason] = list(_risk_reasons(type_def, include_high=False))
    if args.updates.bidirectional is not None:
        reasons.append("bidirectional_change")
    if args.updates.strength is not None and args.updates.strength < threshold:
        reasons.append("strength_sensitive")
    return type_def, reasons


def classify_tool_call(
    registry: ProjectTypeRegistryResolved | None,
    tool_name: str,
    args: dict[str, Any] | None,
    strength_threshold: float = DEFAULT_STRENGTH_THRESHOLD,
    resolved_entity_type: str | None = None,
) -> ToolPolicyDecision:
    """Classify one tool call.

    Args:
        registry: Resolved project registry (None when it couldn't be loaded)
        tool_name: Tool name as emitted by the model
        args: Raw tool arguments
        strength_threshold: Relationship updates below this strength need approval
        resolved_entity_type: Type of the entity an update targets, when the
            caller already looked it up and the arguments omit it
    """
    approval_type = get_approval_type(tool_name)
    danger = get_danger(tool_name, args)

    def decide(reasons: list[ApprovalReason], risk_level=None, force: bool = False):
        requires = force or bool(reasons)
        return ToolPolicyDecision(
            auto_execute=not requires,
            requires_approval=requires,
            risk_level=risk_level,
            approval_reasons=reasons,
            approval_type=approval_type,
            danger=danger,
        )

    if tool_name in AUTO_TOOLS:
        return decide([])
    if tool_name in ALWAYS_APPROVE_TOOLS:
        return decide([], force=True)
    if not is_graph_tool(tool_name):
        return decide(["mutation_unresolved"])
    if registry is None:
        return decide(["registry_unknown"])

    normalized = normalize_graph_tool_call(tool_name, args)
    if isinstance(normalized, GraphMutationFailure):
        return decide(["mutation_unresolved"])

    if normalized.operation == "create_entity":
        type_def, reasons = _entity_create_reasons(registry, normalized.args)
    elif normalized.operation == "update_entity":
        type_def, reasons = _entity_update_reasons(registry, normalized.args, resolved_entity_type)
    elif normalized.operation == "create_relationship":
        type_def, reasons = _relationship_create_reasons(registry, normalized.args)
    else:
        type_def, reasons = _relationship_update_reasons(
            registry, normalized.args, strength_threshold
        )

    return decide(reasons, risk_level=type_def.risk_level if type_def else None)


def needs_tool_approval(
    registry: ProjectTypeRegistryResolved | None,
    tool_name: str,
    args: dict[str, Any] | None,
    strength_threshold: float = DEFAULT_STRENGTH_THRESHOLD,
) -> bool:
    return classify_tool_call(registry, tool_name, args, strength_threshold).requires_approval
