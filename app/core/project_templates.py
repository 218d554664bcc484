"""Built-in project templates: default entity and relationship types per project kind.

Templates carry no property schemas; schemas come from per-project overrides.
"""

from __future__ import annotations

from typing import Any

DEFAULT_TEMPLATE_ID = "writer"

_WRITER_IDENTITY = {"identityFields": ["name", "properties"]}


def _rel(type_name: str, display_name: str, risk: str) -> dict[str, Any]:
    return {"type": type_name, "displayName": display_name, "riskLevel": risk}


# =============================================================================
# Writer
# =============================================================================

WRITER_ENTITY_TYPES: list[dict[str, Any]] = [
    {"type": "character", "displayName": "Character", "riskLevel": "core",
     "icon": "User", "color": "#22d3ee", "approval": _WRITER_IDENTITY},
    {"type": "location", "displayName": "Location", "riskLevel": "low",
     "icon": "MapPin", "color": "#22c55e"},
    {"type": "item", "displayName": "Item", "riskLevel": "low",
     "icon": "Sword", "color": "#f59e0b"},
    {"type": "faction", "displayName": "Faction", "riskLevel": "core",
     "icon": "Building2", "color": "#a855f7", "approval": _WRITER_IDENTITY},
    {"type": "magic_system", "displayName": "Magic System", "riskLevel": "core",
     "icon": "Wand2", "color": "#8b5cf6", "approval": _WRITER_IDENTITY},
    {"type": "event", "displayName": "Event", "riskLevel": "low",
     "icon": "Calendar", "color": "#f97316"},
    {"type": "concept", "displayName": "Concept", "riskLevel": "low",
     "icon": "Sparkles", "color": "#64748b"},
]

WRITER_RELATIONSHIP_TYPES: list[dict[str, Any]] = [
    _rel("knows", "Knows", "low"),
    _rel("loves", "Loves", "low"),
    _rel("hates", "Hates", "low"),
    _rel("killed", "Killed", "core"),
    _rel("created", "Created", "core"),
    _rel("owns", "Owns", "low"),
    _rel("guards", "Guards", "low"),
    _rel("weakness", "Weakness", "low"),
    _rel("strength", "Strength", "low"),
    _rel("parent_of", "Parent Of", "core"),
    _rel("child_of", "Child Of", "core"),
    _rel("sibling_of", "Sibling Of", "core"),
    _rel("married_to", "Married To", "core"),
    _rel("allied_with", "Allied With", "low"),
    _rel("enemy_of", "Enemy Of", "low"),
    _rel("member_of", "Member Of", "high"),
    _rel("rules", "Rules", "high"),
    _rel("serves", "Serves", "high"),
]


# =============================================================================
# Other templates
# =============================================================================

PROJECT_TEMPLATES: dict[str, dict[str, Any]] = {
    "writer": {
        "label": "Writer",
        "entity_types": WRITER_ENTITY_TYPES,
        "relationship_types": WRITER_RELATIONSHIP_TYPES,
    },
    "product": {
        "label": "Product",
        "entity_types": [
            {"type": "epic", "displayName": "Epic", "riskLevel": "high", "icon": "Flag", "color": "#f97316"},
            {"type": "feature", "displayName": "Feature", "riskLevel": "high", "icon": "Sparkles", "color": "#22c55e"},
            {"type": "requirement", "displayName": "Requirement", "riskLevel": "high", "icon": "ListChecks", "color": "#eab308"},
            {"type": "persona", "displayName": "Persona", "riskLevel": "low", "icon": "User", "color": "#38bdf8"},
            {"type": "metric", "displayName": "Metric", "riskLevel": "low", "icon": "Gauge", "color": "#a855f7"},
            {"type": "release", "displayName": "Release", "riskLevel": "high", "icon": "Rocket", "color": "#f43f5e"},
        ],
        "relationship_types": [
            _rel("depends_on", "Depends On", "high"),
            _rel("blocks", "Blocks", "high"),
            _rel("owned_by", "Owned By", "low"),
            _rel("relates_to", "Relates To", "low"),
            _rel("ships_in", "Ships In", "high"),
        ],
    },
    "engineering": {
        "label": "Engineering",
        "entity_types": [
            {"type": "service", "displayName": "Service", "riskLevel": "high", "icon": "Server", "color": "#0ea5e9"},
            {"type": "endpoint", "displayName": "Endpoint", "riskLevel": "low", "icon": "Link", "color": "#14b8a6"},
            {"type": "database", "displayName": "Database", "riskLevel": "high", "icon": "Database", "color": "#6366f1"},
            {"type": "incident", "displayName": "Incident", "riskLevel": "core", "icon": "AlertTriangle", "color": "#ef4444"},
            {"type": "runbook", "displayName": "Runbook", "riskLevel": "low", "icon": "BookOpen", "color": "#84cc16"},
        ],
        "relationship_types": [
            _rel("calls", "Calls", "low"),
            _rel("depends_on", "Depends On", "high"),
            _rel("owns", "Owns", "low"),
            _rel("impacts", "Impacts", "high"),
            _rel("runbook_for", "Runbook For", "low"),
        ],
    },
    "design": {
        "label": "Design",
        "entity_types": [
            {"type": "component", "displayName": "Component", "riskLevel": "low", "icon": "Box", "color": "#10b981"},
            {"type": "screen", "displayName": "Screen", "riskLevel": "low", "icon": "Monitor", "color": "#3b82f6"},
            {"type": "token", "displayName": "Token", "riskLevel": "low", "icon": "Palette", "color": "#f59e0b"},
            {"type": "pattern", "displayName": "Pattern", "riskLevel": "low", "icon": "Shapes", "color": "#a855f7"},
            {"type": "guideline", "displayName": "Guideline", "riskLevel": "low", "icon": "ClipboardList", "color": "#64748b"},
        ],
        "relationship_types": [
            _rel("uses", "Uses", "low"),
            _rel("contains", "Contains", "low"),
            _rel("variant_of", "Variant Of", "low"),
            _rel("implements", "Implements", "low"),
            _rel("relates_to", "Relates To", "low"),
        ],
    },
    "comms": {
        "label": "Comms",
        "entity_types": [
            {"type": "campaign", "displayName": "Campaign", "riskLevel": "high", "icon": "Megaphone", "color": "#f97316"},
            {"type": "message", "displayName": "Message", "riskLevel": "low", "icon": "MessageSquare", "color": "#22c55e"},
            {"type": "asset", "displayName": "Asset", "riskLevel": "low", "icon": "Image", "color": "#38bdf8"},
            {"type": "audience", "displayName": "Audience", "riskLevel": "low", "icon": "Users", "color": "#a855f7"},
            {"type": "channel", "displayName": "Channel", "riskLevel": "low", "icon": "Radio", "color": "#eab308"},
        ],
        "relationship_types": [
            _rel("targets", "Targets", "high"),
            _rel("published_on", "Published On", "low"),
            _rel("supports", "Supports", "low"),
            _rel("measured_by", "Measured By", "low"),
        ],
    },
    "custom": {
        "label": "Custom",
        "entity_types": [],
        "relationship_types": [],
    },
}


def get_project_template(template_id: str | None) -> dict[str, Any]:
    """Return a template by id; unknown or missing ids fall back to writer."""
    if not template_id:
        return PROJECT_TEMPLATES[DEFAULT_TEMPLATE_ID]
    return PROJECT_TEMPLATES.get(template_id) or PROJECT_TEMPLATES[DEFAULT_TEMPLATE_ID]


def list_template_ids() -> list[str]:
    return list(PROJECT_TEMPLATES)
