"""Tool definitions (Anthropic input_schema format) for the writing agent."""

from typing import Any

_ENTITY_UPDATES = {
    "type": "object",
    "properties": {
        "name": {"type": "string", "description": "New display name"},
        "aliases": {"type": "array", "items": {"type": "string"}},
        "notes": {"type": "string"},
        "properties": {"type": "object", "description": "Properties to merge into the existing ones"},
    },
}

_RELATIONSHIP_UPDATES = {
    "type": "object",
    "properties": {
        "notes": {"type": "string"},
        "strength": {"type": "number", "minimum": 0, "maximum": 1},
        "bidirectional": {"type": "boolean"},
        "metadata": {"type": "object", "description": "Metadata to merge into the existing metadata"},
    },
}


def get_search_tool_definitions() -> list[dict[str, Any]]:
    return [
        {
            "name": "search_context",
            "description": (
                "Search the project's documents, world entities and remembered decisions. "
                "Use before answering questions about the story world."
            ),
            "input_schema": {
                "type": "object",
                "properties": {
                    "query": {"type": "string", "description": "What to look for"},
                    "scope": {
                        "type": "string",
                        "enum": ["all", "documents", "entities", "memories"],
                        "description": "Restrict the search to one kind of content",
                    },
                    "limit": {"type": "integer", "minimum": 1, "maximum": 20},
                },
                "required": ["query"],
            },
        },
        {
            "name": "read_document",
            "description": "Read the full text of one document in this project.",
            "input_schema": {
                "type": "object",
                "properties": {"documentId": {"type": "string"}},
                "required": ["documentId"],
            },
        },
        {
            "name": "get_entity",
            "description": "Get one world entity with its properties and relationships.",
            "input_schema": {
                "type": "object",
                "properties": {
                    "entityId": {"type": "string"},
                    "entityName": {"type": "string"},
                    "entityType": {"type": "string"},
                    "includeRelationships": {"type": "boolean"},
                },
            },
        },
    ]


def get_graph_tool_definitions() -> list[dict[str, Any]]:
    """The unified graph_mutation tool plus the per-operation entity/relationship tools."""
    return [
        {
            "name": "graph_mutation",
            "description": (
                "Create or update entities (nodes) and relationships (edges) in the project "
                "world graph. Deletion is not available yet. Some changes wait for the "
                "author's approval."
            ),
            "input_schema": {
                "type": "object",
                "properties": {
                    "action": {"type": "string", "enum": ["create", "update", "delete"]},
                    "target": {"type": "string", "enum": ["entity", "node", "relationship", "edge"]},
                    "type": {"type": "string", "description": "Entity or relationship type"},
                    "name": {"type": "string", "description": "Name of the entity to create"},
                    "entityName": {"type": "string", "description": "Existing entity/node name"},
                    "entityType": {"type": "string"},
                    "sourceName": {"type": "string"},
                    "targetName": {"type": "string"},
                    "aliases": {"type": "array", "items": {"type": "string"}},
                    "notes": {"type": "string"},
                    "properties": {"type": "object"},
                    "bidirectional": {"type": "boolean"},
                    "strength": {"type": "number", "minimum": 0, "maximum": 1},
                    "metadata": {"type": "object"},
                    "updates": {"type": "object"},
                },
                "required": ["action", "target"],
            },
        },
        {
            "name": "create_entity",
            "description": (
                "Create a new entity (character, location, item, faction, magic system, event, "
                "or concept) in the project graph. Some types require approval."
            ),
            "input_schema": {
                "type": "object",
                "properties": {
                    "type": {"type": "string"},
                    "name": {"type": "string"},
                    "aliases": {"type": "array", "items": {"type": "string"}},
                    "notes": {"type": "string"},
                    "properties": {"type": "object"},
                },
                "required": ["type", "name"],
            },
        },
        {
            "name": "update_entity",
            "description": "Update an existing entity, found by its current name.",
            "input_schema": {
                "type": "object",
                "properties": {
                    "entityName": {"type": "string", "description": "The current name of the entity"},
                    "entityType": {"type": "string", "description": "Narrows the lookup when names repeat"},
                    "updates": _ENTITY_UPDATES,
                },
                "required": ["entityName", "updates"],
            },
        },
        {
            "name": "create_relationship",
            "description": "Create a typed relationship between two existing entities.",
            "input_schema": {
                "type": "object",
                "properties": {
                    "sourceName": {"type": "string"},
                    "targetName": {"type": "string"},
                    "type": {"type": "string"},
                    "bidirectional": {"type": "boolean"},
                    "notes": {"type": "string"},
                    "strength": {"type": "number", "minimum": 0, "maximum": 1},
                    "metadata": {"type": "object"},
                },
                "required": ["sourceName", "targetName", "type"],
            },
        },
        {
            "name": "update_relationship",
            "description": "Update an existing relationship between two entities.",
            "input_schema": {
                "type": "object",
                "properties": {
                    "sourceName": {"type": "string"},
                    "targetName": {"type": "string"},
                    "type": {"type": "string"},
                    "updates": _RELATIONSHIP_UPDATES,
                },
                "required": ["sourceName", "targetName", "type", "updates"],
            },
        },
    ]


def get_client_tool_definitions() -> list[dict[str, Any]]:
    """Tools executed by the editor after the author approves them."""
    return [
        {
            "name": "write_content",
            "description": "Propose text to insert into or append to the current document.",
            "input_schema": {
                "type": "object",
                "properties": {
                    "operation": {
                        "type": "string",
                        "enum": ["insert_at_cursor", "replace_selection", "append_document"],
                    },
                    "content": {"type": "string"},
                    "rationale": {"type": "string"},
                },
                "required": ["operation", "content"],
            },
        },
        {
            "name": "ask_question",
            "description": "Ask the author a clarifying question and wait for the answer.",
            "input_schema": {
                "type": "object",
                "properties": {
                    "question": {"type": "string"},
                    "options": {"type": "array", "items": {"type": "string"}},
                },
                "required": ["question"],
            },
        },
        {
            "name": "commit_decision",
            "description": "Record a story decision the author has made so it's remembered later.",
            "input_schema": {
                "type": "object",
                "properties": {
                    "decision": {"type": "string"},
                    "category": {"type": "string"},
                },
                "required": ["decision"],
            },
        },
    ]


def get_tool_definitions() -> list[dict[str, Any]]:
    return get_search_tool_definitions() + get_graph_tool_definitions() + get_client_tool_definitions()
