"""Typed graph error codes and the "<CODE>: <detail>" string protocol.

Mutation results carry a GraphErrorCode. Registry editing raises RegistryError,
whose string form is the prefixed protocol clients parse.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any


class GraphErrorCode(str, Enum):
    """Failure codes for graph mutations and registry editing."""

    ACCESS_DENIED = "ACCESS_DENIED"
    INVALID_TYPE = "INVALID_TYPE"
    SCHEMA_VALIDATION_FAILED = "SCHEMA_VALIDATION_FAILED"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    NOT_IMPLEMENTED = "NOT_IMPLEMENTED"
    REGISTRY_LOCKED = "REGISTRY_LOCKED"
    LOCK_FAILED_UNKNOWN_TYPES = "LOCK_FAILED_UNKNOWN_TYPES"
    INVALID_REGISTRY = "INVALID_REGISTRY"


_PREFIX_RE = re.compile(r"^([A-Z][A-Z_]+):\s*(.*)$", re.DOTALL)

_USER_MESSAGES: dict[GraphErrorCode, str] = {
    GraphErrorCode.INVALID_TYPE: "That type isn't defined for this project. {detail}",
    GraphErrorCode.SCHEMA_VALIDATION_FAILED: "The data doesn't match the type's schema. {detail}",
    GraphErrorCode.ACCESS_DENIED: "You don't have permission to change this project. {detail}",
    GraphErrorCode.REGISTRY_LOCKED: "The type registry is locked. Unlock it before editing.",
    GraphErrorCode.LOCK_FAILED_UNKNOWN_TYPES: "The registry can't be locked yet. {detail}",
    GraphErrorCode.INVALID_REGISTRY: "The type registry is invalid. {detail}",
}


def format_graph_error(code: GraphErrorCode | str, detail: str) -> str:
    code_value = code.value if isinstance(code, GraphErrorCode) else code
    return f"{code_value}: {detail}" if detail else code_value


def parse_graph_error(text: str) -> tuple[GraphErrorCode | None, str]:
    """Split a "<CODE>: detail" string. Unknown prefixes return (None, text)."""
    match = _PREFIX_RE.match((text or "").strip())
    if not match:
        return None, text
    try:
        return GraphErrorCode(match.group(1)), match.group(2).strip()
    except ValueError:
        return None, text


def describe_graph_error(text: str) -> str:
    """User-facing message for a graph error string, falling back to the raw text."""
    code, detail = parse_graph_error(text)
    if code is None or code not in _USER_MESSAGES:
        return text
    return _USER_MESSAGES[code].format(detail=detail).strip()


class RegistryError(Exception):
    """Raised by registry editing operations (upsert, reset, lock)."""

    def __init__(self, code: GraphErrorCode, message: str, details: Any = None):
        self.code = code
        self.message = message
        self.details = details
        super().__init__(format_graph_error(code, message))
