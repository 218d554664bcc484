"""JSON-Schema checks for registry schemas and entity/relationship payloads."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from jsonschema import SchemaError
from jsonschema.validators import validator_for


@dataclass
class SchemaCheck:
    """Outcome of validating a value against a JSON Schema."""

    ok: bool
    value: Any = None
    message: str = ""
    errors: list[dict[str, str]] = field(default_factory=list)


def _format_path(path) -> str:
    parts = [str(p) for p in path]
    return "/" + "/".join(parts) if parts else "/"


def check_schema_definition(schema: Any) -> list[str]:
    """Return meta-schema errors for a schema document (empty list if valid)."""
    if not isinstance(schema, dict):
        return ["schema must be an object"]
    validator_cls = validator_for(schema)
    try:
        validator_cls.check_schema(schema)
    except SchemaError as e:
        return [f"{_format_path(e.absolute_path)}: {e.message}"]
    return []


def validate_against_schema(schema: dict[str, Any], value: Any) -> SchemaCheck:
    """Validate a value against a JSON Schema without coercion or default injection.

    Errors are returned verbatim (path + message), ordered by path.
    """
    validator = validator_for(schema)(schema)
    errors = sorted(validator.iter_errors(value), key=lambda e: list(map(str, e.absolute_path)))
    if not errors:
        return SchemaCheck(ok=True, value=value)

    details = [
        {"path": _format_path(e.absolute_path), "message": e.message}
        for e in errors
    ]
    message = "; ".join(f"{d['path']}: {d['message']}" for d in details)
    return SchemaCheck(ok=False, message=message, errors=details)
