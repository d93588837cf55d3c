"""Minimal JSON-schema checks for tool parameters."""
from __future__ import annotations

from typing import Any

_TYPE_CHECKS = {
    "object": lambda v: isinstance(v, dict),
    "array": lambda v: isinstance(v, list),
    "string": lambda v: isinstance(v, str),
    "boolean": lambda v: isinstance(v, bool),
    "integer": lambda v: isinstance(v, int) and not isinstance(v, bool),
    "number": lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
    "null": lambda v: v is None,
}


def validate_schema(schema: dict[str, Any] | None, value: Any, path: str = "params") -> str | None:
    """
    Check ``value`` against the subset of JSON schema tools declare.

    Supports ``type`` (single or list), ``properties``, ``required``,
    ``additionalProperties: false``, ``items``, ``enum``, ``minimum``,
    ``maximum``, ``minLength`` and ``minItems``.

    Returns:
        None if valid, otherwise a message naming the offending field.
    """
    if not schema:
        return None

    expected = schema.get("type")
    if expected is not None:
        types = expected if isinstance(expected, list) else [expected]
        known = [t for t in types if t in _TYPE_CHECKS]
        if known and not any(_TYPE_CHECKS[t](value) for t in known):
            return f"{path} must be {' or '.join(known)}"

    if "enum" in schema and value not in schema["enum"]:
        allowed = ", ".join(repr(v) for v in schema["enum"])
        return f"{path} must be one of: {allowed}"

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if "minimum" in schema and value < schema["minimum"]:
            return f"{path} must be >= {schema['minimum']}"
        if "maximum" in schema and value > schema["maximum"]:
            return f"{path} must be <= {schema['maximum']}"

    if isinstance(value, str) and len(value) < schema.get("minLength", 0):
        return f"{path} must have at least {schema['minLength']} characters"

    if isinstance(value, list):
        if len(value) < schema.get("minItems", 0):
            return f"{path} must have at least {schema['minItems']} items"
        items = schema.get("items")
        if isinstance(items, dict):
            for i, item in enumerate(value):
                error = validate_schema(items, item, f"{path}[{i}]")
                if error:
                    return error

    if isinstance(value, dict):
        properties = schema.get("properties") or {}
        for key in schema.get("required") or []:
            if key not in value:
                return f"{path} must have required property '{key}'"
        if schema.get("additionalProperties") is False:
            extra = sorted(set(value) - set(properties))
            if extra:
                return f"{path} must not have additional property '{extra[0]}'"
        for key, sub in properties.items():
            if key in value:
                error = validate_schema(sub, value[key], f"{path}.{key}")
                if error:
                    return error
    return None
