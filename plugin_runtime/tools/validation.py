"""Tool argument validation against a declared input schema.

Covers what the orchestrator relies on: required fields, primitive types
and enums. It is not a full JSON Schema validator.
"""

from typing import Any, Dict, List

_TYPE_CHECKS = {
    "string": lambda v: isinstance(v, str),
    "number": lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
    "integer": lambda v: isinstance(v, int) and not isinstance(v, bool),
    "boolean": lambda v: isinstance(v, bool),
    "array": lambda v: isinstance(v, list),
    "object": lambda v: isinstance(v, dict),
}

_ARTICLES = {"array": "an array", "object": "an object", "integer": "an integer"}


def validate_tool_arguments(arguments: Any, schema: Dict[str, Any]) -> List[str]:
    """Return a list of human readable errors, empty when the arguments are valid."""
    if not isinstance(arguments, dict):
        return ["Arguments must be an object"]
    if not schema:
        return []

    errors: List[str] = []
    for name in schema.get("required") or []:
        if name not in arguments:
            errors.append(f"Missing required field: {name}")

    for name, field_schema in (schema.get("properties") or {}).items():
        if name not in arguments or not isinstance(field_schema, dict):
            continue
        value = arguments[name]
        field_type = field_schema.get("type")
        check = _TYPE_CHECKS.get(field_type) if isinstance(field_type, str) else None
        if check is not None and not check(value):
            errors.append(f"Field '{name}' must be {_ARTICLES.get(field_type, 'a ' + field_type)}")

        enum = field_schema.get("enum")
        if isinstance(enum, list) and value not in enum:
            errors.append(f"Field '{name}' must be one of: {', '.join(str(e) for e in enum)}")

    return errors
