from __future__ import annotations

import re
from typing import Any, Dict, List, Tuple

from jsonschema import Draft7Validator, ValidationError

NULLABLE_SUFFIX = "|null"

_BASE_TYPES: Dict[str, Dict[str, Any]] = {
    "string": {"type": "string"},
    "number": {"type": "number"},
    "boolean": {"type": "boolean"},
    "object": {"type": "object"},
    "array": {"type": "array"},
    "string[]": {"type": "array", "items": {"type": "string"}},
    "number[]": {"type": "array", "items": {"type": "number"}},
    "boolean[]": {"type": "array", "items": {"type": "boolean"}},
    "object[]": {"type": "array", "items": {"type": "object"}},
}


def is_nullable(type_tag: str) -> bool:
    return type_tag.strip().endswith(NULLABLE_SUFFIX)


def base_type(type_tag: str) -> str:
    tag = type_tag.strip()
    if tag.endswith(NULLABLE_SUFFIX):
        return tag[: -len(NULLABLE_SUFFIX)]
    return tag


def required_fields(schema: Dict[str, str]) -> List[str]:
    return [key for key, tag in schema.items() if not is_nullable(tag)]


def type_tag_to_json_schema(type_tag: str) -> Dict[str, Any]:
    base = base_type(type_tag)
    if base not in _BASE_TYPES:
        raise ValueError(f"Unsupported field type: {type_tag}")
    fragment = dict(_BASE_TYPES[base])
    if is_nullable(type_tag):
        return {"anyOf": [fragment, {"type": "null"}]}
    return fragment


def build_arguments_schema(schema: Dict[str, str]) -> Dict[str, Any]:
    """Translate a ``field -> type tag`` map into a strict JSON Schema.

    Every field must be present; nullable tags also accept null.
    """
    return {
        "type": "object",
        "properties": {key: type_tag_to_json_schema(tag) for key, tag in schema.items()},
        "required": list(schema.keys()),
        "additionalProperties": False,
    }


def missing_fields_from_error(exc: ValidationError) -> List[str]:
    missing: List[str] = []
    if exc.validator == "required":
        missing.extend(re.findall(r"'([^']+)' is a required property", exc.message))
    elif exc.validator in ("type", "anyOf", "minLength") and exc.instance in (None, ""):
        if exc.path:
            field = exc.path[0]
            if isinstance(field, str):
                missing.append(field)
    return missing


def collect_schema_errors(instance: Any, json_schema: Dict[str, Any]) -> Tuple[List[str], List[str]]:
    """Return ``(reasons, missing_fields)`` for ``instance`` against ``json_schema``."""
    validator = Draft7Validator(json_schema)
    reasons: List[str] = []
    missing: List[str] = []
    for error in sorted(validator.iter_errors(instance), key=lambda item: list(item.path)):
        path = ".".join(str(part) for part in error.path)
        reasons.append(f"{path}: {error.message}" if path else error.message)
        for field in missing_fields_from_error(error):
            if field not in missing:
                missing.append(field)
    return reasons, missing
