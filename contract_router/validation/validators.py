from __future__ import annotations

import json
import re
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict

from jsonschema import ValidationError, validate

from contract_router.validation.parsers import (
    extract_json_object,
    parse_json_object_strict,
    unwrap_message_content,
)
from contract_router.validation.results import Err, Ok, ValidationResult, Validator
from contract_router.validation.tool_arguments import build_arguments_schema, collect_schema_errors

SCHEMAS_DIR = Path(__file__).resolve().parents[1] / "schemas"

DIFFICULTY_LEVELS = ("easy", "medium", "hard")

_META_PREFIX = re.compile(r"^(here is|this is)\b", re.IGNORECASE)


@lru_cache(maxsize=None)
def load_schema(name: str) -> Dict[str, Any]:
    path = SCHEMAS_DIR / f"{name}.schema.json"
    return json.loads(path.read_text(encoding="utf-8"))


def _schema_error(exc: ValidationError) -> str:
    location = ".".join(str(part) for part in exc.path)
    return f"INVALID_SHAPE:{location}:{exc.message}" if location else f"INVALID_SHAPE:{exc.message}"


def _collapse_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def validate_intent_classification(raw: str) -> ValidationResult:
    try:
        payload = extract_json_object(raw)
    except ValueError:
        return Err(f"INVALID_JSON:{raw.strip()[:200]}")
    try:
        validate(instance=payload, schema=load_schema("intent_classification"))
    except ValidationError as exc:
        if list(exc.path) == ["confidence"] and exc.validator in ("minimum", "maximum"):
            return Err("CONFIDENCE_OUT_OF_RANGE")
        return Err(_schema_error(exc))

    value: Dict[str, Any] = {
        "intent": payload["intent"].strip(),
        "confidence": float(payload["confidence"]),
    }
    difficulty = payload.get("difficulty")
    if isinstance(difficulty, str):
        normalized = difficulty.strip().lower()
        if normalized not in DIFFICULTY_LEVELS:
            return Err("INVALID_DIFFICULTY")
        value["difficulty"] = normalized
    return Ok(value)


def validate_language_detection(raw: str) -> ValidationResult:
    normalized = raw.strip().lower()
    if not normalized:
        return Err("EMPTY_OUTPUT")
    first_token = normalized.split()[0]
    base = re.split(r"[-_]", first_token)[0]
    candidate = re.sub(r"[^a-z]", "", base)
    if re.fullmatch(r"[a-z]{2}", candidate):
        return Ok(candidate)
    return Err(f"INVALID_CODE:{normalized[:40]}")


def make_tool_arguments_validator(schema: Dict[str, str]) -> Validator:
    """Build a validator that accepts exactly the fields of ``schema``.

    Output must be a single JSON object; nullable tags (``|null``) are the only
    fields that may hold null.
    """
    json_schema = build_arguments_schema(schema)

    def _validate(raw: str) -> ValidationResult:
        text = raw.strip()
        if not text.startswith("{"):
            return Err("NON_JSON_PREFIX")
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            return Err("INVALID_JSON")
        if not isinstance(payload, dict):
            return Err("INVALID_JSON")

        for key in payload:
            if key not in schema:
                return Err(f"UNEXPECTED_FIELD:{key}")
        for key in schema:
            if key not in payload:
                return Err(f"MISSING_FIELD:{key}")

        reasons, _ = collect_schema_errors(payload, json_schema)
        if reasons:
            return Err(f"INVALID_TYPE:{reasons[0]}")
        return Ok(payload)

    return _validate


def validate_tool_argument_verification(raw: str) -> ValidationResult:
    try:
        payload = parse_json_object_strict(raw)
    except ValueError:
        return Err(f"INVALID_JSON:{raw.strip()[:200]}")
    try:
        validate(instance=payload, schema=load_schema("tool_argument_verification"))
    except ValidationError as exc:
        if list(exc.path) == ["decision"]:
            return Err(f"INVALID_DECISION:{payload.get('decision')}")
        if list(exc.path) == ["confidence"] and exc.validator in ("minimum", "maximum"):
            return Err("CONFIDENCE_OUT_OF_RANGE")
        return Err(_schema_error(exc))

    decision = payload["decision"]
    return Ok(
        {
            "decision": "accept" if decision == "execute" else decision,
            "confidence": float(payload["confidence"]),
            "reason": payload["reason"].strip(),
            "missing_fields": payload.get("missingFields"),
            "suggested_args": payload.get("suggestedArgs"),
        }
    )


def validate_scoring(raw: str) -> ValidationResult:
    try:
        payload = extract_json_object(raw)
    except ValueError:
        return Err("INVALID_JSON")
    try:
        validate(instance=payload, schema=load_schema("scoring_evaluation"))
    except ValidationError as exc:
        key = exc.path[0] if exc.path else ""
        return Err(f"INVALID_SCORE:{key}")
    return Ok({key: int(value) for key, value in payload.items()})


def validate_strict_answer(raw: str) -> ValidationResult:
    text = raw.strip()
    if not text:
        return Err("EMPTY_OUTPUT")
    paragraphs = [chunk for chunk in re.split(r"\n\s*\n", text) if chunk.strip()]
    if len(paragraphs) > 1:
        return Err("MULTILINE_OUTPUT")
    normalized = _collapse_whitespace(paragraphs[0])
    if not normalized:
        return Err("EMPTY_OUTPUT")
    return Ok(normalized)


def validate_free_text(raw: str) -> ValidationResult:
    """Conversational answers and image descriptions: any non-empty text."""
    normalized = _collapse_whitespace(unwrap_message_content(raw))
    if not normalized:
        return Err("EMPTY_OUTPUT")
    return Ok(normalized)


validate_conversational_answer = validate_free_text
validate_image_recognition = validate_free_text


def validate_response_formatting(raw: str) -> ValidationResult:
    text = raw.strip()
    if not text:
        return Err("EMPTY_OUTPUT")
    if _META_PREFIX.match(text):
        return Err("META_TEXT_DETECTED")
    return Ok(text)
