from __future__ import annotations

import pytest

from contract_router.validation import validators
from contract_router.validation.results import Err, Ok
from contract_router.validation.tool_arguments import (
    build_arguments_schema,
    collect_schema_errors,
    required_fields,
    type_tag_to_json_schema,
)


def test_intent_classification_accepts_fenced_json():
    result = validators.validate_intent_classification(
        'Sure:\n```json\n{"intent": " tool.search ", "confidence": 0.7, "difficulty": "Hard"}\n```'
    )

    assert result == Ok({"intent": "tool.search", "confidence": 0.7, "difficulty": "hard"})


@pytest.mark.parametrize(
    "raw, error",
    [
        ("no json here", "INVALID_JSON"),
        ('{"intent": "answer.general", "confidence": 1.5}', "CONFIDENCE_OUT_OF_RANGE"),
        ('{"intent": "answer.general", "confidence": 0.5, "difficulty": "extreme"}', "INVALID_DIFFICULTY"),
        ('{"intent": "", "confidence": 0.5}', "INVALID_SHAPE"),
        ('{"confidence": 0.5}', "INVALID_SHAPE"),
    ],
)
def test_intent_classification_errors(raw, error):
    result = validators.validate_intent_classification(raw)

    assert not result.ok
    assert result.error.startswith(error)


@pytest.mark.parametrize("raw, code", [("en", "en"), (" PT-br\n", "pt"), ("de_DE", "de"), ("fr.", "fr")])
def test_language_detection_normalizes_codes(raw, code):
    assert validators.validate_language_detection(raw) == Ok(code)


@pytest.mark.parametrize("raw", ["", "English", "e"])
def test_language_detection_rejects_non_codes(raw):
    assert not validators.validate_language_detection(raw).ok


def test_tool_arguments_validator_is_strict():
    validate = validators.make_tool_arguments_validator({"path": "string", "limit": "number|null"})

    assert validate('{"path": "/tmp", "limit": null}') == Ok({"path": "/tmp", "limit": None})
    assert validate('Here: {"path": "/tmp", "limit": null}') == Err("NON_JSON_PREFIX")
    assert validate("{not json") == Err("INVALID_JSON")
    assert validate('{"path": "/tmp"}') == Err("MISSING_FIELD:limit")
    assert validate('{"path": "/tmp", "limit": 1, "extra": true}') == Err("UNEXPECTED_FIELD:extra")
    assert validate('{"path": null, "limit": 1}').error.startswith("INVALID_TYPE:")
    assert validate('{"path": "/tmp", "limit": "ten"}').error.startswith("INVALID_TYPE:")


def test_verification_normalizes_execute_to_accept():
    result = validators.validate_tool_argument_verification(
        '{"decision": "execute", "confidence": 0.8, "reason": " looks fine ", "missingFields": null}'
    )

    assert result.ok
    assert result.value["decision"] == "accept"
    assert result.value["reason"] == "looks fine"
    assert result.value["missing_fields"] is None


@pytest.mark.parametrize(
    "raw, error",
    [
        ('Decision: {"decision": "accept", "confidence": 0.8, "reason": "x"}', "INVALID_JSON"),
        ('{"decision": "maybe", "confidence": 0.8, "reason": "x"}', "INVALID_DECISION:maybe"),
        ('{"decision": "retry", "confidence": 2, "reason": "x"}', "CONFIDENCE_OUT_OF_RANGE"),
        ('{"decision": "retry", "confidence": 0.5, "reason": "  "}', "INVALID_SHAPE"),
    ],
)
def test_verification_errors(raw, error):
    result = validators.validate_tool_argument_verification(raw)

    assert result.error.startswith(error)


def test_scoring_validation():
    assert validators.validate_scoring('{"clarity": 7, "usefulness": 10}') == Ok({"clarity": 7, "usefulness": 10})
    assert validators.validate_scoring('{"clarity": 11}') == Err("INVALID_SCORE:clarity")
    assert validators.validate_scoring('{"clarity": "high"}') == Err("INVALID_SCORE:clarity")
    assert validators.validate_scoring("{}") == Err("INVALID_SCORE:")
    assert validators.validate_scoring("seven") == Err("INVALID_JSON")


def test_strict_answer_is_single_paragraph():
    assert validators.validate_strict_answer("  Paris is\n the capital. ") == Ok("Paris is the capital.")
    assert validators.validate_strict_answer("One.\n\nTwo.") == Err("MULTILINE_OUTPUT")
    assert validators.validate_strict_answer("   ") == Err("EMPTY_OUTPUT")


def test_free_text_unwraps_message_payloads():
    assert validators.validate_conversational_answer('{"message": {"content": " Hello! "}}') == Ok("Hello!")
    assert validators.validate_image_recognition("A cat\n\non a mat") == Ok("A cat on a mat")
    assert validators.validate_conversational_answer("") == Err("EMPTY_OUTPUT")


def test_response_formatting_rejects_meta_text():
    assert validators.validate_response_formatting("Disk usage is 40%.") == Ok("Disk usage is 40%.")
    assert validators.validate_response_formatting("Here is the summary.") == Err("META_TEXT_DETECTED")
    assert validators.validate_response_formatting("This is it") == Err("META_TEXT_DETECTED")
    assert validators.validate_response_formatting("") == Err("EMPTY_OUTPUT")


def test_type_tags():
    assert type_tag_to_json_schema("string[]|null") == {
        "anyOf": [{"type": "array", "items": {"type": "string"}}, {"type": "null"}]
    }
    with pytest.raises(ValueError):
        type_tag_to_json_schema("date")
    assert required_fields({"a": "string", "b": "number|null"}) == ["a"]
    schema = build_arguments_schema({"a": "string"})
    assert schema["required"] == ["a"]
    assert schema["additionalProperties"] is False


def test_collect_schema_errors_reports_missing_fields():
    schema = {
        "type": "object",
        "properties": {"path": {"type": "string", "minLength": 1}, "limit": {"type": "number"}},
        "required": ["path", "action"],
    }

    reasons, missing = collect_schema_errors({"path": "", "limit": "x"}, schema)

    assert len(reasons) == 3
    assert missing == ["action", "path"]
