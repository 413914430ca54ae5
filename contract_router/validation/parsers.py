from __future__ import annotations

import json
import re
from typing import Any


def strip_code_fences(text: str) -> str:
    fenced = re.findall(r"```(?:json)?\s*(.*?)```", text, flags=re.DOTALL | re.IGNORECASE)
    if fenced:
        return "\n".join(fenced).strip()
    return text.replace("```", "").strip()


def _iter_object_candidates(text: str) -> list[str]:
    candidates: list[str] = []
    depth = 0
    start = -1
    in_string = False
    escaped = False
    for index, char in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            if depth == 0:
                start = index
            depth += 1
        elif char == "}" and depth > 0:
            depth -= 1
            if depth == 0 and start != -1:
                candidates.append(text[start : index + 1])
                start = -1
    return candidates


def _try_parse(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return None


def extract_json_object(raw_text: str) -> dict:
    """Return the first JSON object found in ``raw_text``.

    Accepts bare JSON, fenced JSON, and JSON surrounded by prose.
    """
    parsed = _try_parse(raw_text.strip())
    if isinstance(parsed, dict):
        return parsed

    stripped = strip_code_fences(raw_text)
    parsed = _try_parse(stripped)
    if isinstance(parsed, dict):
        return parsed

    for candidate in _iter_object_candidates(stripped):
        parsed = _try_parse(candidate)
        if isinstance(parsed, dict):
            return parsed

    decoder = json.JSONDecoder()
    for match in re.finditer(r"{", stripped):
        try:
            parsed, _ = decoder.raw_decode(stripped[match.start() :])
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed

    snippet = raw_text.strip().replace("\n", " ")
    snippet = (snippet[:200] + "...") if len(snippet) > 200 else snippet
    raise ValueError(f"No JSON object found in response. Snippet: {snippet}")


def parse_json_object_strict(raw_text: str) -> dict:
    """Parse ``raw_text`` as exactly one JSON object (fences allowed)."""
    cleaned = strip_code_fences(raw_text)
    if not cleaned.startswith("{"):
        raise ValueError("Output does not start with a JSON object.")
    parsed = json.loads(cleaned)
    if not isinstance(parsed, dict):
        raise ValueError("Output is not a JSON object.")
    return parsed


def unwrap_message_content(raw_text: str) -> str:
    text = raw_text.strip()
    if text.startswith("{"):
        parsed = _try_parse(text)
        if isinstance(parsed, dict):
            message = parsed.get("message")
            if isinstance(message, dict) and isinstance(message.get("content"), str):
                return message["content"].strip()
    return text
