"""Deterministic command matchers that bypass intent classification."""
from __future__ import annotations

import re
from typing import Callable, List, Optional

from contract_router.pipeline.types import DirectToolMatch
from contract_router.tools.http import parse_http_url

_QUOTE_PAIRS = {'"': '"', "'": "'", "`": "`"}
_DRIVE_PREFIX = re.compile(r"^[a-zA-Z]:[\\/]")
_HTTP_PREFIX = re.compile(r"^https?://", re.IGNORECASE)

_READ_PATTERN = re.compile(r"^(read|cat)\s+(.+)$", re.IGNORECASE)
_LIST_PATTERN = re.compile(r"^(list|ls)\s+(.+)$", re.IGNORECASE)
_FETCH_PATTERN = re.compile(r"^(get|fetch)\s+(\S+)$", re.IGNORECASE)
_PROCESS_PATTERN = re.compile(r"^(ps|processes|list processes)(?:\s+(.+))?$", re.IGNORECASE)

_TOKEN_PATTERN = re.compile(r"\"[^\"]+\"|'[^']+'|`[^`]+`|\S+")


def strip_wrapping_quotes(value: str) -> str:
    text = value.strip()
    if len(text) >= 2 and text[0] in _QUOTE_PAIRS and text[-1] == _QUOTE_PAIRS[text[0]]:
        text = text[1:-1]
    return text.strip()


def is_http_url(value: str) -> bool:
    return bool(_HTTP_PREFIX.match(value.strip()))


def looks_like_path(value: str) -> bool:
    candidate = strip_wrapping_quotes(value)
    if not candidate or is_http_url(candidate):
        return False
    if "/" in candidate or "\\" in candidate:
        return True
    if candidate.startswith("."):
        return True
    if _DRIVE_PREFIX.match(candidate):
        return True
    return "." in candidate


def extract_path_candidate(user_input: str) -> Optional[str]:
    """Return the first token in ``user_input`` that looks like a path."""
    for token in _TOKEN_PATTERN.findall(user_input or ""):
        candidate = strip_wrapping_quotes(token).rstrip("?!,;")
        if looks_like_path(candidate):
            return candidate
    return None


def _path_argument(raw: str) -> Optional[str]:
    """A single bare token, or a quoted path that may contain spaces."""
    text = raw.strip()
    quoted = len(text) >= 2 and text[0] in _QUOTE_PAIRS and text[-1] == _QUOTE_PAIRS[text[0]]
    if not quoted and re.search(r"\s", text):
        return None
    path = strip_wrapping_quotes(text)
    return path if looks_like_path(path) else None


def _match_process(text: str) -> Optional[DirectToolMatch]:
    match = _PROCESS_PATTERN.match(text)
    if not match:
        return None
    query = strip_wrapping_quotes(match.group(2) or "")
    if query:
        return DirectToolMatch(
            tool="process",
            args={"action": "list", "query": query},
            reason="direct_process_with_filter",
        )
    return DirectToolMatch(tool="process", args={"action": "list"}, reason="direct_process")


def _match_read(text: str) -> Optional[DirectToolMatch]:
    match = _READ_PATTERN.match(text)
    if not match:
        return None
    path = _path_argument(match.group(2))
    if path is None:
        return None
    return DirectToolMatch(
        tool="filesystem", args={"action": "read", "path": path}, reason="direct_read_filesystem"
    )


def _match_list(text: str) -> Optional[DirectToolMatch]:
    match = _LIST_PATTERN.match(text)
    if not match:
        return None
    path = _path_argument(match.group(2))
    if path is None:
        return None
    return DirectToolMatch(
        tool="filesystem", args={"action": "list", "path": path}, reason="direct_list_filesystem"
    )


def _match_fetch(text: str) -> Optional[DirectToolMatch]:
    match = _FETCH_PATTERN.match(text)
    if not match:
        return None
    url = parse_http_url(strip_wrapping_quotes(match.group(2)))
    if url is None:
        return None
    return DirectToolMatch(tool="http", args={"url": url, "method": "GET"}, reason="direct_get_http")


# Process matchers run first so "list processes" is not read as a path listing.
_MATCHERS: List[Callable[[str], Optional[DirectToolMatch]]] = [
    _match_process,
    _match_read,
    _match_list,
    _match_fetch,
]


def parse_direct_tool_request(user_input: str) -> Optional[DirectToolMatch]:
    text = (user_input or "").strip()
    if not text or "\n" in text or "\r" in text:
        return None
    for matcher in _MATCHERS:
        match = matcher(text)
        if match is not None:
            return match
    return None
