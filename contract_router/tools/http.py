from __future__ import annotations

import re
from typing import Any, Dict, Optional
from urllib.parse import urlsplit

import httpx

from contract_router.tools.definition import ToolDefinition, clamp_positive_int

DEFAULT_MAX_BYTES = 150_000
MAX_ALLOWED_BYTES = 1_000_000
DEFAULT_TIMEOUT_MS = 15_000
MAX_TIMEOUT_MS = 60_000

SUPPORTED_METHODS = ("GET", "HEAD", "OPTIONS", "POST")
BODYLESS_METHODS = ("GET", "HEAD")

_SCHEME_PATTERN = re.compile(r"^[a-z][a-z0-9+.\-]*://", re.IGNORECASE)

ARGS_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "url": {"type": "string", "minLength": 1},
        "method": {"type": ["string", "null"]},
        "headers": {"type": ["object", "null"], "additionalProperties": {"type": "string"}},
        "queryParams": {"type": ["object", "null"]},
        "body": {"type": ["string", "null"]},
        "maxBytes": {"type": ["number", "null"]},
        "timeoutMs": {"type": ["number", "null"]},
    },
    "required": ["url"],
}


def parse_http_url(raw: str) -> Optional[str]:
    """Return a normalized http(s) URL for ``raw``, or None when it is not one.

    A missing scheme is read as ``https://``. The host must contain ``.`` or ``:``
    unless it is exactly ``localhost``.
    """
    candidate = (raw or "").strip()
    if not candidate or re.search(r"\s", candidate):
        return None
    if not _SCHEME_PATTERN.match(candidate):
        candidate = f"https://{candidate}"
    try:
        parsed = urlsplit(candidate)
    except ValueError:
        return None
    if parsed.scheme.lower() not in ("http", "https"):
        return None
    host = parsed.netloc.rsplit("@", 1)[-1]
    if not host:
        return None
    if "." not in host and ":" not in host and host.lower() != "localhost":
        return None
    return parsed.geturl()


def normalize_method(raw: Any) -> str:
    candidate = str(raw or "").strip().upper()
    if not candidate:
        return "GET"
    if candidate not in SUPPORTED_METHODS:
        raise ValueError(
            f"Unsupported HTTP method \"{raw}\". Supported methods: {', '.join(SUPPORTED_METHODS)}."
        )
    return candidate


async def execute(args: Dict[str, Any]) -> Dict[str, Any]:
    url = parse_http_url(str(args.get("url") or ""))
    if url is None:
        raise ValueError(f"Invalid URL \"{args.get('url')}\". Only http:// or https:// URLs are supported.")
    method = normalize_method(args.get("method"))
    body = args.get("body")
    if body is not None and method in BODYLESS_METHODS:
        raise ValueError(f"HTTP method {method} cannot send a request body.")
    max_bytes = clamp_positive_int(args.get("maxBytes"), DEFAULT_MAX_BYTES, MAX_ALLOWED_BYTES)
    timeout_ms = clamp_positive_int(args.get("timeoutMs"), DEFAULT_TIMEOUT_MS, MAX_TIMEOUT_MS)
    headers = {str(key): str(value) for key, value in (args.get("headers") or {}).items()}
    params = {str(key): str(value) for key, value in (args.get("queryParams") or {}).items()}

    async with httpx.AsyncClient(timeout=timeout_ms / 1000.0, follow_redirects=True) as client:
        async with client.stream(method, url, headers=headers, params=params, content=body) as response:
            chunks = bytearray()
            truncated = False
            async for chunk in response.aiter_bytes():
                remaining = max_bytes - len(chunks)
                if len(chunk) > remaining:
                    chunks.extend(chunk[:remaining])
                    truncated = True
                    break
                chunks.extend(chunk)
            encoding = response.encoding or "utf-8"
            return {
                "url": str(response.url),
                "method": method,
                "status": response.status_code,
                "statusText": response.reason_phrase,
                "contentType": response.headers.get("content-type"),
                "body": bytes(chunks).decode(encoding, errors="replace"),
                "bytesRead": len(chunks),
                "truncated": truncated,
            }


HTTP_TOOL = ToolDefinition(
    name="http",
    description=(
        "HTTP client for both simple GETs and API interactions (headers, queries, body). "
        "Use for all web requests."
    ),
    schema={
        "url": "string",
        "method": "string|null",
        "headers": "object|null",
        "queryParams": "object|null",
        "body": "string|null",
        "maxBytes": "number|null",
        "timeoutMs": "number|null",
    },
    triggers=["http", "https", "url", "fetch", "download", "website", "web", "api", "request", "www"],
    execute=execute,
    args_schema=ARGS_SCHEMA,
    clarification_hints={
        "url": "Which URL should I fetch?",
        "method": "Which HTTP method should I use (GET, POST, etc.)?",
    },
)
