from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List

from contract_router.tools.definition import ToolDefinition, clamp_positive_int

DEFAULT_MAX_BYTES = 100_000
MAX_ALLOWED_BYTES = 1_000_000
DEFAULT_LIST_LIMIT = 50
MAX_LIST_LIMIT = 500

ARGS_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "action": {"type": "string", "minLength": 1},
        "path": {"type": "string", "minLength": 1},
        "limit": {"type": ["number", "null"]},
        "maxBytes": {"type": ["number", "null"]},
    },
    "required": ["action", "path"],
}


def _resolve_path(raw: Any) -> Path:
    candidate = str(raw or "").strip()
    if not candidate:
        raise ValueError("Path is required for filesystem access.")
    return Path(os.path.expanduser(candidate))


def read_file(target: Path, max_bytes: Any) -> Dict[str, Any]:
    byte_limit = clamp_positive_int(max_bytes, DEFAULT_MAX_BYTES, MAX_ALLOWED_BYTES)
    if not target.exists():
        raise FileNotFoundError(f"Unable to read file \"{target}\": no such file")
    if not target.is_file():
        raise ValueError(f"Path is not a file: {target}")
    with target.open("rb") as handle:
        data = handle.read(byte_limit + 1)
    total_bytes = target.stat().st_size
    truncated = len(data) > byte_limit
    content = data[:byte_limit].decode("utf-8", errors="replace")
    return {
        "action": "file",
        "path": str(target),
        "content": content,
        "bytesRead": min(len(data), byte_limit),
        "totalBytes": total_bytes,
        "truncated": truncated,
    }


def list_directory(target: Path, limit: Any) -> Dict[str, Any]:
    entry_limit = clamp_positive_int(limit, DEFAULT_LIST_LIMIT, MAX_LIST_LIMIT)
    if not target.is_dir():
        raise NotADirectoryError(f"Unable to open directory \"{target}\": not a directory")
    children = sorted(target.iterdir(), key=lambda item: item.name.lower())
    entries: List[Dict[str, str]] = []
    for child in children[:entry_limit]:
        if child.is_dir():
            kind = "directory"
        elif child.is_file():
            kind = "file"
        else:
            kind = "other"
        entries.append({"name": child.name, "type": kind})
    return {
        "action": "directory",
        "path": str(target),
        "entries": entries,
        "truncated": len(children) > len(entries),
    }


def execute(args: Dict[str, Any]) -> Dict[str, Any]:
    target = _resolve_path(args.get("path"))
    action = str(args.get("action") or "").lower().strip()
    normalized = action.replace("_", "").replace("-", "").replace(" ", "")
    if "read" in normalized:
        return read_file(target, args.get("maxBytes"))
    if "list" in normalized:
        return list_directory(target, args.get("limit"))
    raise ValueError(f"Invalid action \"{args.get('action')}\". Use \"read\" for files or \"list\" for directories.")


FILESYSTEM_TOOL = ToolDefinition(
    name="filesystem",
    description=(
        'Read or list known file/directory paths. Use action "read" to get file contents, '
        '"list" to show directory entries. Use when the user asks to read, show, open or list '
        "a specific path. NOT for finding/searching files."
    ),
    schema={
        "action": "string",
        "path": "string",
        "limit": "number|null",
        "maxBytes": "number|null",
    },
    triggers=["read", "open", "show", "list", "file", "folder", "directory", "dir", "contents", "cat"],
    execute=execute,
    args_schema=ARGS_SCHEMA,
    clarification_hints={
        "path": "Which file or folder path should I use?",
        "action": "Should I list a folder or read a file? Share the path you want.",
    },
)
