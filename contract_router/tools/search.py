from __future__ import annotations

import fnmatch
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from contract_router.tools.definition import ToolDefinition, clamp_positive_int

DEFAULT_MAX_RESULTS = 25
MAX_MAX_RESULTS = 250
DEFAULT_MAX_DEPTH = 4
MAX_MAX_DEPTH = 10

_GLOB_CHARS = set("*?[")

ARGS_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "query": {"type": "string", "minLength": 1},
        "baseDir": {"type": "string", "minLength": 1},
        "startPath": {"type": ["string", "null"]},
        "maxResults": {"type": ["number", "null"]},
        "maxDepth": {"type": ["number", "null"]},
        "includeFiles": {"type": ["boolean", "null"]},
        "includeDirectories": {"type": ["boolean", "null"]},
        "exactMatch": {"type": ["boolean", "null"]},
    },
    "required": ["query", "baseDir"],
}


def _matches(name: str, query: str, exact: bool) -> bool:
    lowered = name.lower()
    if exact:
        return lowered == query
    if _GLOB_CHARS & set(query):
        return fnmatch.fnmatch(lowered, query)
    return query in lowered


def _flag(value: Any, default: bool) -> bool:
    return value if isinstance(value, bool) else default


def execute(args: Dict[str, Any]) -> Dict[str, Any]:
    query = str(args.get("query") or "").strip().lower()
    if not query:
        raise ValueError("Search query is required.")
    base_dir = Path(os.path.expanduser(str(args.get("baseDir") or "").strip() or "."))
    start_path: Optional[str] = args.get("startPath") or None
    root = base_dir / start_path if start_path else base_dir
    if not root.is_dir():
        raise NotADirectoryError(f"Search root is not a directory: {root}")

    max_results = clamp_positive_int(args.get("maxResults"), DEFAULT_MAX_RESULTS, MAX_MAX_RESULTS)
    max_depth = clamp_positive_int(args.get("maxDepth"), DEFAULT_MAX_DEPTH, MAX_MAX_DEPTH)
    include_files = _flag(args.get("includeFiles"), True)
    include_dirs = _flag(args.get("includeDirectories"), True)
    exact = _flag(args.get("exactMatch"), False)

    results: List[Dict[str, str]] = []
    truncated = False
    root_depth = len(root.parts)
    for current, dirnames, filenames in os.walk(root):
        depth = len(Path(current).parts) - root_depth
        if depth >= max_depth:
            dirnames[:] = []
        dirnames.sort()
        candidates = []
        if include_dirs:
            candidates.extend((name, "directory") for name in dirnames)
        if include_files:
            candidates.extend((name, "file") for name in sorted(filenames))
        for name, kind in candidates:
            if not _matches(name, query, exact):
                continue
            if len(results) >= max_results:
                truncated = True
                break
            results.append({"path": str(Path(current) / name), "type": kind})
        if truncated:
            break

    return {
        "query": query,
        "baseDir": str(base_dir),
        "startPath": start_path,
        "results": results,
        "truncated": truncated,
    }


SEARCH_TOOL = ToolDefinition(
    name="search",
    description=(
        "DISCOVERY. Use to find files/dirs by name/pattern when the path is unknown. "
        'Triggers: "find", "locate", "where is".'
    ),
    schema={
        "query": "string",
        "baseDir": "string",
        "startPath": "string|null",
        "maxResults": "number|null",
        "maxDepth": "number|null",
        "includeFiles": "boolean|null",
        "includeDirectories": "boolean|null",
        "exactMatch": "boolean|null",
    },
    triggers=["find", "search", "locate", "where is", "look for"],
    execute=execute,
    args_schema=ARGS_SCHEMA,
    clarification_hints={
        "query": "What filename or pattern should I search for?",
        "baseDir": "Which folder should I search in?",
    },
)
