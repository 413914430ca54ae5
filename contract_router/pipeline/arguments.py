from __future__ import annotations

import ntpath
import posixpath
from typing import Any, Dict, List, Optional

from contract_router.context import ContextSnapshot
from contract_router.tools.definition import ToolSchema
from contract_router.validation.tool_arguments import required_fields

DEFAULT_NULL_RATIO_THRESHOLD = 0.5

# Fields these tools take from ENVIRONMENT.cwd; still empty afterwards means we must ask.
CONTEXT_REQUIRED_FIELDS: Dict[str, List[str]] = {
    "filesystem": ["path"],
    "search": ["baseDir"],
}


def _is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def are_all_arguments_null(args: Dict[str, Any]) -> bool:
    return all(_is_missing(value) for value in args.values())


def should_skip_tool_execution(
    schema: ToolSchema,
    args: Dict[str, Any],
    threshold: float = DEFAULT_NULL_RATIO_THRESHOLD,
) -> bool:
    """Return True when too few required arguments were extracted to run the tool.

    Required fields are the non-nullable ones. A missing key or a blank string counts as null.
    The ratio test is strict: exactly ``threshold`` does not skip.
    """
    required = required_fields(schema)
    if not required:
        return False
    if are_all_arguments_null(args):
        return True
    null_required = sum(1 for name in required if _is_missing(args.get(name)))
    return null_required / len(required) > threshold


def missing_context_fields(tool_name: str, args: Dict[str, Any]) -> List[str]:
    return [name for name in CONTEXT_REQUIRED_FIELDS.get(tool_name, []) if _is_missing(args.get(name))]


def _is_absolute(path: str) -> bool:
    return posixpath.isabs(path) or ntpath.isabs(path)


def _join(base: str, path: str) -> str:
    separator = "\\" if "\\" in base and "/" not in base else "/"
    return base.rstrip("/\\") + separator + path.lstrip("/\\")


def _starts_with(path: str, base: str) -> bool:
    normalized_path = path.replace("\\", "/").rstrip("/")
    normalized_base = base.replace("\\", "/").rstrip("/")
    return normalized_path == normalized_base or normalized_path.startswith(normalized_base + "/")


def _relative(path: str, base: str) -> str:
    normalized_path = path.replace("\\", "/").rstrip("/")
    normalized_base = base.replace("\\", "/").rstrip("/")
    return normalized_path[len(normalized_base):].lstrip("/")


def _trimmed(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def apply_filesystem_cwd(args: Dict[str, Any], cwd: str) -> Dict[str, Any]:
    path = _trimmed(args.get("path"))
    if not path:
        return {**args, "path": cwd}
    if not _is_absolute(path) and not path.startswith("~"):
        return {**args, "path": _join(cwd, path)}
    return args


def apply_search_cwd(args: Dict[str, Any], cwd: str) -> Dict[str, Any]:
    base_dir = _trimmed(args.get("baseDir"))
    start_path: Optional[str] = _trimmed(args.get("startPath")) or None

    if not base_dir:
        base_dir = cwd
    elif not _is_absolute(base_dir) and not base_dir.startswith("~"):
        base_dir = _join(cwd, base_dir)

    if start_path:
        if _is_absolute(start_path):
            if _starts_with(start_path, base_dir):
                start_path = _relative(start_path, base_dir) or None
            else:
                base_dir, start_path = start_path, None
        else:
            start_path = start_path.lstrip("/\\") or None

    return {**args, "baseDir": base_dir, "startPath": start_path}


def apply_working_directory_defaults(
    tool_name: str, args: Dict[str, Any], snapshot: Optional[ContextSnapshot]
) -> Dict[str, Any]:
    cwd = snapshot.cwd() if snapshot else None
    if not cwd:
        return args
    if tool_name == "filesystem":
        return apply_filesystem_cwd(args, cwd)
    if tool_name == "search":
        return apply_search_cwd(args, cwd)
    return args


def apply_shell_cwd(tool_name: str, args: Dict[str, Any], snapshot: Optional[ContextSnapshot]) -> Dict[str, Any]:
    if tool_name != "shell":
        return args
    cwd = snapshot.cwd() if snapshot else None
    if not cwd or _trimmed(args.get("cwd")):
        return args
    return {**args, "cwd": cwd}


def describe_verification_notes(reason: str, missing_fields: List[str], suggested_args: Optional[Dict[str, Any]]) -> str:
    lines = []
    if reason:
        lines.append(f"Reason: {reason}")
    if missing_fields:
        lines.append(f"Missing fields: {', '.join(missing_fields)}")
    if suggested_args:
        pairs = ", ".join(f"{key}={value!r}" for key, value in suggested_args.items())
        lines.append(f"Suggested arguments: {pairs}")
    return "\n".join(lines)
