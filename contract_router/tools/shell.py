from __future__ import annotations

import re
import subprocess
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from contract_router.tools.definition import ToolDefinition

DEFAULT_TIMEOUT_MS = 30_000
MAX_TIMEOUT_MS = 120_000
MAX_OUTPUT_CHARS = 20_000

RUN_ALIASES = ("run", "execute", "exec", "shell")

DESTRUCTIVE_TOKENS = {
    "rm",
    "del",
    "rmdir",
    "mv",
    "move",
    "cp",
    "copy",
    "sudo",
    "su",
    "kill",
    "pkill",
    "taskkill",
    "format",
    "mkfs",
    "dd",
    "fdisk",
    "parted",
    "shutdown",
    "reboot",
    "chown",
    "chmod",
    "chgrp",
    "chroot",
    "delete",
    "remove",
    "erase",
    "destroy",
    "wipe",
    "stop",
    "restart",
    "uninstall",
    "purge",
    "prune",
    "clean",
    "rmi",
}

DESTRUCTIVE_PATTERNS = [
    re.compile(r">"),
    re.compile(r"\|"),
    re.compile(r";"),
    re.compile(r"&&"),
    re.compile(r"`"),
    re.compile(r"\$\("),
    re.compile(r":\(\)\s*\{"),
    re.compile(r"^-rf$|^-fr$", re.IGNORECASE),
    re.compile(r"^--(force|recursive|delete|remove|purge|prune)(=|$)", re.IGNORECASE),
]

ARGS_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "action": {"type": "string", "minLength": 1},
        "program": {"type": "string", "minLength": 1},
        "args": {"type": ["array", "null"], "items": {"type": "string"}},
        "timeoutMs": {"type": ["number", "null"], "exclusiveMinimum": 0},
        "cwd": {"type": ["string", "null"]},
    },
    "required": ["action", "program"],
}


@dataclass
class CommandResult:
    program: str
    args: List[str]
    exit_code: Optional[int]
    output: str
    timed_out: bool


def _clamp_timeout(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        return DEFAULT_TIMEOUT_MS
    return min(int(value), MAX_TIMEOUT_MS)


def validate_command(program: str, args: List[str], allowed_programs: Iterable[str]) -> None:
    normalized = program.strip().lower()
    if not normalized:
        raise ValueError("Program name cannot be empty.")
    allowed = {item.lower() for item in allowed_programs}
    if normalized not in allowed:
        raise PermissionError(
            f"Program \"{program}\" is not allowed. Allowed: {', '.join(sorted(allowed))}."
        )
    for token in args:
        lowered = token.strip().lower()
        if lowered in DESTRUCTIVE_TOKENS:
            raise PermissionError(f"Blocked destructive argument: {token}")
        for pattern in DESTRUCTIVE_PATTERNS:
            if pattern.search(token):
                raise PermissionError(f"Blocked unsafe argument: {token}")


def run_command(program: str, args: List[str], timeout_ms: int, cwd: Optional[str] = None) -> CommandResult:
    workdir = Path(cwd).expanduser() if cwd else None
    if workdir is not None and not workdir.is_dir():
        raise NotADirectoryError(f"Working directory does not exist: {workdir}")
    try:
        completed = subprocess.run(
            [program, *args],
            shell=False,
            check=False,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            timeout=timeout_ms / 1000.0,
            cwd=str(workdir) if workdir else None,
        )
    except subprocess.TimeoutExpired as exc:
        partial = exc.stdout if isinstance(exc.stdout, str) else ""
        return CommandResult(program=program, args=args, exit_code=None, output=partial, timed_out=True)
    output = completed.stdout or ""
    return CommandResult(
        program=program,
        args=args,
        exit_code=completed.returncode,
        output=output[:MAX_OUTPUT_CHARS],
        timed_out=False,
    )


def build_shell_tool(allowed_programs: Iterable[str]) -> ToolDefinition:
    allowed = list(allowed_programs)

    def execute(arguments: Dict[str, Any]) -> Dict[str, Any]:
        action = str(arguments.get("action") or "").strip().lower()
        if action not in RUN_ALIASES:
            raise ValueError(f"Unsupported shell action \"{arguments.get('action')}\". Use \"run\".")
        program = str(arguments.get("program") or "").strip()
        args = [str(item) for item in (arguments.get("args") or [])]
        validate_command(program, args, allowed)
        result = run_command(program, args, _clamp_timeout(arguments.get("timeoutMs")), arguments.get("cwd"))
        payload = asdict(result)
        return {
            "program": payload["program"],
            "args": payload["args"],
            "exitCode": payload["exit_code"],
            "output": payload["output"],
            "timedOut": payload["timed_out"],
        }

    return ToolDefinition(
        name="shell",
        description=(
            "Fallback for system commands not covered by other tools (e.g. git, docker, npm, systemctl). "
            f"Allowed programs: {', '.join(allowed)}. Read-only usage only."
        ),
        schema={
            "action": "string",
            "program": "string",
            "args": "string[]|null",
            "timeoutMs": "number|null",
            "cwd": "string|null",
        },
        triggers=["run", "execute", "command", "shell", "terminal", "git", "docker", "npm", "systemctl"],
        execute=execute,
        args_schema=ARGS_SCHEMA,
        clarification_hints={
            "program": "Which command should I run?",
            "args": "What arguments should I pass to the command?",
        },
    )
