from __future__ import annotations

import csv
import io
import platform
import subprocess
from typing import Any, Dict, List, Optional

from contract_router.tools.definition import ToolDefinition, clamp_positive_int

DEFAULT_LIMIT = 20
MAX_LIMIT = 100
LIST_ALIASES = ("list", "ps", "processes", "show")

ARGS_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "action": {"type": "string", "minLength": 1},
        "query": {"type": ["string", "null"]},
        "limit": {"type": ["number", "null"]},
    },
    "required": ["action"],
}


def _run(command: List[str]) -> str:
    completed = subprocess.run(
        command,
        check=False,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
        timeout=10,
    )
    if completed.returncode != 0:
        raise RuntimeError(f"Process listing failed ({completed.returncode}): {completed.stdout.strip()[:200]}")
    return completed.stdout or ""


def parse_ps_output(output: str) -> List[Dict[str, Any]]:
    processes: List[Dict[str, Any]] = []
    for line in output.splitlines()[1:]:
        parts = line.split(None, 3)
        if len(parts) < 4:
            continue
        pid, cpu, memory, name = parts
        try:
            processes.append(
                {"pid": int(pid), "name": name.strip(), "cpu": float(cpu), "memory": float(memory)}
            )
        except ValueError:
            continue
    return processes


def parse_tasklist_output(output: str) -> List[Dict[str, Any]]:
    processes: List[Dict[str, Any]] = []
    for row in csv.reader(io.StringIO(output)):
        if len(row) < 2:
            continue
        try:
            pid = int(row[1])
        except ValueError:
            continue
        processes.append({"pid": pid, "name": row[0], "cpu": None, "memory": None})
    return processes


def list_processes() -> List[Dict[str, Any]]:
    system = platform.system()
    if system == "Windows":
        return parse_tasklist_output(_run(["tasklist", "/fo", "csv", "/nh"]))
    if system in ("Linux", "Darwin"):
        return parse_ps_output(_run(["ps", "-axo", "pid,pcpu,pmem,comm"]))
    raise RuntimeError(
        f"Platform \"{system}\" is not supported for process listing. Supported: Windows, Linux, macOS."
    )


def execute(args: Dict[str, Any]) -> Dict[str, Any]:
    action = str(args.get("action") or "").strip().lower()
    if action not in LIST_ALIASES:
        raise ValueError(f"Unsupported process action \"{args.get('action')}\". Use \"list\".")
    query: Optional[str] = str(args.get("query") or "").strip().lower() or None
    limit = clamp_positive_int(args.get("limit"), DEFAULT_LIMIT, MAX_LIMIT)

    processes = list_processes()
    if query:
        processes = [item for item in processes if query in item["name"].lower()]
    processes.sort(key=lambda item: item["cpu"] or 0.0, reverse=True)
    return {
        "action": "list",
        "query": query,
        "total": len(processes),
        "processes": processes[:limit],
        "truncated": len(processes) > limit,
    }


PROCESS_TOOL = ToolDefinition(
    name="process",
    description=(
        'Lists running processes (list). Supports optional name filter ("query") and a max result limit.'
    ),
    schema={
        "action": "string",
        "query": "string|null",
        "limit": "number|null",
    },
    triggers=["process", "processes", "running", "task", "ps", "program"],
    execute=execute,
    args_schema=ARGS_SCHEMA,
    clarification_hints={
        "action": "Should I list running processes?",
        "query": "Which process name should I filter by?",
    },
)
