from __future__ import annotations

import os
import platform
import re
import shutil
import socket
from pathlib import Path
from typing import Any, Dict, List, Optional

from contract_router.tools.definition import ToolDefinition

DEFAULT_METRICS = ["system", "cpu", "memory", "disk"]
VALID_METRICS = set(DEFAULT_METRICS)

_METRIC_HINTS = re.compile(
    r"cpu|processor|ram|memory|disk|drive|storage|system|uptime|hostname|\bos\b", re.IGNORECASE
)


def normalize_metrics(raw: Any) -> List[str]:
    if not isinstance(raw, list):
        return list(DEFAULT_METRICS)
    normalized = []
    for item in raw:
        metric = str(item).strip().lower()
        if metric in VALID_METRICS and metric not in normalized:
            normalized.append(metric)
    return normalized or list(DEFAULT_METRICS)


def _read_proc(path: str) -> Optional[str]:
    proc = Path(path)
    if not proc.exists():
        return None
    return proc.read_text(encoding="utf-8", errors="replace")


def _uptime_seconds() -> Optional[float]:
    raw = _read_proc("/proc/uptime")
    if not raw:
        return None
    try:
        return float(raw.split()[0])
    except (IndexError, ValueError):
        return None


def _cpu_model() -> str:
    raw = _read_proc("/proc/cpuinfo")
    if raw:
        for line in raw.splitlines():
            if "model name" in line.lower():
                return line.split(":", 1)[1].strip()
    return platform.processor() or "Unknown CPU"


def _cpu_usage() -> Optional[float]:
    if not hasattr(os, "getloadavg"):
        return None
    cores = os.cpu_count() or 1
    return round(min(100.0, os.getloadavg()[0] / cores * 100.0), 1)


def _memory() -> Dict[str, Optional[float]]:
    raw = _read_proc("/proc/meminfo")
    if not raw:
        return {"totalBytes": None, "usedBytes": None, "freeBytes": None, "usagePercent": None}
    values: Dict[str, int] = {}
    for line in raw.splitlines():
        key, _, rest = line.partition(":")
        parts = rest.split()
        if parts and parts[0].isdigit():
            values[key.strip()] = int(parts[0]) * 1024
    total = values.get("MemTotal")
    free = values.get("MemAvailable", values.get("MemFree"))
    used = total - free if total is not None and free is not None else None
    usage = round(used / total * 100.0, 1) if used is not None and total else None
    return {"totalBytes": total, "usedBytes": used, "freeBytes": free, "usagePercent": usage}


def _disks() -> List[Dict[str, Any]]:
    root = Path.home().anchor or "/"
    usage = shutil.disk_usage(root)
    return [
        {
            "path": root,
            "totalBytes": usage.total,
            "usedBytes": usage.used,
            "usagePercent": round(usage.used / usage.total * 100.0, 1) if usage.total else None,
        }
    ]


def execute(args: Dict[str, Any]) -> Dict[str, Any]:
    metrics = normalize_metrics(args.get("metrics"))
    result: Dict[str, Any] = {}
    if "system" in metrics:
        result["system"] = {
            "platform": platform.system().lower() or "unknown",
            "release": platform.release(),
            "hostname": socket.gethostname(),
            "uptime": _uptime_seconds(),
        }
    if "cpu" in metrics:
        cores = os.cpu_count()
        result["cpu"] = {"model": _cpu_model(), "cores": cores, "threads": cores, "usage": _cpu_usage()}
    if "memory" in metrics:
        result["memory"] = _memory()
    if "disk" in metrics:
        result["disks"] = _disks()
    return result


def normalize_args(user_input: str, args: Dict[str, Any]) -> Dict[str, Any]:
    """Generic requests ("tell me about this pc") get every metric."""
    if isinstance(args.get("metrics"), list) and not _METRIC_HINTS.search(user_input):
        return {**args, "metrics": None}
    return args


def format_bytes(value: Optional[float]) -> str:
    if not value:
        return "N/A"
    if value < 1024:
        return f"{int(value)} B"
    if value < 1024 ** 2:
        return f"{value / 1024:.1f} KB"
    if value < 1024 ** 3:
        return f"{value / 1024 ** 2:.1f} MB"
    return f"{value / 1024 ** 3:.1f} GB"


def format_uptime(seconds: Optional[float]) -> str:
    if seconds is None:
        return "N/A"
    total = max(0, int(seconds))
    days, remainder = divmod(total, 86_400)
    hours, remainder = divmod(remainder, 3_600)
    minutes = remainder // 60
    parts = []
    if days:
        parts.append(f"{days}d")
    if hours or days:
        parts.append(f"{hours}h")
    parts.append(f"{minutes}m")
    return " ".join(parts)


def _percent(value: Optional[float]) -> str:
    return f"{value:.1f}%" if isinstance(value, (int, float)) else "N/A"


def summarize(result: Any) -> Optional[str]:
    if not isinstance(result, dict) or not any(key in result for key in ("system", "cpu", "memory", "disks")):
        return None
    lines: List[str] = []
    system = result.get("system")
    if system:
        lines.append(
            f"System: Platform {system.get('platform') or 'unknown'}, Hostname {system.get('hostname') or 'N/A'}, "
            f"Uptime {format_uptime(system.get('uptime'))}."
        )
    cpu = result.get("cpu")
    if cpu:
        lines.append(
            f"CPU: {cpu.get('model') or 'Unknown CPU'} ({cpu.get('cores') or 'N/A'} cores / "
            f"{cpu.get('threads') or 'N/A'} threads), Usage {_percent(cpu.get('usage'))}."
        )
    memory = result.get("memory")
    if memory:
        lines.append(
            f"RAM: {format_bytes(memory.get('usedBytes'))} / {format_bytes(memory.get('totalBytes'))} "
            f"(Usage {_percent(memory.get('usagePercent'))}), Free {format_bytes(memory.get('freeBytes'))}."
        )
    disks = result.get("disks") or []
    if disks:
        entries = [
            f"{disk.get('path')}: {format_bytes(disk.get('usedBytes'))} / {format_bytes(disk.get('totalBytes'))} "
            f"({_percent(disk.get('usagePercent'))})"
            for disk in disks[:2]
        ]
        extra = f" +{len(disks) - 2} more" if len(disks) > 2 else ""
        lines.append(f"Disk: {'; '.join(entries)}{extra}.")
    return "\n".join(lines)


PCINFO_TOOL = ToolDefinition(
    name="pcinfo",
    description="Hardware summary, resource totals, and device identifiers of the host PC.",
    schema={
        "metrics": "string[]|null",
        "detailLevel": "string|null",
    },
    triggers=["cpu", "ram", "memory", "disk", "storage", "system", "hardware", "pc", "computer", "uptime", "hostname"],
    execute=execute,
    clarification_hints={
        "metrics": "Which system info do you need (cpu, memory, disk, or system)?",
    },
    summarize=summarize,
    normalize_args=normalize_args,
)
