from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import List, Protocol

from contract_router.utils.io import append_jsonl
from contract_router.utils.time import utc_timestamp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContractTelemetryEvent:
    contract_name: str
    model: str
    mode: str
    duration_ms: int
    attempts: int
    ok: bool
    timestamp: str
    cancelled: bool = False


class TelemetrySink(Protocol):
    def emit(self, event: ContractTelemetryEvent) -> None:
        raise NotImplementedError


class MemoryTelemetrySink:
    def __init__(self) -> None:
        self.events: List[ContractTelemetryEvent] = []

    def emit(self, event: ContractTelemetryEvent) -> None:
        self.events.append(event)


class JsonlTelemetrySink:
    """Appends one JSON line per contract execution under ``runs/<timestamp>/``."""

    def __init__(self, path: Path) -> None:
        self.path = path

    @classmethod
    def for_run(cls, base_dir: Path, run_id: str | None = None) -> "JsonlTelemetrySink":
        run_dir = base_dir / "runs" / (run_id or utc_timestamp())
        return cls(run_dir / "telemetry.jsonl")

    def emit(self, event: ContractTelemetryEvent) -> None:
        append_jsonl(self.path, asdict(event))
        logger.debug("[telemetry] %s ok=%s attempts=%d", event.contract_name, event.ok, event.attempts)
