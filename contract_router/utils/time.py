from __future__ import annotations

import time
from datetime import datetime, timezone


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")


def utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


def elapsed_ms(start_ms: float) -> int:
    return max(0, int(round(monotonic_ms() - start_ms)))
