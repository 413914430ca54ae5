from __future__ import annotations

import logging
import os
from typing import Any, Dict

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s %(message)s"


def configure_logging(level: str | None = None) -> None:
    resolved = (level or os.getenv("CONTRACT_ROUTER_LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(level=getattr(logging, resolved, logging.INFO), format=LOG_FORMAT)


def format_fields(fields: Dict[str, Any]) -> str:
    return " ".join(f"{key}={value}" for key, value in fields.items() if value is not None)
