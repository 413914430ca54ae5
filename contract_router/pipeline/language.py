from __future__ import annotations

from typing import Optional

LANGUAGE_FALLBACK = "unknown"


def derive_detected_language(code: Optional[str]) -> str:
    if not code:
        return LANGUAGE_FALLBACK
    normalized = code.strip().lower()
    return normalized or LANGUAGE_FALLBACK
