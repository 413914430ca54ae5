from __future__ import annotations

import json
from typing import Any, Dict, Optional

from contract_router.pipeline.types import ALERT_LOW_SCORES

DEFAULT_LOW_SCORE_THRESHOLD = 3
REFERENCE_LIMIT = 4000


def derive_score_alert(
    evaluation: Optional[Dict[str, int]], threshold: int = DEFAULT_LOW_SCORE_THRESHOLD
) -> Optional[str]:
    """``low_scores`` when any criterion falls below ``threshold``."""
    if not evaluation:
        return None
    if any(score < threshold for score in evaluation.values()):
        return ALERT_LOW_SCORES
    return None


def stringify_tool_result(result: Any) -> str:
    if isinstance(result, str):
        return result
    try:
        return json.dumps(result, ensure_ascii=False, indent=2, default=str)
    except (TypeError, ValueError):
        return str(result)


def reference_from_result(result: Any, limit: int = REFERENCE_LIMIT) -> str:
    if result is None:
        return ""
    return stringify_tool_result(result)[:limit]
