from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from contract_router.validation.tool_arguments import collect_schema_errors

ToolSchema = Dict[str, str]


def clamp_positive_int(value: Any, fallback: int, maximum: int) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        return fallback
    return min(int(value), maximum)


@dataclass
class ToolDefinition:
    """A capability the pipeline can route to.

    ``schema`` maps field names to type tags (``string``, ``number|null``...).
    ``args_schema`` is an optional JSON Schema checked before execution.
    ``execute`` may be sync (run in a worker thread) or async.
    """

    name: str
    description: str
    schema: ToolSchema
    triggers: List[str]
    execute: Callable[[Dict[str, Any]], Any]
    args_schema: Optional[Dict[str, Any]] = None
    clarification_hints: Dict[str, str] = field(default_factory=dict)
    summarize: Optional[Callable[[Any], Optional[str]]] = None
    normalize_args: Optional[Callable[[str, Dict[str, Any]], Dict[str, Any]]] = None

    async def run(self, args: Dict[str, Any]) -> Any:
        if inspect.iscoroutinefunction(self.execute):
            return await self.execute(args)
        result = await asyncio.to_thread(self.execute, args)
        if inspect.isawaitable(result):
            return await result
        return result

    def check_args(self, args: Dict[str, Any]) -> Tuple[List[str], List[str]]:
        """Return ``(reasons, missing_fields)``; both empty when args are valid."""
        if not self.args_schema:
            return [], []
        return collect_schema_errors(args, self.args_schema)

    def clarification_hint(self, missing_fields: List[str]) -> Optional[str]:
        for field_name in missing_fields:
            hint = self.clarification_hints.get(field_name)
            if hint:
                return hint
        return None
