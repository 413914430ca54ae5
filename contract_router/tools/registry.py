from __future__ import annotations

import logging
from typing import Callable, Dict, Iterable, Iterator, List, Optional

from contract_router.tools.definition import ToolDefinition
from contract_router.validation.tool_arguments import type_tag_to_json_schema

logger = logging.getLogger(__name__)

GENERAL_ANSWER_INTENT = "answer.general"
CONVERSATION_INTENT = "answer.conversation"
TOOL_INTENT_PREFIX = "tool."


def normalize_triggers(raw: Iterable[str], name: str) -> List[str]:
    if isinstance(raw, str) or not raw:
        raise ValueError(f"Tool {name!r} must declare a non-empty 'triggers' list")
    normalized: List[str] = []
    for trigger in raw:
        value = str(trigger).strip().lower()
        if value and value not in normalized:
            normalized.append(value)
    if not normalized:
        raise ValueError(f"Tool {name!r} must declare at least one valid trigger")
    return normalized


class ToolRegistry:
    def __init__(self, tools: Optional[Iterable[ToolDefinition]] = None) -> None:
        self._tools: Dict[str, ToolDefinition] = {}
        self._listeners: List[Callable[[ToolDefinition], None]] = []
        for tool in tools or []:
            self.register(tool)

    def add_listener(self, callback: Callable[[ToolDefinition], None]) -> None:
        self._listeners.append(callback)

    def register(self, tool: ToolDefinition) -> None:
        if not tool.name or not tool.name.strip():
            raise ValueError("Tool name is required")
        for field_name, type_tag in tool.schema.items():
            try:
                type_tag_to_json_schema(type_tag)
            except ValueError as exc:
                raise ValueError(f"Tool {tool.name!r} field {field_name!r}: {exc}") from exc
        tool.triggers = normalize_triggers(tool.triggers, tool.name)
        self._tools[tool.name] = tool
        logger.debug("[tools] registered %s", tool.name)
        for callback in self._listeners:
            callback(tool)

    def get(self, name: str) -> Optional[ToolDefinition]:
        return self._tools.get(name)

    def names(self) -> List[str]:
        return list(self._tools.keys())

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[ToolDefinition]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)
