from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional


@dataclass
class ContextEnvironment:
    date: Optional[str] = None
    time: Optional[str] = None
    weekday: Optional[str] = None
    os: Optional[str] = None
    cwd: Optional[str] = None


@dataclass
class ContextState:
    last_tool_used: Optional[str] = None
    last_tool_status: Optional[str] = None
    last_tool_error: Optional[str] = None
    last_tool_args: Optional[Dict[str, Any]] = None


@dataclass
class ContextUser:
    language: Optional[str] = None
    name: Optional[str] = None


@dataclass
class ContextHistory:
    last_user_input: Optional[str] = None
    last_assistant_output: Optional[str] = None


@dataclass
class ContextSnapshot:
    """Caller-supplied, read-only facts about the current turn."""

    environment: ContextEnvironment = field(default_factory=ContextEnvironment)
    state: ContextState = field(default_factory=ContextState)
    user: ContextUser = field(default_factory=ContextUser)
    history: ContextHistory = field(default_factory=ContextHistory)

    @classmethod
    def from_dict(cls, payload: Optional[Dict[str, Any]]) -> "ContextSnapshot":
        payload = payload or {}

        def _section(kind: type, key: str) -> Any:
            raw = payload.get(key) or {}
            if not isinstance(raw, dict):
                return kind()
            allowed = kind.__dataclass_fields__.keys()
            return kind(**{name: value for name, value in raw.items() if name in allowed})

        return cls(
            environment=_section(ContextEnvironment, "environment"),
            state=_section(ContextState, "state"),
            user=_section(ContextUser, "user"),
            history=_section(ContextHistory, "history"),
        )

    def cwd(self) -> Optional[str]:
        cwd = self.environment.cwd
        if not isinstance(cwd, str):
            return None
        cwd = cwd.strip()
        return cwd or None


def _prune_none(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _prune_none(item) for key, item in value.items() if item is not None}
    if isinstance(value, list):
        return [_prune_none(item) for item in value]
    return value


def build_context_block(snapshot: Optional[ContextSnapshot]) -> str:
    if snapshot is None:
        return ""
    payload = {
        "ENVIRONMENT": asdict(snapshot.environment),
        "STATE": asdict(snapshot.state),
        "USER": asdict(snapshot.user),
        "HISTORY": asdict(snapshot.history),
    }
    return json.dumps(_prune_none(payload), indent=2, ensure_ascii=False)
