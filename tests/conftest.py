from __future__ import annotations

import json
from typing import Any, Callable, Dict, List, Optional

import pytest

from contract_router.adapters.mock_adapter import MockAdapter
from contract_router.config import PipelineConfig
from contract_router.contracts.registry import ContractRegistry
from contract_router.orchestrator import Orchestrator
from contract_router.pipeline.pipeline import Pipeline
from contract_router.runner import ContractRunner
from contract_router.telemetry import MemoryTelemetrySink
from contract_router.tools import filesystem, process, search
from contract_router.tools import http as http_tool
from contract_router.tools.definition import ToolDefinition
from contract_router.tools.registry import ToolRegistry


def intent_reply(intent: str, confidence: float, difficulty: str = "easy") -> str:
    return json.dumps({"intent": intent, "confidence": confidence, "difficulty": difficulty})


def verification_reply(decision: str, confidence: float = 0.9, reason: str = "checked", **extra: Any) -> str:
    payload: Dict[str, Any] = {"decision": decision, "confidence": confidence, "reason": reason}
    payload.update(extra)
    return json.dumps(payload)


class ToolCalls:
    """Records the arguments every fake tool was executed with."""

    def __init__(self) -> None:
        self.calls: List[tuple] = []

    def record(self, name: str, result: Any) -> Callable[[Dict[str, Any]], Any]:
        def _execute(args: Dict[str, Any]) -> Any:
            self.calls.append((name, dict(args)))
            return result(args) if callable(result) else result

        return _execute

    def names(self) -> List[str]:
        return [name for name, _ in self.calls]


def build_fake_tools(calls: ToolCalls) -> List[ToolDefinition]:
    def _explode(args: Dict[str, Any]) -> Any:
        calls.calls.append(("failing", dict(args)))
        raise RuntimeError("boom")

    return [
        ToolDefinition(
            name="filesystem",
            description=filesystem.FILESYSTEM_TOOL.description,
            schema=dict(filesystem.FILESYSTEM_TOOL.schema),
            triggers=list(filesystem.FILESYSTEM_TOOL.triggers),
            execute=calls.record("filesystem", lambda args: {"action": "file", "path": args["path"], "content": "hi"}),
            args_schema=filesystem.ARGS_SCHEMA,
            clarification_hints=dict(filesystem.FILESYSTEM_TOOL.clarification_hints),
        ),
        ToolDefinition(
            name="search",
            description=search.SEARCH_TOOL.description,
            schema=dict(search.SEARCH_TOOL.schema),
            triggers=list(search.SEARCH_TOOL.triggers),
            execute=calls.record("search", {"results": []}),
            args_schema=search.ARGS_SCHEMA,
            clarification_hints=dict(search.SEARCH_TOOL.clarification_hints),
        ),
        ToolDefinition(
            name="process",
            description=process.PROCESS_TOOL.description,
            schema=dict(process.PROCESS_TOOL.schema),
            triggers=list(process.PROCESS_TOOL.triggers),
            execute=calls.record("process", {"action": "list", "processes": []}),
            args_schema=process.ARGS_SCHEMA,
        ),
        ToolDefinition(
            name="http",
            description=http_tool.HTTP_TOOL.description,
            schema=dict(http_tool.HTTP_TOOL.schema),
            triggers=list(http_tool.HTTP_TOOL.triggers),
            execute=calls.record("http", {"status": 200, "body": "ok"}),
            args_schema=http_tool.ARGS_SCHEMA,
        ),
        ToolDefinition(
            name="notes",
            description="Writes a short note about a topic.",
            schema={"topic": "string"},
            triggers=["note"],
            execute=calls.record("notes", lambda args: f"Note about {args['topic']}"),
            args_schema={
                "type": "object",
                "properties": {"topic": {"type": "string", "minLength": 1}},
                "required": ["topic"],
            },
            clarification_hints={"topic": "Which topic should the note cover?"},
        ),
        ToolDefinition(
            name="clock",
            description="Current time.",
            schema={},
            triggers=["clock"],
            execute=calls.record("clock", "12:00"),
        ),
        ToolDefinition(
            name="failing",
            description="Always fails.",
            schema={},
            triggers=["explode"],
            execute=_explode,
        ),
    ]


@pytest.fixture
def contracts() -> ContractRegistry:
    return ContractRegistry.from_directory()


@pytest.fixture
def tool_calls() -> ToolCalls:
    return ToolCalls()


@pytest.fixture
def fake_tools(tool_calls: ToolCalls) -> ToolRegistry:
    return ToolRegistry(build_fake_tools(tool_calls))


@pytest.fixture
def adapter() -> MockAdapter:
    return MockAdapter()


@pytest.fixture
def telemetry() -> MemoryTelemetrySink:
    return MemoryTelemetrySink()


@pytest.fixture
def make_pipeline(contracts, fake_tools, adapter, telemetry):
    def _make(
        config: Optional[PipelineConfig] = None,
        llm: Any = None,
        tools: Optional[ToolRegistry] = None,
    ) -> Pipeline:
        config = config or PipelineConfig()
        orchestrator = Orchestrator(contracts, fake_tools if tools is None else tools, config)
        runner = ContractRunner(llm or adapter, telemetry_sink=telemetry)
        return Pipeline(orchestrator, runner, config)

    return _make
