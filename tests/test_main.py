from __future__ import annotations

import json
import os

import pytest

from contract_router.adapters.gemini_adapter import GeminiAdapter
from contract_router.adapters.openai_adapter import OpenAIAdapter
from contract_router.config import PipelineConfig
from contract_router.main import build_adapter, build_parser, main


@pytest.fixture(autouse=True)
def _isolated(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    for name in list(os.environ):
        if name.startswith("CONTRACT_ROUTER_"):
            monkeypatch.delenv(name)


def test_parser_defaults():
    args = build_parser().parse_args(["hello"])

    assert args.mode == "mock"
    assert args.provider is None
    assert args.input == "hello"


def test_mock_run_prints_result_and_writes_telemetry(tmp_path, capsys):
    code = main(["--cwd", str(tmp_path), "What is the capital of France?"])

    payload = json.loads(capsys.readouterr().out)
    assert code == 0
    assert payload["kind"] == "strict_answer"
    assert payload["value"] == "Mock answer."
    assert payload["attempts"] == 4

    telemetry_files = list((tmp_path / "runs").glob("*/telemetry.jsonl"))
    assert len(telemetry_files) == 1
    events = [json.loads(line) for line in telemetry_files[0].read_text(encoding="utf-8").splitlines()]
    assert [event["contract_name"] for event in events] == [
        "INTENT_CLASSIFICATION",
        "LANGUAGE_DETECTION",
        "STRICT_ANSWER",
        "SCORING_EVALUATION",
    ]


def test_no_telemetry_flag(tmp_path, capsys):
    assert main(["--no-telemetry", "hello there"]) == 0
    assert not (tmp_path / "runs").exists()


def test_live_mode_requires_api_key(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)

    with pytest.raises(RuntimeError, match="Missing required API key: GEMINI_API_KEY"):
        main(["--mode", "live", "--provider", "gemini", "hello"])


@pytest.mark.parametrize("provider, adapter_type", [("gemini", GeminiAdapter), ("openai", OpenAIAdapter)])
def test_live_adapters_use_configured_transport_retries(monkeypatch, provider, adapter_type):
    monkeypatch.setenv("GEMINI_API_KEY", "test-key")
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")
    monkeypatch.setenv("GEMINI_MAX_ATTEMPTS", "9")

    adapter = build_adapter("live", PipelineConfig(provider=provider, transport_retries=2))

    assert isinstance(adapter, adapter_type)
    assert adapter.max_attempts == 2
