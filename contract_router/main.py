from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from contract_router.adapters.gemini_adapter import GeminiAdapter
from contract_router.adapters.llm_base import LLMAdapter
from contract_router.adapters.mock_adapter import MockAdapter
from contract_router.adapters.openai_adapter import OpenAIAdapter
from contract_router.config import PROVIDERS, PipelineConfig, load_config
from contract_router.context import ContextSnapshot
from contract_router.contracts.registry import ContractRegistry
from contract_router.orchestrator import Orchestrator
from contract_router.pipeline.pipeline import Pipeline
from contract_router.pipeline.types import PipelineResult, result_to_dict
from contract_router.runner import ContractRunner
from contract_router.telemetry import JsonlTelemetrySink
from contract_router.tools.defaults import build_default_registry
from contract_router.utils.log import configure_logging
from contract_router.utils.time import utc_iso


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Contract router")
    parser.add_argument("--mode", choices=["mock", "live"], default="mock")
    parser.add_argument("--provider", choices=list(PROVIDERS), default=None)
    parser.add_argument("--config", default=None, help="YAML file with pipeline settings")
    parser.add_argument("--log-level", default=None)
    parser.add_argument("--cwd", default=None, help="Working directory reported to the pipeline")
    parser.add_argument("--no-telemetry", action="store_true")
    parser.add_argument("input", help="User input to route")
    return parser


def _ensure_env(base_dir: Path, config: PipelineConfig) -> None:
    load_dotenv(base_dir / ".env")
    key_name = config.gemini_api_key_env if config.provider == "gemini" else config.openai_api_key_env
    if os.getenv(key_name):
        return
    if config.provider == "openai" and config.base_url:
        return
    raise RuntimeError(
        f"Missing required API key: {key_name}. Create a .env file from .env.example and set the key."
    )


def build_adapter(mode: str, config: PipelineConfig) -> LLMAdapter:
    if mode == "mock":
        return MockAdapter()
    if config.provider == "gemini":
        return GeminiAdapter(
            api_key=os.getenv(config.gemini_api_key_env),
            max_output_tokens=config.max_output_tokens,
            temperature=config.temperature,
            max_attempts=config.transport_retries,
        )
    return OpenAIAdapter(
        api_key=os.getenv(config.openai_api_key_env),
        base_url=config.base_url,
        max_output_tokens=config.max_output_tokens,
        temperature=config.temperature,
        max_attempts=config.transport_retries,
    )


def build_pipeline(
    adapter: LLMAdapter,
    config: PipelineConfig,
    telemetry_sink: Optional[JsonlTelemetrySink] = None,
) -> Pipeline:
    tools = build_default_registry(config)
    orchestrator = Orchestrator(ContractRegistry.from_directory(), tools, config)
    runner = ContractRunner(adapter, telemetry_sink=telemetry_sink, history_retention=config.history_retention)
    return Pipeline(orchestrator, runner, config)


def _default_snapshot(cwd: Optional[str]) -> ContextSnapshot:
    snapshot = ContextSnapshot()
    timestamp = utc_iso()
    snapshot.environment.date = timestamp[:10]
    snapshot.environment.time = timestamp[11:19]
    snapshot.environment.os = sys.platform
    snapshot.environment.cwd = cwd or os.getcwd()
    return snapshot


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)
    base_dir = Path.cwd()

    config = load_config(args.config)
    if args.provider:
        config.provider = args.provider
    if args.mode == "live":
        _ensure_env(base_dir, config)

    sink = None if args.no_telemetry else JsonlTelemetrySink.for_run(base_dir)
    pipeline = build_pipeline(build_adapter(args.mode, config), config, sink)
    result: PipelineResult = asyncio.run(pipeline.run(args.input, context_snapshot=_default_snapshot(args.cwd)))
    print(json.dumps(result_to_dict(result), indent=2, ensure_ascii=False, default=str))
    return 0 if result.ok else 1


if __name__ == "__main__":
    sys.exit(main())
