from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

ENV_PREFIX = "CONTRACT_ROUTER_"
HISTORY_RETENTION_POLICIES = ("none", "minimal", "full")
PROVIDERS = ("openai", "gemini")

DEFAULT_SHELL_PROGRAMS = [
    "sh",
    "bash",
    "ps",
    "cat",
    "ls",
    "pwd",
    "echo",
    "grep",
    "find",
    "which",
    "env",
    "git",
    "docker",
    "npm",
    "systemctl",
]


@dataclass
class PipelineConfig:
    min_tool_confidence: float = 0.6
    min_tool_trigger_confidence: float = 0.85
    min_clarify_intent_confidence: float = 0.9
    min_clarify_verification_confidence: float = 0.9
    required_null_ratio_threshold: float = 0.5
    low_score_threshold: int = 3
    tool_argument_verification_retries: int = 1
    escalation_intent_model: str = "llama3.1:8b"
    model_overrides: Dict[str, str] = field(default_factory=dict)
    null_skip_exempt_tools: List[str] = field(default_factory=list)
    history_retention: str = "minimal"
    shell_allowed_programs: List[str] = field(default_factory=lambda: list(DEFAULT_SHELL_PROGRAMS))
    provider: str = "openai"
    base_url: Optional[str] = None
    openai_api_key_env: str = "OPENAI_API_KEY"
    gemini_api_key_env: str = "GEMINI_API_KEY"
    max_output_tokens: int = 800
    temperature: float = 0.2
    transport_retries: int = 4


def _coerce_float(value: Any, default: float, lower: float = 0.0, upper: float = 1.0) -> float:
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return default
    if parsed < lower or parsed > upper:
        return default
    return parsed


def _coerce_int(value: Any, default: int, lower: int = 0) -> int:
    if isinstance(value, bool):
        return default
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    return parsed if parsed >= lower else default


def _coerce_str_list(value: Any, default: List[str]) -> List[str]:
    if isinstance(value, str):
        value = [part for part in value.split(",")]
    if not isinstance(value, list):
        return default
    return [str(item).strip() for item in value if str(item).strip()]


def _coerce_str_map(value: Any, default: Dict[str, str]) -> Dict[str, str]:
    if isinstance(value, str):
        parsed: Dict[str, str] = {}
        for pair in value.split(","):
            if "=" not in pair:
                continue
            key, _, model = pair.partition("=")
            if key.strip() and model.strip():
                parsed[key.strip()] = model.strip()
        return parsed
    if not isinstance(value, dict):
        return default
    return {str(key): str(model) for key, model in value.items() if model}


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        payload = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid config file {path}: {exc}") from exc
    if not isinstance(payload, dict):
        raise ValueError(f"Config file {path} must contain a mapping.")
    return payload


def _env_overrides() -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    for item in fields(PipelineConfig):
        raw = os.getenv(f"{ENV_PREFIX}{item.name.upper()}")
        if raw is not None and raw != "":
            overrides[item.name] = raw
    return overrides


def build_config(values: Dict[str, Any]) -> PipelineConfig:
    defaults = PipelineConfig()
    unknown = sorted(set(values) - {item.name for item in fields(PipelineConfig)})
    if unknown:
        logger.warning("[config] ignoring unknown keys: %s", ", ".join(unknown))

    retention = str(values.get("history_retention", defaults.history_retention)).strip().lower()
    if retention not in HISTORY_RETENTION_POLICIES:
        retention = defaults.history_retention
    provider = str(values.get("provider", defaults.provider)).strip().lower()
    if provider not in PROVIDERS:
        provider = defaults.provider

    return PipelineConfig(
        min_tool_confidence=_coerce_float(
            values.get("min_tool_confidence"), defaults.min_tool_confidence
        ),
        min_tool_trigger_confidence=_coerce_float(
            values.get("min_tool_trigger_confidence"), defaults.min_tool_trigger_confidence
        ),
        min_clarify_intent_confidence=_coerce_float(
            values.get("min_clarify_intent_confidence"), defaults.min_clarify_intent_confidence
        ),
        min_clarify_verification_confidence=_coerce_float(
            values.get("min_clarify_verification_confidence"),
            defaults.min_clarify_verification_confidence,
        ),
        required_null_ratio_threshold=_coerce_float(
            values.get("required_null_ratio_threshold"), defaults.required_null_ratio_threshold
        ),
        low_score_threshold=_coerce_int(values.get("low_score_threshold"), defaults.low_score_threshold),
        tool_argument_verification_retries=_coerce_int(
            values.get("tool_argument_verification_retries"),
            defaults.tool_argument_verification_retries,
        ),
        escalation_intent_model=str(
            values.get("escalation_intent_model") or defaults.escalation_intent_model
        ),
        model_overrides=_coerce_str_map(values.get("model_overrides"), defaults.model_overrides),
        null_skip_exempt_tools=_coerce_str_list(
            values.get("null_skip_exempt_tools"), defaults.null_skip_exempt_tools
        ),
        history_retention=retention,
        shell_allowed_programs=_coerce_str_list(
            values.get("shell_allowed_programs"), defaults.shell_allowed_programs
        ),
        provider=provider,
        base_url=values.get("base_url") or defaults.base_url,
        openai_api_key_env=str(values.get("openai_api_key_env") or defaults.openai_api_key_env),
        gemini_api_key_env=str(values.get("gemini_api_key_env") or defaults.gemini_api_key_env),
        max_output_tokens=_coerce_int(
            values.get("max_output_tokens"), defaults.max_output_tokens, lower=1
        ),
        temperature=_coerce_float(values.get("temperature"), defaults.temperature, upper=2.0),
        transport_retries=_coerce_int(values.get("transport_retries"), defaults.transport_retries, lower=1),
    )


def load_config(path: Path | str | None = None, env_file: Path | str | None = None) -> PipelineConfig:
    """Resolve configuration from ``.env``, an optional YAML file and env overrides.

    Later sources win: YAML values are replaced by ``CONTRACT_ROUTER_*`` variables.
    """
    if env_file:
        load_dotenv(env_file)
    else:
        load_dotenv()
    values: Dict[str, Any] = {}
    config_path = path or os.getenv(f"{ENV_PREFIX}CONFIG")
    if config_path:
        resolved = Path(config_path)
        if not resolved.exists():
            raise FileNotFoundError(f"Config file not found: {resolved}")
        values.update(_read_yaml(resolved))
    values.update(_env_overrides())
    return build_config(values)
