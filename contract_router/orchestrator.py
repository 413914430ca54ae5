from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Iterable, List, Optional

import yaml

from contract_router.config import PipelineConfig
from contract_router.context import ContextSnapshot, build_context_block
from contract_router.contracts.definition import (
    CONVERSATIONAL_ANSWER,
    IMAGE_RECOGNITION,
    INTENT_CLASSIFICATION,
    LANGUAGE_DETECTION,
    RESPONSE_FORMATTING,
    SCORING_EVALUATION,
    STRICT_ANSWER,
    TOOL_ARGUMENT_EXTRACTION,
    TOOL_ARGUMENT_VERIFICATION,
    ContractPrompt,
)
from contract_router.contracts.registry import ContractRegistry
from contract_router.tools.definition import ToolDefinition, ToolSchema
from contract_router.tools.registry import (
    CONVERSATION_INTENT,
    GENERAL_ANSWER_INTENT,
    TOOL_INTENT_PREFIX,
    ToolRegistry,
)
from contract_router.validation import validators
from contract_router.validation.results import ValidationResult, Validator

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"{{\s*([A-Z0-9_]+)\s*}}")
_EXAMPLES_HEADER = re.compile(r"\n\s*Examples?:", re.IGNORECASE)

# Keys whose JSON payloads are re-rendered as YAML to keep prompts short.
_YAML_RENDERED_KEYS = ("QUESTION", "RESPONSE")

SEARCH_GUIDANCE = (
    "Tool-specific guidance: queries are filenames or patterns, not full paths. "
    "Do not convert explicit paths into query globs. Use provided paths as baseDir/startPath when present."
)
FILESYSTEM_CWD_GUIDANCE = (
    "Tool-specific guidance: if no path is provided, use ENVIRONMENT.cwd from CONTEXT. "
    "Resolve relative paths against ENVIRONMENT.cwd."
)
SEARCH_CWD_GUIDANCE = (
    "Tool-specific guidance: baseDir defaults to ENVIRONMENT.cwd when missing. "
    "Resolve relative baseDir against ENVIRONMENT.cwd. startPath must be relative to baseDir; "
    "if an absolute path is provided, set baseDir to it and startPath to null."
)


def _as_yaml_if_json(value: str) -> str:
    stripped = value.strip()
    if not stripped or stripped[0] not in "{[":
        return value
    try:
        payload = json.loads(stripped)
    except json.JSONDecodeError:
        return value
    return yaml.safe_dump(payload, sort_keys=False, allow_unicode=True, default_flow_style=False).strip()


def render_template(template: str, context: Dict[str, str]) -> str:
    """Substitute ``{{KEY}}`` placeholders; unknown keys render empty."""

    def _replace(match: re.Match) -> str:
        key = match.group(1)
        value = context.get(key)
        if value is None:
            return ""
        if key in _YAML_RENDERED_KEYS:
            return _as_yaml_if_json(value)
        return value

    return _PLACEHOLDER.sub(_replace, template)


def compact_tool_description(description: str) -> str:
    trimmed = description.strip()
    if not trimmed:
        return ""
    match = _EXAMPLES_HEADER.search(trimmed)
    if match:
        trimmed = trimmed[: match.start()].strip()
    first_paragraph = re.split(r"\n\s*\n", trimmed)[0].strip()
    return re.sub(r"\s+", " ", first_paragraph).strip()


class Orchestrator:
    """Renders contract prompts and exposes the validator for each contract."""

    def __init__(
        self,
        contracts: ContractRegistry,
        tools: ToolRegistry,
        config: Optional[PipelineConfig] = None,
    ) -> None:
        self.contracts = contracts
        self.tools = tools
        self.config = config or PipelineConfig()
        self._tool_reference_cache: Optional[str] = None
        self._schema_cache: Dict[str, str] = {}
        self._arguments_validators: Dict[str, Validator] = {}
        tools.add_listener(self.invalidate_tool_cache)

    def invalidate_tool_cache(self, tool: Optional[ToolDefinition] = None) -> None:
        self._tool_reference_cache = None
        self._schema_cache.clear()
        self._arguments_validators.clear()
        if tool is not None:
            logger.debug("[orchestrator] tool caches reset after registering %s", tool.name)

    # -- prompt assembly -------------------------------------------------

    def _resolve_model(self, contract_name: str) -> str:
        override = self.config.model_overrides.get(contract_name)
        if override:
            return override
        return self.contracts.get(contract_name).model

    def _build_prompt(
        self,
        contract_name: str,
        context: Dict[str, str],
        snapshot: Optional[ContextSnapshot] = None,
        user_prompt_override: Optional[str] = None,
    ) -> ContractPrompt:
        contract = self.contracts.get(contract_name)
        prompt_context = dict(context)
        prompt_context["CONTEXT_BLOCK"] = build_context_block(snapshot)
        model = self._resolve_model(contract_name)

        if contract.mode == "raw":
            template = contract.prompt or "\n\n".join(
                part for part in (contract.system_prompt, contract.user_prompt) if part
            )
            return ContractPrompt(
                contract_name=contract_name,
                model=model,
                mode="raw",
                raw_prompt=render_template(template, prompt_context) if template else "",
                retries=dict(contract.retries),
                expects_json=contract.expects_json,
            )

        user_template = user_prompt_override or contract.user_prompt
        return ContractPrompt(
            contract_name=contract_name,
            model=model,
            mode="chat",
            system_prompt=render_template(contract.system_prompt, prompt_context),
            user_prompt=render_template(user_template, prompt_context) if user_template else None,
            retries=dict(contract.retries),
            expects_json=contract.expects_json,
        )

    def _allowed_intents(self) -> str:
        intents = [GENERAL_ANSWER_INTENT, CONVERSATION_INTENT]
        intents.extend(f"{TOOL_INTENT_PREFIX}{name}" for name in self.tools.names())
        return "\n".join(f"- {intent}" for intent in intents)

    def format_tool_reference(self) -> str:
        if self._tool_reference_cache is not None:
            return self._tool_reference_cache
        lines: List[str] = []
        for tool in self.tools:
            description = compact_tool_description(tool.description)
            if description:
                lines.append(f"- {TOOL_INTENT_PREFIX}{tool.name}: {description}")
        lines.append(
            f"- {GENERAL_ANSWER_INTENT}: Select when no tool applies; for general knowledge "
            "(date, time, weekday, etc.), coding help, and complex reasoning."
        )
        lines.append(f"- {CONVERSATION_INTENT}: Select for small talk, greetings, and thanks only.")
        self._tool_reference_cache = "\n".join(lines)
        return self._tool_reference_cache

    def format_tool_schema(self, schema: ToolSchema) -> str:
        key = "|".join(f"{name}:{schema[name]}" for name in sorted(schema))
        cached = self._schema_cache.get(key)
        if cached is not None:
            return cached
        formatted = json.dumps(schema, indent=2)
        self._schema_cache[key] = formatted
        return formatted

    # -- builders --------------------------------------------------------

    def build_intent_classification_prompt(
        self,
        user_input: str,
        snapshot: Optional[ContextSnapshot] = None,
        model_override: Optional[str] = None,
    ) -> ContractPrompt:
        prompt = self._build_prompt(
            INTENT_CLASSIFICATION,
            {
                "USER_INPUT": user_input.strip(),
                "ALLOWED_INTENTS": self._allowed_intents(),
                "TOOL_REFERENCE": self.format_tool_reference(),
            },
            snapshot,
        )
        return prompt.with_model(model_override) if model_override else prompt

    def build_language_detection_prompt(self, user_input: str) -> ContractPrompt:
        return self._build_prompt(LANGUAGE_DETECTION, {"USER_INPUT": user_input.strip()})

    def build_tool_argument_prompt(
        self,
        tool: ToolDefinition,
        user_input: str,
        notes: Optional[str] = None,
        snapshot: Optional[ContextSnapshot] = None,
    ) -> ContractPrompt:
        parts = [user_input.strip()]
        if tool.name == "search":
            parts.append(SEARCH_GUIDANCE)
            parts.append(SEARCH_CWD_GUIDANCE)
        elif tool.name == "filesystem":
            parts.append(FILESYSTEM_CWD_GUIDANCE)
        if notes and notes.strip():
            parts.append(f"Verifier notes:\n{notes.strip()}")
        return self._build_prompt(
            TOOL_ARGUMENT_EXTRACTION,
            {
                "TOOL_NAME": tool.name,
                "TOOL_DESCRIPTION": tool.description,
                "TOOL_SCHEMA": self.format_tool_schema(tool.schema),
                "USER_INPUT": "\n\n".join(parts),
            },
            snapshot,
        )

    def build_tool_verification_prompt(
        self,
        tool: ToolDefinition,
        user_input: str,
        args: Dict[str, Any],
        snapshot: Optional[ContextSnapshot] = None,
    ) -> ContractPrompt:
        return self._build_prompt(
            TOOL_ARGUMENT_VERIFICATION,
            {
                "TOOL_NAME": tool.name,
                "TOOL_DESCRIPTION": tool.description,
                "TOOL_SCHEMA": self.format_tool_schema(tool.schema),
                "USER_INPUT": user_input.strip(),
                "EXTRACTED_ARGS": json.dumps(args, ensure_ascii=False),
            },
            snapshot,
        )

    def scoring_criteria(self) -> List[str]:
        return list(self.contracts.get(SCORING_EVALUATION).criteria)

    def build_scoring_prompt(
        self,
        text: str,
        user_goal: str,
        reference_context: str,
        snapshot: Optional[ContextSnapshot] = None,
    ) -> ContractPrompt:
        return self._build_prompt(
            SCORING_EVALUATION,
            {
                "TEXT": text.strip(),
                "USER_GOAL": user_goal.strip() or "Not provided.",
                "REFERENCE_CONTEXT": reference_context.strip() or "Not provided.",
                "CRITERIA": ", ".join(self.scoring_criteria()),
            },
            snapshot,
        )

    def build_strict_answer_prompt(
        self, question: str, language: str, snapshot: Optional[ContextSnapshot] = None
    ) -> ContractPrompt:
        return self._build_prompt(
            STRICT_ANSWER, {"QUESTION": question.strip(), "LANGUAGE": language}, snapshot
        )

    def build_conversational_answer_prompt(
        self, user_input: str, language: str, snapshot: Optional[ContextSnapshot] = None
    ) -> ContractPrompt:
        return self._build_prompt(
            CONVERSATIONAL_ANSWER, {"USER_INPUT": user_input.strip(), "LANGUAGE": language}, snapshot
        )

    def build_response_formatting_prompt(
        self,
        response: str,
        language: str,
        request_context: Optional[str] = None,
        tool_name: Optional[str] = None,
        snapshot: Optional[ContextSnapshot] = None,
    ) -> ContractPrompt:
        return self._build_prompt(
            RESPONSE_FORMATTING,
            {
                "RESPONSE": response.strip(),
                "REQUEST_CONTEXT": (request_context or "").strip() or "Not provided.",
                "TOOL_NAME": tool_name or "Not specified",
                "LANGUAGE": language,
            },
            snapshot,
        )

    def build_image_recognition_prompt(
        self,
        user_input: str,
        images: Iterable[str],
        language: str,
        snapshot: Optional[ContextSnapshot] = None,
    ) -> ContractPrompt:
        payload = list(images)
        prompt = self._build_prompt(
            IMAGE_RECOGNITION,
            {
                "USER_INPUT": user_input.strip() or "No additional question provided.",
                "IMAGE_COUNT": str(len(payload)),
                "LANGUAGE": language,
            },
            snapshot,
        )
        return prompt.with_images(payload)

    # -- validators ------------------------------------------------------

    def validate_intent_classification(self, raw: str) -> ValidationResult:
        return validators.validate_intent_classification(raw)

    def validate_language_detection(self, raw: str) -> ValidationResult:
        return validators.validate_language_detection(raw)

    def tool_arguments_validator(self, tool: ToolDefinition) -> Validator:
        validator = self._arguments_validators.get(tool.name)
        if validator is None:
            validator = validators.make_tool_arguments_validator(tool.schema)
            self._arguments_validators[tool.name] = validator
        return validator

    def validate_tool_argument_verification(self, raw: str) -> ValidationResult:
        return validators.validate_tool_argument_verification(raw)

    def validate_scoring(self, raw: str) -> ValidationResult:
        return validators.validate_scoring(raw)

    def validate_strict_answer(self, raw: str) -> ValidationResult:
        return validators.validate_strict_answer(raw)

    def validate_conversational_answer(self, raw: str) -> ValidationResult:
        return validators.validate_conversational_answer(raw)

    def validate_response_formatting(self, raw: str) -> ValidationResult:
        return validators.validate_response_formatting(raw)

    def validate_image_recognition(self, raw: str) -> ValidationResult:
        return validators.validate_image_recognition(raw)
