from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from contract_router.cancellation import CancellationToken, ContractCancelledError, race_with_token
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
from contract_router.orchestrator import Orchestrator
from contract_router.pipeline.arguments import (
    apply_shell_cwd,
    apply_working_directory_defaults,
    describe_verification_notes,
    missing_context_fields,
    should_skip_tool_execution,
)
from contract_router.pipeline.direct import extract_path_candidate, parse_direct_tool_request
from contract_router.pipeline.fallback import FallbackChain
from contract_router.pipeline.language import LANGUAGE_FALLBACK, derive_detected_language
from contract_router.pipeline.scoring import derive_score_alert, reference_from_result, stringify_tool_result
from contract_router.pipeline.types import (
    ALERT_LOW_SCORES,
    ALERT_SCORING_FAILED,
    ERROR_CANCELLED,
    ERROR_TOOL,
    STAGE_IMAGE_RECOGNITION,
    STAGE_INTENT,
    STAGE_STRICT_ANSWER,
    STAGE_TOOL_ARGUMENTS,
    STAGE_TOOL_EXECUTION,
    DirectToolMatch,
    ErrorResult,
    ImageAttachment,
    LanguageOutcome,
    PipelineError,
    PipelineResult,
    PipelineRunOptions,
    ScoringOutcome,
    StrictAnswerResult,
    ToolResult,
    VerificationOutcome,
)
from contract_router.runner import ContractExecutionResult, ContractRunner, RunnerOptions
from contract_router.tools.definition import ToolDefinition
from contract_router.tools.registry import CONVERSATION_INTENT, TOOL_INTENT_PREFIX
from contract_router.utils.log import format_fields
from contract_router.utils.time import elapsed_ms, monotonic_ms
from contract_router.validation.results import Validator

logger = logging.getLogger(__name__)

SEARCH_TOOL_NAME = "search"
FILESYSTEM_TOOL_NAME = "filesystem"

ACCEPT = "accept"
RETRY = "retry"
ABORT = "abort"
CLARIFY = "clarify"


@dataclass
class _RunState:
    """Per-call bookkeeping; never shared between ``run`` invocations."""

    user_input: str
    snapshot: Optional[ContextSnapshot]
    options: PipelineRunOptions
    started_ms: float = field(default_factory=monotonic_ms)
    attempts: int = 0
    stage: str = STAGE_INTENT


@dataclass
class _Resolution:
    """Outcome of the verification loop: run the tool, ask, or fall back."""

    action: str
    args: Dict[str, Any] = field(default_factory=dict)
    missing_fields: List[str] = field(default_factory=list)
    reason: str = ""


def normalize_image_attachments(
    attachments: Optional[Iterable[Union[ImageAttachment, Dict[str, Any], str]]],
) -> List[ImageAttachment]:
    normalized: List[ImageAttachment] = []
    for item in attachments or []:
        if isinstance(item, ImageAttachment):
            attachment = item
        elif isinstance(item, dict):
            attachment = ImageAttachment(
                data=str(item.get("data") or ""),
                mime_type=str(item.get("mime_type") or item.get("mimeType") or "image/png"),
                name=str(item.get("name") or ""),
            )
        elif isinstance(item, str):
            attachment = ImageAttachment(data=item)
        else:
            continue
        if attachment.data.strip():
            normalized.append(attachment)
    return normalized


def build_tool_error(error: Optional[BaseException]) -> PipelineError:
    message = str(error) if error is not None and str(error) else "Tool execution failed."
    return PipelineError(code=ERROR_TOOL, message=message)


def build_clarification_question(tool: ToolDefinition, missing_fields: List[str]) -> str:
    hint = tool.clarification_hint(missing_fields)
    if missing_fields:
        if missing_fields == ["path"]:
            return hint or "Which path should I use?"
        if hint:
            return hint
        return f"I can use the {tool.name} tool, but I need {', '.join(missing_fields)}."
    return hint or f"I can use the {tool.name} tool for that, but I need a bit more detail."


class Pipeline:
    """Resolves one user turn into exactly one PipelineResult."""

    def __init__(
        self,
        orchestrator: Orchestrator,
        runner: ContractRunner,
        config: Optional[PipelineConfig] = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.runner = runner
        self.config = config or orchestrator.config
        self.tools = orchestrator.tools

    async def run(
        self,
        user_input: str,
        attachments: Optional[Iterable[Union[ImageAttachment, Dict[str, Any], str]]] = None,
        context_snapshot: Optional[Union[ContextSnapshot, Dict[str, Any]]] = None,
        options: Optional[PipelineRunOptions] = None,
    ) -> PipelineResult:
        options = options or PipelineRunOptions()
        snapshot = self._coerce_snapshot(context_snapshot)
        images = normalize_image_attachments(attachments)

        first = await self._run_guarded(user_input, images, snapshot, options)
        if not self._should_escalate(first, options):
            return first

        logger.info(
            "[pipeline] Low scores detected, retrying with escalated intent model %s",
            self.config.escalation_intent_model,
        )
        escalated_options = PipelineRunOptions(
            intent_model_override=self.config.escalation_intent_model,
            allow_low_score_retry=False,
            cancellation_token=options.cancellation_token,
        )
        second = await self._run_guarded(user_input, images, snapshot, escalated_options)
        return replace(second, attempts=second.attempts + first.attempts)

    def _should_escalate(self, result: PipelineResult, options: PipelineRunOptions) -> bool:
        if not result.ok or options.intent_model_override or not options.allow_low_score_retry:
            return False
        return getattr(result, "alert", None) == ALERT_LOW_SCORES

    @staticmethod
    def _coerce_snapshot(
        context_snapshot: Optional[Union[ContextSnapshot, Dict[str, Any]]],
    ) -> Optional[ContextSnapshot]:
        if context_snapshot is None or isinstance(context_snapshot, ContextSnapshot):
            return context_snapshot
        return ContextSnapshot.from_dict(context_snapshot)

    async def _run_guarded(
        self,
        user_input: str,
        images: List[ImageAttachment],
        snapshot: Optional[ContextSnapshot],
        options: PipelineRunOptions,
    ) -> PipelineResult:
        state = _RunState(user_input=user_input or "", snapshot=snapshot, options=options)
        try:
            return await self._run_once(state, images)
        except ContractCancelledError as exc:
            stage = exc.stage or state.stage
            result = ErrorResult(
                stage=stage,
                attempts=state.attempts,
                error=PipelineError(code=ERROR_CANCELLED, message=str(exc)),
            )
            return self._complete(state, result, stage, reason="cancelled")

    # -- main flow -------------------------------------------------------

    async def _run_once(self, state: _RunState, images: List[ImageAttachment]) -> PipelineResult:
        self._ensure_not_cancelled(state)

        if images:
            result = await self._run_image_recognition(state, images)
            return self._complete(state, result, STAGE_IMAGE_RECOGNITION, image_count=len(images))

        direct = parse_direct_tool_request(state.user_input)
        if direct is not None and direct.tool in self.tools:
            result = await self._run_direct_tool(state, direct)
            return self._complete(state, result, "direct_tool", tool=direct.tool, reason=direct.reason)

        state.stage = STAGE_INTENT
        intent_prompt = self.orchestrator.build_intent_classification_prompt(
            state.user_input, state.snapshot, state.options.intent_model_override
        )
        intent_result = await self._execute(
            state, INTENT_CLASSIFICATION, intent_prompt, self.orchestrator.validate_intent_classification
        )
        if not intent_result.ok:
            logger.warning("[pipeline] Intent classification failed, falling back to strict answer")
            result = await self._run_non_tool_answer(state, None)
            return self._complete(state, result, "intent_failed", reason="intent_classification_failure")

        intent = intent_result.value["intent"]
        confidence = intent_result.value["confidence"]
        logger.info("[pipeline] Intent classified intent=%s confidence=%.2f", intent, confidence)

        if not intent.startswith(TOOL_INTENT_PREFIX):
            result = await self._run_non_tool_answer(state, intent)
            return self._complete(state, result, STAGE_STRICT_ANSWER, reason="non_tool_intent", intent=intent)

        if confidence < self.config.min_tool_confidence:
            result = await self._run_non_tool_answer(state, intent)
            return self._complete(state, result, STAGE_STRICT_ANSWER, reason="low_tool_confidence", intent=intent)

        tool = self.tools.get(intent[len(TOOL_INTENT_PREFIX):])
        if tool is None:
            result = await self._run_non_tool_answer(state, intent)
            return self._complete(state, result, STAGE_STRICT_ANSWER, reason="tool_not_found", intent=intent)

        if not self._has_tool_trigger(state.user_input, tool) and confidence < self.config.min_tool_trigger_confidence:
            result = await self._run_non_tool_answer(state, intent)
            return self._complete(
                state, result, STAGE_STRICT_ANSWER, reason="tool_trigger_missing", tool=tool.name, intent=intent
            )

        notes: Optional[str] = None
        override_reason: Optional[str] = None
        if tool.name == SEARCH_TOOL_NAME:
            path_candidate = extract_path_candidate(state.user_input)
            filesystem = self.tools.get(FILESYSTEM_TOOL_NAME)
            if path_candidate and filesystem is not None:
                tool = filesystem
                override_reason = "search_to_filesystem_path_detected"
                notes = f'Detected path: {path_candidate}\nUse action "list" unless user explicitly asked to read a file.'
                logger.info("[pipeline] Search request names a path, using filesystem path=%s", path_candidate)

        return await self._run_tool_flow(state, tool, intent, confidence, notes, override_reason)

    async def _run_tool_flow(
        self,
        state: _RunState,
        tool: ToolDefinition,
        intent: str,
        confidence: float,
        notes: Optional[str],
        override_reason: Optional[str],
    ) -> PipelineResult:
        args: Dict[str, Any] = {}
        if tool.schema:
            state.stage = STAGE_TOOL_ARGUMENTS
            extracted = await self._extract_arguments(state, tool, notes)
            if extracted is None:
                logger.warning("[pipeline] Tool argument extraction failed for %s, falling back", tool.name)
                result = await self._run_non_tool_answer(state, intent)
                return self._complete(
                    state, result, STAGE_STRICT_ANSWER, reason="argument_extraction_failed", tool=tool.name, intent=intent
                )

            missing = missing_context_fields(tool.name, extracted)
            if missing:
                result = await self._run_clarification(state, tool, missing, intent)
                return self._complete(
                    state, result, STAGE_STRICT_ANSWER, reason="required_fields_missing", tool=tool.name, intent=intent
                )

            resolution = await self._verify_arguments(state, tool, confidence, extracted, notes)
            if resolution.action == CLARIFY:
                result = await self._run_clarification(state, tool, resolution.missing_fields, intent)
                return self._complete(state, result, STAGE_STRICT_ANSWER, reason="tool_clarify", tool=tool.name, intent=intent)
            if resolution.action != ACCEPT:
                result = await self._run_non_tool_answer(state, intent)
                return self._complete(
                    state, result, STAGE_STRICT_ANSWER, reason=resolution.reason, tool=tool.name, intent=intent
                )
            args = resolution.args

        if tool.name not in self.config.null_skip_exempt_tools and should_skip_tool_execution(
            tool.schema, args, self.config.required_null_ratio_threshold
        ):
            logger.info("[pipeline] Too many required arguments are null for %s, falling back", tool.name)
            result = await self._run_non_tool_answer(state, intent)
            return self._complete(state, result, STAGE_STRICT_ANSWER, reason="null_tool_arguments", tool=tool.name, intent=intent)

        args = apply_shell_cwd(tool.name, args, state.snapshot)
        result = await self._execute_tool(state, tool, args, intent, confidence)
        return self._complete(state, result, STAGE_TOOL_EXECUTION, tool=tool.name, reason=override_reason)

    # -- arguments -------------------------------------------------------

    async def _extract_arguments(
        self, state: _RunState, tool: ToolDefinition, notes: Optional[str]
    ) -> Optional[Dict[str, Any]]:
        prompt = self.orchestrator.build_tool_argument_prompt(tool, state.user_input, notes, state.snapshot)
        result = await self._execute(
            state, TOOL_ARGUMENT_EXTRACTION, prompt, self.orchestrator.tool_arguments_validator(tool)
        )
        if not result.ok:
            return None
        args = dict(result.value)
        if tool.normalize_args is not None:
            args = tool.normalize_args(state.user_input, args)
        return apply_working_directory_defaults(tool.name, args, state.snapshot)

    def _check_args_schema(self, tool: ToolDefinition, args: Dict[str, Any]) -> Optional[VerificationOutcome]:
        reasons, missing = tool.check_args(args)
        if not reasons:
            return None
        return VerificationOutcome(
            decision=RETRY,
            confidence=1.0,
            reason=f"args_schema_validation_failed: {'; '.join(reasons)}",
            missing_fields=missing,
        )

    async def _verify_arguments(
        self,
        state: _RunState,
        tool: ToolDefinition,
        intent_confidence: float,
        args: Dict[str, Any],
        notes: Optional[str],
    ) -> _Resolution:
        retries_left = self.config.tool_argument_verification_retries
        while True:
            outcome = self._check_args_schema(tool, args)
            if outcome is None:
                prompt = self.orchestrator.build_tool_verification_prompt(tool, state.user_input, args, state.snapshot)
                verification = await self._execute(
                    state, TOOL_ARGUMENT_VERIFICATION, prompt, self.orchestrator.validate_tool_argument_verification
                )
                if not verification.ok:
                    logger.warning("[pipeline] Tool argument verification failed for %s", tool.name)
                    return _Resolution(action=ABORT, reason="argument_verification_failed")
                outcome = VerificationOutcome.from_value(verification.value)

            logger.info(
                "[pipeline] Tool argument verification decision tool=%s decision=%s confidence=%.2f",
                tool.name,
                outcome.decision,
                outcome.confidence,
            )

            if outcome.decision == ACCEPT:
                return _Resolution(action=ACCEPT, args=args)
            if outcome.decision == ABORT:
                return _Resolution(action=ABORT, reason="argument_verification_abort")
            if outcome.decision == CLARIFY:
                if (
                    intent_confidence >= self.config.min_clarify_intent_confidence
                    and outcome.confidence >= self.config.min_clarify_verification_confidence
                ):
                    return _Resolution(action=CLARIFY, missing_fields=outcome.missing_fields)
                return _Resolution(action=ABORT, reason="argument_verification_clarify_denied")

            if retries_left <= 0:
                return _Resolution(action=ABORT, reason="argument_verification_retries_exhausted")
            retries_left -= 1

            feedback = describe_verification_notes(outcome.reason, outcome.missing_fields, outcome.suggested_args)
            combined = "\n\n".join(part for part in (notes, feedback) if part)
            extracted = await self._extract_arguments(state, tool, combined)
            if extracted is None:
                return _Resolution(action=ABORT, reason="argument_extraction_failed")
            args = extracted

    async def _run_clarification(
        self, state: _RunState, tool: ToolDefinition, missing_fields: List[str], intent: str
    ) -> PipelineResult:
        language = await self._detect_language(state)
        question = build_clarification_question(tool, missing_fields)
        formatted = await self._format_response(state, question, language.language, tool.name, fallback=question)
        return StrictAnswerResult(
            value=formatted,
            intent=intent,
            language=language.language,
            attempts=state.attempts,
        )

    # -- tool execution --------------------------------------------------

    async def _run_direct_tool(self, state: _RunState, direct: DirectToolMatch) -> PipelineResult:
        tool = self.tools.get(direct.tool)
        reasons, _ = tool.check_args(direct.args)
        if reasons:
            return ErrorResult(
                stage=STAGE_TOOL_EXECUTION,
                attempts=state.attempts,
                error=PipelineError(code=ERROR_TOOL, message=f"Invalid direct tool arguments: {'; '.join(reasons)}"),
            )
        logger.info("[pipeline] Direct tool match tool=%s reason=%s", direct.tool, direct.reason)
        return await self._execute_tool(state, tool, direct.args, f"{TOOL_INTENT_PREFIX}{tool.name}", 1.0)

    async def _execute_tool(
        self,
        state: _RunState,
        tool: ToolDefinition,
        args: Dict[str, Any],
        intent: str,
        confidence: float,
    ) -> PipelineResult:
        state.stage = STAGE_TOOL_EXECUTION
        token = state.options.cancellation_token

        async def _tool_branch() -> Tuple[bool, Any]:
            try:
                return True, await race_with_token(tool.run(args), token)
            except ContractCancelledError as exc:
                raise ContractCancelledError(STAGE_TOOL_EXECUTION, state.attempts) from exc
            except Exception as exc:
                return False, exc

        language, (succeeded, payload) = await asyncio.gather(self._detect_language(state), _tool_branch())
        if not succeeded:
            logger.error("[pipeline] Tool %s execution failed: %s", tool.name, payload)
            return ErrorResult(stage=STAGE_TOOL_EXECUTION, attempts=state.attempts, error=build_tool_error(payload))

        summary: Optional[str] = None
        if isinstance(payload, str):
            value: Any = await self._format_response(state, payload, language.language, tool.name, fallback=payload)
            scored_text = value
        else:
            value = payload
            summary = await self._summarize(state, tool, payload, language.language)
            scored_text = summary

        logger.info("[pipeline] Tool executed tool=%s attempts=%d", tool.name, state.attempts)
        scoring = await self._score(state, scored_text, reference_from_result(payload))
        return ToolResult(
            tool=tool.name,
            args=args,
            result=value,
            summary=summary,
            intent=intent,
            confidence=confidence,
            language=language.language,
            attempts=state.attempts,
            evaluation=scoring.evaluation,
            alert=scoring.alert,
        )

    async def _summarize(self, state: _RunState, tool: ToolDefinition, payload: Any, language: str) -> str:
        if tool.summarize is not None:
            summary = tool.summarize(payload)
            if summary:
                return summary
        fallback = f"Tool {tool.name} output is ready. Raw data below."
        return await self._format_response(state, stringify_tool_result(payload), language, tool.name, fallback=fallback)

    async def _format_response(
        self, state: _RunState, text: str, language: str, tool_name: Optional[str], fallback: str
    ) -> str:
        """Best effort: any failure returns ``fallback`` instead of an error."""
        prompt = self.orchestrator.build_response_formatting_prompt(
            text, language, state.user_input, tool_name, state.snapshot
        )
        try:
            result = await self._execute(
                state, RESPONSE_FORMATTING, prompt, self.orchestrator.validate_response_formatting
            )
        except ContractCancelledError:
            raise
        except Exception as exc:
            logger.warning("[pipeline] Response formatting error, returning fallback text: %s", exc)
            return fallback
        if result.ok:
            return result.value
        logger.warning("[pipeline] Response formatting failed, returning fallback text")
        return fallback

    # -- non-tool answers ------------------------------------------------

    async def _run_non_tool_answer(self, state: _RunState, intent: Optional[str]) -> PipelineResult:
        state.stage = STAGE_STRICT_ANSWER
        language = (await self._detect_language(state)).language

        chain = FallbackChain()
        if intent == CONVERSATION_INTENT:
            chain.add(CONVERSATIONAL_ANSWER, lambda: self._run_conversational_answer(state, intent, language))
        chain.add(STRICT_ANSWER, lambda: self._run_strict_answer(state, intent, language))
        result = await chain.run()
        if result is None:
            return ErrorResult(stage=STAGE_STRICT_ANSWER, attempts=state.attempts)
        return result

    async def _run_conversational_answer(
        self, state: _RunState, intent: Optional[str], language: str
    ) -> Optional[PipelineResult]:
        prompt = self.orchestrator.build_conversational_answer_prompt(state.user_input, language, state.snapshot)
        result = await self._execute(
            state, CONVERSATIONAL_ANSWER, prompt, self.orchestrator.validate_conversational_answer
        )
        if not result.ok:
            logger.warning("[pipeline] Conversational answer failed, trying strict answer")
            return None
        return await self._scored_answer(state, result.value, intent, language)

    async def _run_strict_answer(self, state: _RunState, intent: Optional[str], language: str) -> PipelineResult:
        prompt = self.orchestrator.build_strict_answer_prompt(state.user_input, language, state.snapshot)
        result = await self._execute(state, STRICT_ANSWER, prompt, self.orchestrator.validate_strict_answer)
        if not result.ok:
            logger.error("[pipeline] Strict answer contract failed")
            return ErrorResult(stage=STAGE_STRICT_ANSWER, attempts=state.attempts)
        return await self._scored_answer(state, result.value, intent, language)

    async def _scored_answer(
        self, state: _RunState, value: str, intent: Optional[str], language: str
    ) -> PipelineResult:
        scoring = await self._score(state, value, build_context_block(state.snapshot))
        return StrictAnswerResult(
            value=value,
            intent=intent,
            language=language,
            attempts=state.attempts,
            evaluation=scoring.evaluation,
            alert=scoring.alert,
        )

    async def _run_image_recognition(self, state: _RunState, images: List[ImageAttachment]) -> PipelineResult:
        state.stage = STAGE_IMAGE_RECOGNITION
        language = await self._detect_language(state)
        prompt = self.orchestrator.build_image_recognition_prompt(
            state.user_input, [image.data for image in images], language.language, state.snapshot
        )
        result = await self._execute(state, IMAGE_RECOGNITION, prompt, self.orchestrator.validate_image_recognition)
        if not result.ok:
            logger.error("[pipeline] Image recognition contract failed")
            return ErrorResult(stage=STAGE_IMAGE_RECOGNITION, attempts=state.attempts)
        scoring = await self._score(state, result.value, f"{len(images)} image(s) attached.")
        return StrictAnswerResult(
            value=result.value,
            language=language.language,
            attempts=state.attempts,
            evaluation=scoring.evaluation,
            alert=scoring.alert,
        )

    # -- shared stages ---------------------------------------------------

    async def _detect_language(self, state: _RunState) -> LanguageOutcome:
        if not state.user_input.strip():
            return LanguageOutcome(ok=False, language=LANGUAGE_FALLBACK, attempts=0)
        prompt = self.orchestrator.build_language_detection_prompt(state.user_input)
        result = await self._execute(state, LANGUAGE_DETECTION, prompt, self.orchestrator.validate_language_detection)
        if result.ok:
            return LanguageOutcome(ok=True, language=derive_detected_language(result.value), attempts=result.attempts)
        logger.warning("[pipeline] Language detection failed, using fallback language")
        return LanguageOutcome(ok=False, language=LANGUAGE_FALLBACK, attempts=result.attempts)

    async def run_scoring_evaluation(
        self,
        text: str,
        user_goal: str,
        reference_context: str,
        context_snapshot: Optional[ContextSnapshot] = None,
        cancellation_token: Optional[CancellationToken] = None,
    ) -> ScoringOutcome:
        """Score ``text`` against the user goal; blank text is a zero-attempt no-op."""
        if not text or not text.strip():
            return ScoringOutcome(attempts=0)
        prompt = self.orchestrator.build_scoring_prompt(text, user_goal, reference_context, context_snapshot)
        result = await self.runner.execute_contract(
            SCORING_EVALUATION,
            prompt,
            self.orchestrator.validate_scoring,
            RunnerOptions(cancellation_token=cancellation_token),
        )
        if result.cancelled:
            raise ContractCancelledError(attempts=result.attempts)
        if not result.ok:
            logger.warning("[pipeline] Scoring evaluation failed after %d attempts", result.attempts)
            return ScoringOutcome(attempts=result.attempts, alert=ALERT_SCORING_FAILED)
        evaluation = dict(result.value)
        alert = derive_score_alert(evaluation, self.config.low_score_threshold)
        if alert:
            logger.info("[pipeline] Scoring alert=%s %s", alert, format_fields(evaluation))
        return ScoringOutcome(attempts=result.attempts, evaluation=evaluation, alert=alert)

    async def _score(self, state: _RunState, text: Optional[str], reference_context: str) -> ScoringOutcome:
        try:
            outcome = await self.run_scoring_evaluation(
                text or "",
                state.user_input,
                reference_context,
                state.snapshot,
                state.options.cancellation_token,
            )
        except ContractCancelledError as exc:
            state.attempts += exc.attempts
            raise ContractCancelledError(state.stage, state.attempts) from exc
        state.attempts += outcome.attempts
        return outcome

    async def _execute(
        self,
        state: _RunState,
        contract_name: str,
        prompt: ContractPrompt,
        validator: Validator,
    ) -> ContractExecutionResult:
        result = await self.runner.execute_contract(
            contract_name,
            prompt,
            validator,
            RunnerOptions(cancellation_token=state.options.cancellation_token),
        )
        state.attempts += result.attempts
        if result.cancelled:
            raise ContractCancelledError(state.stage, state.attempts)
        return result

    def _ensure_not_cancelled(self, state: _RunState) -> None:
        token = state.options.cancellation_token
        if token is not None and token.cancelled:
            raise ContractCancelledError(state.stage, state.attempts)

    @staticmethod
    def _has_tool_trigger(user_input: str, tool: ToolDefinition) -> bool:
        normalized = user_input.lower()
        return any(trigger in normalized for trigger in tool.triggers)

    def _complete(self, state: _RunState, result: PipelineResult, stage: str, **extras: Any) -> PipelineResult:
        fields: Dict[str, Any] = {
            "stage": stage,
            "kind": result.kind,
            "attempts": result.attempts,
            "duration_ms": elapsed_ms(state.started_ms),
        }
        fields.update(extras)
        if isinstance(result, ToolResult):
            fields.setdefault("tool", result.tool)
        elif isinstance(result, StrictAnswerResult) and result.intent:
            fields.setdefault("intent", result.intent)
        elif isinstance(result, ErrorResult) and result.error is not None:
            fields["error"] = result.error.code
        alert = getattr(result, "alert", None)
        if alert:
            fields["alert"] = alert
        logger.info("[pipeline] Pipeline summary %s", format_fields(fields))
        return result
