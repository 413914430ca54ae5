from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, List, Optional

from contract_router.adapters.llm_base import LLMAdapter, ModelInvocation
from contract_router.cancellation import CancellationToken, ContractCancelledError, race_with_token
from contract_router.contracts.definition import ContractPrompt
from contract_router.telemetry import ContractTelemetryEvent, TelemetrySink
from contract_router.utils.time import elapsed_ms, monotonic_ms, utc_iso
from contract_router.validation.results import Err, ValidationResult, Validator

logger = logging.getLogger(__name__)

HISTORY_NONE = "none"
HISTORY_MINIMAL = "minimal"
HISTORY_FULL = "full"


@dataclass(frozen=True)
class AttemptRecord:
    attempt: int
    raw: Optional[str]
    validation: ValidationResult


@dataclass(frozen=True)
class ContractExecutionResult:
    ok: bool
    attempts: int
    history: List[AttemptRecord] = field(default_factory=list)
    value: Any = None
    cancelled: bool = False

    @property
    def last_error(self) -> Optional[str]:
        for record in reversed(self.history):
            if isinstance(record.validation, Err):
                return record.validation.error
        return None


@dataclass
class RunnerOptions:
    max_attempts: Optional[int] = None
    history_retention: Optional[str] = None
    cancellation_token: Optional[CancellationToken] = None


def derive_attempt_budget(prompt: ContractPrompt, max_attempts: Optional[int] = None) -> int:
    """One initial attempt plus one per retry index, gaps included."""
    if max_attempts is not None:
        return max(1, max_attempts)
    if not prompt.retries:
        return 1
    return max(prompt.retries.keys()) + 2


def _prepend(instruction: str, text: Optional[str]) -> str:
    return f"{instruction}\n\n{text}" if text else instruction


def apply_retry_instruction(prompt: ContractPrompt, attempt: int) -> ContractPrompt:
    if attempt == 0:
        return prompt
    instruction = prompt.retries.get(attempt - 1)
    if not instruction:
        return prompt

    if prompt.mode == "raw":
        if prompt.raw_prompt:
            return replace(prompt, raw_prompt=_prepend(instruction, prompt.raw_prompt))
        combined = "\n\n".join(part for part in (prompt.system_prompt, prompt.user_prompt) if part)
        return replace(prompt, raw_prompt=_prepend(instruction, combined))

    if prompt.user_prompt:
        return replace(prompt, user_prompt=_prepend(instruction, prompt.user_prompt))
    return replace(prompt, system_prompt=_prepend(instruction, prompt.system_prompt))


def apply_history_retention(history: List[AttemptRecord], policy: str) -> List[AttemptRecord]:
    if policy == HISTORY_NONE:
        return []
    if policy == HISTORY_FULL:
        return list(history)
    return [replace(record, raw=None) for record in history]


class ContractRunner:
    """Prompt -> validate -> retry loop shared by every contract."""

    def __init__(
        self,
        llm: LLMAdapter,
        telemetry_sink: Optional[TelemetrySink] = None,
        history_retention: str = HISTORY_MINIMAL,
    ) -> None:
        self.llm = llm
        self.telemetry_sink = telemetry_sink
        self.history_retention = history_retention

    async def execute_contract(
        self,
        contract_name: str,
        prompt: ContractPrompt,
        validator: Validator,
        options: Optional[RunnerOptions] = None,
    ) -> ContractExecutionResult:
        options = options or RunnerOptions()
        token = options.cancellation_token
        retention = options.history_retention or self.history_retention
        attempts_limit = derive_attempt_budget(prompt, options.max_attempts)
        history: List[AttemptRecord] = []
        start_ms = monotonic_ms()

        logger.info(
            "[runner] Starting contract execution: %s model=%s attempts_limit=%d",
            contract_name,
            prompt.model,
            attempts_limit,
        )

        for attempt in range(attempts_limit):
            if token is not None and token.cancelled:
                return self._finish_cancelled(contract_name, prompt, history, retention, start_ms)

            logger.debug("[runner] %s attempt %d/%d", contract_name, attempt + 1, attempts_limit)
            attempt_prompt = apply_retry_instruction(prompt, attempt)
            invocation = ModelInvocation(
                model=attempt_prompt.model,
                mode=attempt_prompt.mode,
                system_prompt=attempt_prompt.system_prompt,
                user_prompt=attempt_prompt.user_prompt,
                raw_prompt=attempt_prompt.raw_prompt,
                expects_json=attempt_prompt.expects_json,
                images=list(attempt_prompt.images),
                contract_name=contract_name,
            )

            raw: Optional[str] = None
            try:
                raw = await race_with_token(self.llm.send_prompt(invocation), token)
            except ContractCancelledError:
                return self._finish_cancelled(contract_name, prompt, history, retention, start_ms)
            except Exception as exc:
                logger.warning("[runner] %s transport error on attempt %d: %s", contract_name, attempt + 1, exc)
                history.append(AttemptRecord(attempt=attempt, raw=None, validation=Err(f"TRANSPORT_ERROR:{exc}")))
                continue

            if token is not None and token.cancelled:
                # a reply arrived, so the call counts as an attempt
                history.append(AttemptRecord(attempt=attempt, raw=raw, validation=Err("CANCELLED")))
                return self._finish_cancelled(contract_name, prompt, history, retention, start_ms)

            try:
                validation = validator(raw)
            except Exception as exc:
                validation = Err(f"VALIDATOR_ERROR:{exc}")
            history.append(AttemptRecord(attempt=attempt, raw=raw, validation=validation))

            if validation.ok:
                logger.info("[runner] Contract %s succeeded on attempt %d", contract_name, attempt + 1)
                return self._finish(
                    contract_name,
                    prompt,
                    ContractExecutionResult(
                        ok=True,
                        attempts=attempt + 1,
                        history=apply_history_retention(history, retention),
                        value=validation.value,
                    ),
                    start_ms,
                )

            logger.warning(
                "[runner] %s validation failed on attempt %d: %s",
                contract_name,
                attempt + 1,
                validation.error,
            )

        logger.error("[runner] Contract %s failed after %d attempts", contract_name, len(history))
        return self._finish(
            contract_name,
            prompt,
            ContractExecutionResult(
                ok=False,
                attempts=len(history),
                history=apply_history_retention(history, retention),
            ),
            start_ms,
        )

    def _finish_cancelled(
        self,
        contract_name: str,
        prompt: ContractPrompt,
        history: List[AttemptRecord],
        retention: str,
        start_ms: float,
    ) -> ContractExecutionResult:
        logger.info("[runner] Contract %s cancelled after %d attempts", contract_name, len(history))
        return self._finish(
            contract_name,
            prompt,
            ContractExecutionResult(
                ok=False,
                attempts=len(history),
                history=apply_history_retention(history, retention),
                cancelled=True,
            ),
            start_ms,
        )

    def _finish(
        self,
        contract_name: str,
        prompt: ContractPrompt,
        result: ContractExecutionResult,
        start_ms: float,
    ) -> ContractExecutionResult:
        if self.telemetry_sink is not None:
            event = ContractTelemetryEvent(
                contract_name=contract_name,
                model=prompt.model,
                mode=prompt.mode,
                duration_ms=elapsed_ms(start_ms),
                attempts=result.attempts,
                ok=result.ok,
                timestamp=utc_iso(),
                cancelled=result.cancelled,
            )
            try:
                self.telemetry_sink.emit(event)
            except Exception as exc:
                logger.warning("[runner] telemetry sink failed for %s: %s", contract_name, exc)
        return result
