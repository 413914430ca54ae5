from __future__ import annotations

import pytest

from contract_router.pipeline.fallback import FallbackChain
from contract_router.pipeline.language import derive_detected_language
from contract_router.pipeline.scoring import derive_score_alert, reference_from_result, stringify_tool_result
from contract_router.pipeline.types import StrictAnswerResult, VerificationOutcome


def test_derive_score_alert():
    assert derive_score_alert({"clarity": 8, "correctness": 3}) is None
    assert derive_score_alert({"clarity": 8, "correctness": 2}) == "low_scores"
    assert derive_score_alert({"clarity": 5}, threshold=6) == "low_scores"
    assert derive_score_alert(None) is None
    assert derive_score_alert({}) is None


def test_reference_from_result_is_truncated():
    assert reference_from_result(None) == ""
    assert reference_from_result("abc", limit=2) == "ab"
    assert reference_from_result({"a": 1}) == '{\n  "a": 1\n}'


def test_stringify_tool_result_handles_unserializable_values():
    class Thing:
        def __str__(self):
            return "thing"

    assert stringify_tool_result("plain") == "plain"
    assert stringify_tool_result({"value": Thing()}) == '{\n  "value": "thing"\n}'


def test_derive_detected_language():
    assert derive_detected_language(" EN ") == "en"
    assert derive_detected_language("") == "unknown"
    assert derive_detected_language(None) == "unknown"


def test_verification_outcome_from_validator_value():
    outcome = VerificationOutcome.from_value(
        {"decision": "retry", "confidence": 0.4, "reason": "r", "missing_fields": None, "suggested_args": {}}
    )

    assert outcome.decision == "retry"
    assert outcome.missing_fields == []
    assert outcome.suggested_args is None


@pytest.mark.asyncio
async def test_fallback_chain_returns_first_result():
    order = []

    async def _empty():
        order.append("empty")
        return None

    async def _answer():
        order.append("answer")
        return StrictAnswerResult(value="ok", language="en", attempts=1)

    async def _never():
        order.append("never")
        return None

    chain = FallbackChain().add("empty", _empty).add("answer", _answer).add("never", _never)

    result = await chain.run()

    assert result.value == "ok"
    assert order == ["empty", "answer"]
    assert chain.names == ["empty", "answer", "never"]


@pytest.mark.asyncio
async def test_fallback_chain_propagates_errors():
    async def _fail():
        raise RuntimeError("stop")

    with pytest.raises(RuntimeError):
        await FallbackChain().add("fail", _fail).run()
    assert await FallbackChain().run() is None
