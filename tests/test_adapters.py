from __future__ import annotations

import base64
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from openai import APIConnectionError

from contract_router.adapters import gemini_adapter, openai_adapter
from contract_router.adapters.gemini_adapter import GeminiAdapter
from contract_router.adapters.llm_base import ModelInvocation
from contract_router.adapters.mock_adapter import MockAdapter
from contract_router.adapters.openai_adapter import OpenAIAdapter


def _chat_response(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))], usage=None)


def _openai(monkeypatch) -> OpenAIAdapter:
    monkeypatch.setattr(openai_adapter.asyncio, "sleep", AsyncMock())
    adapter = OpenAIAdapter(api_key="test-key", max_output_tokens=64, temperature=0.0, max_attempts=2)
    adapter.client = MagicMock()
    adapter.client.chat.completions.create = AsyncMock(return_value=_chat_response("ok"))
    adapter.client.completions.create = AsyncMock(
        return_value=SimpleNamespace(choices=[SimpleNamespace(text="en")], usage=None)
    )
    return adapter


@pytest.mark.asyncio
async def test_openai_chat_request(monkeypatch):
    adapter = _openai(monkeypatch)
    invocation = ModelInvocation(model="m", system_prompt="sys", user_prompt="usr", expects_json=True)

    assert await adapter.send_prompt(invocation) == "ok"

    kwargs = adapter.client.chat.completions.create.await_args.kwargs
    assert kwargs["messages"] == [{"role": "system", "content": "sys"}, {"role": "user", "content": "usr"}]
    assert kwargs["response_format"] == {"type": "json_object"}
    assert kwargs["max_tokens"] == 64


@pytest.mark.asyncio
async def test_openai_raw_request_uses_completions(monkeypatch):
    adapter = _openai(monkeypatch)

    text = await adapter.send_prompt(ModelInvocation(model="m", mode="raw", raw_prompt="detect"))

    assert text == "en"
    assert adapter.client.completions.create.await_args.kwargs["prompt"] == "detect"
    adapter.client.chat.completions.create.assert_not_awaited()


def test_openai_images_become_data_urls(monkeypatch):
    adapter = _openai(monkeypatch)

    messages = adapter._build_messages(ModelInvocation(model="m", user_prompt="what?", images=["QUJD"]))

    assert messages[0]["content"][1] == {"type": "image_url", "image_url": {"url": "data:image/png;base64,QUJD"}}


@pytest.mark.asyncio
async def test_openai_retries_transient_errors(monkeypatch):
    adapter = _openai(monkeypatch)
    error = APIConnectionError(request=httpx.Request("POST", "https://api.example.com"))
    adapter.client.chat.completions.create = AsyncMock(side_effect=[error, _chat_response("later")])

    assert await adapter.send_prompt(ModelInvocation(model="m", user_prompt="hi")) == "later"
    assert adapter.client.chat.completions.create.await_count == 2


@pytest.mark.asyncio
async def test_openai_gives_up_after_max_attempts(monkeypatch):
    adapter = _openai(monkeypatch)
    error = APIConnectionError(request=httpx.Request("POST", "https://api.example.com"))
    adapter.client.chat.completions.create = AsyncMock(side_effect=error)

    with pytest.raises(APIConnectionError):
        await adapter.send_prompt(ModelInvocation(model="m", user_prompt="hi"))
    assert adapter.client.chat.completions.create.await_count == 2


def test_openai_key_rules(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    with pytest.raises(RuntimeError, match="OPENAI_API_KEY"):
        OpenAIAdapter()
    assert OpenAIAdapter(base_url="http://localhost:11434/v1").api_key == "local"


def _gemini(monkeypatch) -> GeminiAdapter:
    monkeypatch.setattr(gemini_adapter.asyncio, "sleep", AsyncMock())
    monkeypatch.setenv("GEMINI_MAX_ATTEMPTS", "2")
    adapter = GeminiAdapter(api_key="test-key")
    adapter.client = MagicMock()
    return adapter


def test_gemini_model_candidates(monkeypatch):
    adapter = _gemini(monkeypatch)

    assert adapter._candidates_for("gemini-pro")[0] == "gemini-pro"
    assert adapter._candidates_for("llama3.2:3b") == adapter.model_candidates


def test_gemini_raw_mode_has_no_system_instruction(monkeypatch):
    adapter = _gemini(monkeypatch)
    invocation = ModelInvocation(model="m", mode="raw", raw_prompt="text", system_prompt="sys")

    assert adapter._build_contents(invocation) == ["text"]
    assert adapter._build_config(invocation).system_instruction is None


def test_gemini_images_are_decoded(monkeypatch):
    adapter = _gemini(monkeypatch)
    data = base64.b64encode(b"png-bytes").decode()

    contents = adapter._build_contents(ModelInvocation(model="m", user_prompt="q", images=[f"data:image/png;base64,{data}"]))

    assert contents[0] == "q"
    assert contents[1].inline_data.data == b"png-bytes"


@pytest.mark.asyncio
async def test_gemini_retries_transient_then_succeeds(monkeypatch):
    adapter = _gemini(monkeypatch)
    adapter.client.aio.models.generate_content = AsyncMock(
        side_effect=[RuntimeError("503 unavailable"), SimpleNamespace(text="fine")]
    )

    assert await adapter.send_prompt(ModelInvocation(model="m", user_prompt="hi")) == "fine"


@pytest.mark.asyncio
async def test_gemini_falls_through_all_models(monkeypatch):
    adapter = _gemini(monkeypatch)
    adapter.client.aio.models.generate_content = AsyncMock(side_effect=ValueError("bad request"))

    with pytest.raises(RuntimeError, match="failed for all candidate models"):
        await adapter.send_prompt(ModelInvocation(model="m", user_prompt="hi"))
    # non-transient errors move straight to the next model
    assert adapter.client.aio.models.generate_content.await_count == len(adapter.model_candidates)


@pytest.mark.asyncio
async def test_mock_adapter_queues_and_defaults():
    adapter = MockAdapter().script("A", "first", RuntimeError("down"))

    assert await adapter.send_prompt(ModelInvocation(model="m", contract_name="A")) == "first"
    with pytest.raises(RuntimeError):
        await adapter.send_prompt(ModelInvocation(model="m", contract_name="A"))
    assert await adapter.send_prompt(ModelInvocation(model="m", contract_name="STRICT_ANSWER")) == "Mock answer."
    assert await adapter.send_prompt(ModelInvocation(model="m", contract_name="A")) == ""
    assert len(adapter.calls_for("A")) == 3
