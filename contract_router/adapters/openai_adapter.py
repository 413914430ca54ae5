from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Dict, List, Optional

from openai import APIConnectionError, APITimeoutError, AsyncOpenAI, InternalServerError, RateLimitError

from .llm_base import LLMAdapter, ModelInvocation

logger = logging.getLogger(__name__)


class OpenAIAdapter(LLMAdapter):
    """Chat and raw completions against OpenAI or an OpenAI-compatible server (e.g. Ollama ``/v1``)."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        max_output_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        max_attempts: int = 4,
    ) -> None:
        self.api_key = api_key or os.getenv("OPENAI_API_KEY")
        if not self.api_key:
            if not base_url:
                raise RuntimeError("OPENAI_API_KEY is not set.")
            # local OpenAI-compatible servers ignore the key but the SDK requires one
            self.api_key = "local"
        self.client = AsyncOpenAI(api_key=self.api_key, base_url=base_url)
        self.max_output_tokens = max_output_tokens or int(os.getenv("ORCH_MAX_OUTPUT_TOKENS", "800"))
        self.temperature = temperature if temperature is not None else float(os.getenv("ORCH_TEMPERATURE", "0.2"))
        self.max_attempts = max(1, max_attempts)

    async def send_prompt(self, invocation: ModelInvocation) -> str:
        attempt = 0
        backoff = 1.0
        while True:
            attempt += 1
            try:
                if invocation.mode == "raw":
                    return await self._complete_raw(invocation)
                return await self._complete_chat(invocation)
            except RateLimitError as exc:
                error = getattr(exc, "error", None)
                code = getattr(error, "code", None)
                if code == "insufficient_quota":
                    raise RuntimeError(
                        "OpenAI API quota exceeded. Please enable billing in your OpenAI account."
                    ) from exc
                if attempt >= self.max_attempts:
                    raise
            except (APITimeoutError, APIConnectionError, InternalServerError):
                if attempt >= self.max_attempts:
                    raise
            logger.warning("[openai] transient error model=%s -> sleeping %.1fs", invocation.model, backoff)
            await asyncio.sleep(backoff)
            backoff *= 2

    async def _complete_chat(self, invocation: ModelInvocation) -> str:
        kwargs: Dict[str, Any] = {
            "model": invocation.model,
            "messages": self._build_messages(invocation),
            "max_tokens": self.max_output_tokens,
            "temperature": self.temperature,
        }
        if invocation.expects_json:
            kwargs["response_format"] = {"type": "json_object"}
        response = await self.client.chat.completions.create(**kwargs)
        content = response.choices[0].message.content
        if content is None:
            raise RuntimeError("OpenAI returned empty content.")
        self._log_usage(invocation.model, response)
        return content

    async def _complete_raw(self, invocation: ModelInvocation) -> str:
        response = await self.client.completions.create(
            model=invocation.model,
            prompt=invocation.flattened_prompt(),
            max_tokens=self.max_output_tokens,
            temperature=self.temperature,
        )
        text = response.choices[0].text if response.choices else None
        if text is None:
            raise RuntimeError("OpenAI returned empty content.")
        self._log_usage(invocation.model, response)
        return text

    def _build_messages(self, invocation: ModelInvocation) -> List[Dict[str, Any]]:
        messages: List[Dict[str, Any]] = []
        if invocation.system_prompt:
            messages.append({"role": "system", "content": invocation.system_prompt})
        user_text = invocation.user_prompt or ""
        if invocation.images:
            parts: List[Dict[str, Any]] = [{"type": "text", "text": user_text}]
            for image in invocation.images:
                url = image if image.startswith("data:") else f"data:image/png;base64,{image}"
                parts.append({"type": "image_url", "image_url": {"url": url}})
            messages.append({"role": "user", "content": parts})
        elif user_text or not messages:
            messages.append({"role": "user", "content": user_text})
        return messages

    def _log_usage(self, model: str, response: Any) -> None:
        usage = getattr(response, "usage", None)
        if not usage:
            logger.debug("[openai] usage not provided by SDK")
            return
        logger.debug(
            "[openai] model=%s prompt_tokens=%s completion_tokens=%s total_tokens=%s",
            model,
            getattr(usage, "prompt_tokens", None),
            getattr(usage, "completion_tokens", None),
            getattr(usage, "total_tokens", None),
        )
