from __future__ import annotations

import asyncio
import base64
import logging
import os
import random
from typing import Any, List, Optional

from google import genai
from google.genai import types

from .llm_base import LLMAdapter, ModelInvocation

logger = logging.getLogger(__name__)


class GeminiAdapter(LLMAdapter):
    def __init__(
        self,
        api_key: Optional[str] = None,
        max_output_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        max_attempts: Optional[int] = None,
    ) -> None:
        api_key = api_key or os.getenv("GEMINI_API_KEY")
        if not api_key:
            raise RuntimeError("GEMINI_API_KEY is not set.")

        self.client = genai.Client(api_key=api_key)

        primary = os.getenv("GEMINI_MODEL", "gemini-flash-latest")
        self.model_candidates: List[str] = [
            primary,
            "gemini-pro",
            "gemini-1.5-pro",
        ]

        if max_attempts is not None:
            self.max_attempts = max(1, max_attempts)
        else:
            self.max_attempts = int(os.getenv("GEMINI_MAX_ATTEMPTS", "5"))
        self.base_delay = float(os.getenv("GEMINI_BASE_DELAY_SECONDS", "1.0"))
        self.max_output_tokens = max_output_tokens or int(os.getenv("ORCH_MAX_OUTPUT_TOKENS", "800"))
        self.temperature = temperature if temperature is not None else float(os.getenv("ORCH_TEMPERATURE", "0.2"))

    def _is_transient(self, err: Exception) -> bool:
        msg = str(err).lower()
        return any(s in msg for s in ["503", "unavailable", "429", "too many", "timeout", "temporarily"])

    def _candidates_for(self, model: str) -> List[str]:
        # contract models may name local checkpoints; only gemini ids are sent as-is
        if model.startswith("gemini"):
            return [model] + [item for item in self.model_candidates if item != model]
        return list(self.model_candidates)

    def _build_contents(self, invocation: ModelInvocation) -> List[Any]:
        if invocation.mode == "raw":
            contents: List[Any] = [invocation.flattened_prompt()]
        else:
            contents = [invocation.user_prompt or ""]
        for image in invocation.images:
            payload = image.split(",", 1)[1] if image.startswith("data:") else image
            contents.append(types.Part.from_bytes(data=base64.b64decode(payload), mime_type="image/png"))
        return contents

    def _build_config(self, invocation: ModelInvocation) -> types.GenerateContentConfig:
        return types.GenerateContentConfig(
            system_instruction=invocation.system_prompt if invocation.mode != "raw" and invocation.system_prompt else None,
            max_output_tokens=self.max_output_tokens,
            temperature=self.temperature,
            response_mime_type="application/json" if invocation.expects_json else None,
        )

    async def send_prompt(self, invocation: ModelInvocation) -> str:
        last_err: Exception | None = None
        contents = self._build_contents(invocation)
        config = self._build_config(invocation)

        for model in self._candidates_for(invocation.model):
            for attempt in range(1, self.max_attempts + 1):
                try:
                    logger.debug("[gemini] model=%s attempt=%d/%d", model, attempt, self.max_attempts)
                    response = await self.client.aio.models.generate_content(
                        model=model,
                        contents=contents,
                        config=config,
                    )
                    text = getattr(response, "text", None)
                    if not text:
                        raise RuntimeError("Gemini returned empty content.")
                    return text

                except Exception as e:
                    last_err = e
                    if not self._is_transient(e):
                        break

                    delay = self.base_delay * (2 ** (attempt - 1)) + random.random() * 0.5
                    logger.warning("[gemini] transient error: %s -> sleeping %.2fs", e, delay)
                    await asyncio.sleep(delay)

            logger.warning("[gemini] switching model after failures: %s", model)

        raise RuntimeError(
            "Gemini generate_content failed for all candidate models. "
            f"Last error: {last_err}"
        ) from last_err
