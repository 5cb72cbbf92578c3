"""Gemini LLM client: single-turn completions using the Google GenAI SDK."""

from __future__ import annotations

import asyncio
import logging
import os

from google import genai
from google.genai import types as genai_types

from sprintpilot.llm.base import LLMResponse

logger = logging.getLogger(__name__)


class GeminiLLMClient:
    """LLM client using the async surface of ``google.genai``."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "gemini-2.5-flash",
        max_tokens: int = 4000,
        temperature: float = 0.7,
        timeout: float = 60.0,
    ) -> None:
        self._api_key = api_key or os.environ.get("GEMINI_API_KEY", "")
        self._client = genai.Client(api_key=self._api_key)
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout = timeout

    @property
    def name(self) -> str:
        return "gemini"

    async def invoke(self, prompt: str) -> LLMResponse:
        config = genai_types.GenerateContentConfig(
            max_output_tokens=self.max_tokens,
            temperature=self.temperature,
        )
        response = await asyncio.wait_for(
            self._client.aio.models.generate_content(
                model=self.model,
                contents=prompt,
                config=config,
            ),
            timeout=self.timeout,
        )

        usage = response.usage_metadata
        total = (usage.total_token_count or 0) if usage else 0
        logger.debug("Gemini %s responded: %d tokens", self.model, total)
        return LLMResponse(content=response.text or "", total_tokens=total)
