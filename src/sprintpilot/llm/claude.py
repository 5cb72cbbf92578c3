"""Claude LLM client: single-turn completions using the Anthropic SDK directly."""

from __future__ import annotations

import asyncio
import logging
import os

import anthropic

from sprintpilot.llm.base import LLMResponse

logger = logging.getLogger(__name__)


class ClaudeLLMClient:
    """LLM client backed by ``anthropic.AsyncAnthropic``.

    SDK-level retries are disabled; retrying is the pipeline's job so that
    every attempt goes through the same backoff policy.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "claude-sonnet-4-20250514",
        max_tokens: int = 4000,
        temperature: float = 0.7,
        timeout: float = 60.0,
    ) -> None:
        self._api_key = api_key or os.environ.get("ANTHROPIC_API_KEY", "")
        self._client = anthropic.AsyncAnthropic(
            api_key=self._api_key, timeout=timeout, max_retries=0,
        )
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout = timeout

    @property
    def name(self) -> str:
        return "anthropic"

    async def invoke(self, prompt: str) -> LLMResponse:
        """Send one user message and return the concatenated text blocks."""
        response = await asyncio.wait_for(
            self._client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                messages=[{"role": "user", "content": prompt}],
            ),
            timeout=self.timeout,
        )

        text_parts = [block.text for block in response.content if block.type == "text"]
        usage = response.usage
        total = (usage.input_tokens or 0) + (usage.output_tokens or 0) if usage else 0
        logger.debug(
            "Claude %s responded: %d chars, %d tokens", self.model, sum(map(len, text_parts)), total,
        )
        return LLMResponse(content="".join(text_parts), total_tokens=total)
