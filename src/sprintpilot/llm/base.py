"""LLM client protocol and shared data types."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


def provider_for_model(model: str) -> str:
    """Return the provider name for a model identifier.

    Falls back to heuristic prefix matching if the model is not in the
    explicit registry.
    """
    from sprintpilot.config.providers import get_provider_for_model as _get
    provider = _get(model)
    if provider:
        return provider

    # Heuristic fallback
    if model.startswith("claude"):
        return "anthropic"
    if model.startswith("gemini"):
        return "gemini"

    return "unknown"


@dataclass
class LLMResponse:
    """Result of a single LLM round-trip."""

    content: str
    total_tokens: int = 0


class LLMClient(Protocol):
    """Request/response contract every stage talks to.

    ``invoke`` may raise on timeout or network errors; the content may wrap
    JSON in prose or markdown fences. One client instance is shared by every
    run in the process.
    """

    @property
    def name(self) -> str:
        """Short provider identifier, e.g. ``'anthropic'``, ``'gemini'``."""
        ...

    async def invoke(self, prompt: str) -> LLMResponse: ...
