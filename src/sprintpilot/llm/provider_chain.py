"""Provider chain: routes LLM calls to the right backend with failover.

Overview
--------
Stages call ``invoke`` on a single process-wide client. When more than one
provider is configured, that client is a ``ProviderChain``:

1. The configured model's *natural* provider is tried first.
2. On failure, the chain falls through to the remaining providers in the
   configured order, each running its own fallback model.

The chain does not retry a provider; per-stage retry with backoff wraps the
whole chain.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sprintpilot.config.providers import get_model_config
from sprintpilot.llm.base import LLMClient, LLMResponse, provider_for_model
from sprintpilot.models.config import BootstrapConfig

logger = logging.getLogger(__name__)


DEFAULT_FALLBACK_MODELS: dict[str, str] = {
    "anthropic": "claude-sonnet-4-20250514",
    "gemini": "gemini-2.5-flash",
}


class BackendRegistry:
    """Holds instantiated LLM clients keyed by provider name.

    Usage::

        registry = BackendRegistry()
        registry.register(ClaudeLLMClient(api_key="..."))
        registry.register(GeminiLLMClient(api_key="..."))

        client = registry.get("anthropic")
    """

    def __init__(self) -> None:
        self._backends: dict[str, LLMClient] = {}

    def register(self, backend: LLMClient) -> None:
        """Register a backend under its ``.name``."""
        self._backends[backend.name] = backend

    def get(self, provider: str) -> LLMClient | None:
        return self._backends.get(provider)

    def has(self, provider: str) -> bool:
        return provider in self._backends

    @property
    def providers(self) -> list[str]:
        return list(self._backends.keys())

    def __repr__(self) -> str:
        return f"BackendRegistry(providers={self.providers})"


@dataclass
class ProviderChainConfig:
    """Configuration for the provider chain."""

    # Model requested by the pipeline; decides the primary provider.
    model: str = "claude-sonnet-4-20250514"

    # Fallback order after the primary.
    chain: list[str] = field(default_factory=lambda: ["anthropic", "gemini"])


class ProviderChain:
    """LLM client that tries providers in order until one answers."""

    def __init__(
        self,
        registry: BackendRegistry,
        config: ProviderChainConfig | None = None,
    ) -> None:
        self.registry = registry
        self.config = config or ProviderChainConfig()

    @property
    def name(self) -> str:
        return "provider_chain"

    async def invoke(self, prompt: str) -> LLMResponse:
        last_error: Exception | None = None
        for provider_name in self._resolve_order():
            backend = self.registry.get(provider_name)
            if backend is None:
                continue
            try:
                return await backend.invoke(prompt)
            except Exception as exc:
                last_error = exc
                logger.warning(
                    "Provider %s failed for model=%s: %s, trying next",
                    provider_name, self.config.model, exc,
                )

        raise RuntimeError(
            f"All providers exhausted for model={self.config.model}. Last error: {last_error}"
        ) from last_error

    def _resolve_order(self) -> list[str]:
        """Natural provider first, then the configured chain without duplicates."""
        natural = provider_for_model(self.config.model)
        order: list[str] = []
        if self.registry.has(natural):
            order.append(natural)
        for p in self.config.chain:
            if p not in order and self.registry.has(p):
                order.append(p)
        return order


def _output_budget(model: str, requested: int) -> int:
    """Cap ``requested`` at the model's output limit when the model is known."""
    config = get_model_config(model)
    if config is None or requested <= config["max_output_tokens"]:
        return requested
    logger.warning(
        "llm_max_tokens=%d exceeds %s output limit, using %d",
        requested, model, config["max_output_tokens"],
    )
    return config["max_output_tokens"]


def build_llm_client(cfg: BootstrapConfig) -> LLMClient:
    """Create the process-wide LLM client from bootstrap config.

    Only providers with an API key are registered. A single provider is
    returned as-is; several are wrapped in a ProviderChain.
    """
    from sprintpilot.llm.claude import ClaudeLLMClient
    from sprintpilot.llm.gemini import GeminiLLMClient

    natural = provider_for_model(cfg.model)
    registry = BackendRegistry()

    if cfg.anthropic_api_key:
        model = cfg.model if natural == "anthropic" else DEFAULT_FALLBACK_MODELS["anthropic"]
        registry.register(ClaudeLLMClient(
            api_key=cfg.anthropic_api_key,
            model=model,
            max_tokens=_output_budget(model, cfg.llm_max_tokens),
            temperature=cfg.llm_temperature,
            timeout=cfg.llm_timeout_s,
        ))
    if cfg.gemini_api_key:
        model = cfg.model if natural == "gemini" else DEFAULT_FALLBACK_MODELS["gemini"]
        registry.register(GeminiLLMClient(
            api_key=cfg.gemini_api_key,
            model=model,
            max_tokens=_output_budget(model, cfg.llm_max_tokens),
            temperature=cfg.llm_temperature,
            timeout=cfg.llm_timeout_s,
        ))

    if not registry.providers:
        raise RuntimeError(
            "No LLM provider configured: set SPRINTPILOT_ANTHROPIC_API_KEY or SPRINTPILOT_GEMINI_API_KEY"
        )
    if len(registry.providers) == 1:
        return registry.get(registry.providers[0])  # type: ignore[return-value]

    logger.info("LLM provider chain: %s (model=%s)", registry.providers, cfg.model)
    return ProviderChain(registry, ProviderChainConfig(model=cfg.model))
