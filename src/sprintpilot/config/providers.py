"""Provider configuration registry.

Defines the models the LLM client layer knows how to reach, keyed by provider.
"""

from __future__ import annotations

from typing import TypedDict


class ModelConfig(TypedDict):
    """Configuration for a specific model."""
    provider: str
    context_window: int
    max_output_tokens: int
    is_experimental: bool


class ProviderConfig(TypedDict):
    """Configuration for an AI provider."""
    name: str
    models: dict[str, ModelConfig]
    env_var_key: str


PROVIDER_REGISTRY: dict[str, ProviderConfig] = {
    "anthropic": {
        "name": "Anthropic",
        "env_var_key": "SPRINTPILOT_ANTHROPIC_API_KEY",
        "models": {
            "claude-sonnet-4-20250514": {
                "provider": "anthropic",
                "context_window": 200000,
                "max_output_tokens": 64000,
                "is_experimental": False,
            },
            "claude-haiku-4-5-20251001": {
                "provider": "anthropic",
                "context_window": 200000,
                "max_output_tokens": 64000,
                "is_experimental": False,
            },
            "claude-opus-4-20250514": {
                "provider": "anthropic",
                "context_window": 200000,
                "max_output_tokens": 32000,
                "is_experimental": False,
            },
        },
    },
    "gemini": {
        "name": "Google Gemini",
        "env_var_key": "SPRINTPILOT_GEMINI_API_KEY",
        "models": {
            "gemini-2.5-pro": {
                "provider": "gemini",
                "context_window": 1000000,
                "max_output_tokens": 65536,
                "is_experimental": False,
            },
            "gemini-2.5-flash": {
                "provider": "gemini",
                "context_window": 1000000,
                "max_output_tokens": 65536,
                "is_experimental": False,
            },
            "gemini-3-pro-preview": {
                "provider": "gemini",
                "context_window": 1000000,
                "max_output_tokens": 65536,
                "is_experimental": True,
            },
        },
    },
}


def get_model_config(model_name: str) -> ModelConfig | None:
    """Retrieve configuration for a specific model name."""
    for provider in PROVIDER_REGISTRY.values():
        if model_name in provider["models"]:
            return provider["models"][model_name]
    return None


def get_provider_for_model(model_name: str) -> str | None:
    """Return the provider name (key) for a given model."""
    config = get_model_config(model_name)
    return config["provider"] if config else None


def list_available_models() -> list[dict]:
    """Return a flat list of all available models with metadata."""
    models = []
    for p_key, p_val in PROVIDER_REGISTRY.items():
        for m_key, m_val in p_val["models"].items():
            models.append({
                "id": m_key,
                "provider": p_val["name"],
                "provider_id": p_key,
                "context_window": m_val["context_window"],
                "max_output_tokens": m_val["max_output_tokens"],
                "is_experimental": m_val["is_experimental"],
            })
    return models
