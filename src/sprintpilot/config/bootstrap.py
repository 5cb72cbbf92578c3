"""Load bootstrap configuration from environment variables."""

from __future__ import annotations

import os

from sprintpilot.models.config import BootstrapConfig

_ENV_PREFIX = "SPRINTPILOT_"

_FIELD_MAP = {
    "database_url": "DATABASE_URL",
    "redis_url": "REDIS_URL",
    "anthropic_api_key": "ANTHROPIC_API_KEY",
    "gemini_api_key": "GEMINI_API_KEY",
    "github_token": "GITHUB_TOKEN",
    "model": "MODEL",
    "llm_max_tokens": "LLM_MAX_TOKENS",
    "llm_temperature": "LLM_TEMPERATURE",
    "llm_timeout_s": "LLM_TIMEOUT_S",
    "rate_limit_per_hour": "RATE_LIMIT_PER_HOUR",
    "job_spawner": "JOB_SPAWNER",
    "controller_host": "CONTROLLER_HOST",
    "controller_port": "CONTROLLER_LISTEN_PORT",
    "log_level": "LOG_LEVEL",
}


def load_bootstrap_config() -> BootstrapConfig:
    """Build BootstrapConfig from env vars (prefixed SPRINTPILOT_) with defaults."""
    overrides: dict[str, str] = {}
    for field_name, env_suffix in _FIELD_MAP.items():
        env_key = f"{_ENV_PREFIX}{env_suffix}"
        val = os.environ.get(env_key)
        if val is not None:
            overrides[field_name] = val
    return BootstrapConfig(**overrides)
