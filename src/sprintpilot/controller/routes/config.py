"""Configuration routes."""

from __future__ import annotations

from fastapi import APIRouter, Request

from sprintpilot.config.providers import PROVIDER_REGISTRY, list_available_models

router = APIRouter(tags=["config"])


@router.get("/config/models")
async def get_models() -> dict[str, list]:
    """Return list of available AI models."""
    return {"models": list_available_models()}


@router.get("/config/providers")
async def get_providers(request: Request) -> dict[str, list]:
    """Supported providers and whether this deployment has a key for each."""
    cfg = request.app.state.config
    keys = {"anthropic": cfg.anthropic_api_key, "gemini": cfg.gemini_api_key}
    return {
        "providers": [
            {
                "id": key,
                "name": val["name"],
                "env_var": val["env_var_key"],
                "configured": bool(keys.get(key)),
            }
            for key, val in PROVIDER_REGISTRY.items()
        ]
    }
