"""Pipeline tuning defaults.

Snapshotted into every run at creation so a long-running run is not affected
by later changes.
"""

from __future__ import annotations

PIPELINE_DEFAULTS: dict = {
    # Per-stage LLM retry budget
    "retry_max_attempts": 3,
    "retry_base_delay_ms": 1000,
    # Planning limits
    "sprint_capacity_hours": 40,
    "max_tickets_per_run": 20,
    "max_feature_length": 2000,
}

RATE_LIMIT_DEFAULTS: dict = {
    "requests_per_window": 10,
    "window_seconds": 3600,
    "prefix": "sprintpilot",
}


def get_config_snapshot() -> dict:
    """Return a fresh snapshot of all config for a run."""
    return {
        "pipeline": {**PIPELINE_DEFAULTS},
        "rate_limit": {**RATE_LIMIT_DEFAULTS},
    }
