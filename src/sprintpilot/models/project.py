"""Project, run and ticket request models: Pydantic schemas for API input."""

from __future__ import annotations

import re

from pydantic import BaseModel, ConfigDict, Field, field_validator

from sprintpilot.config.defaults import PIPELINE_DEFAULTS

# owner/repo out of https://github.com/owner/repo(.git), git@github.com:owner/repo ...
GITHUB_REPO_RE = re.compile(
    r"github\.com[:/]([^/\s]+)/([^/\s#]+?)(?:\.git)?(?:[/\s#]|$)",
    re.IGNORECASE,
)


class ProjectCreate(BaseModel):
    """A feature idea submitted for planning."""

    title: str = Field(..., min_length=5, max_length=200)
    problem: str = Field(..., min_length=20, max_length=PIPELINE_DEFAULTS["max_feature_length"])
    constraints: str | None = Field(default=None, max_length=1000)
    repo_url: str | None = Field(
        default=None,
        description="Optional GitHub repository the feature will land in.",
    )

    @field_validator("title", "problem", mode="before")
    @classmethod
    def strip_text(cls, v: str) -> str:
        return v.strip() if isinstance(v, str) else v

    @field_validator("constraints", "repo_url", mode="before")
    @classmethod
    def blank_to_none(cls, v: str | None) -> str | None:
        if isinstance(v, str) and not v.strip():
            return None
        return v.strip() if isinstance(v, str) else v

    @field_validator("repo_url")
    @classmethod
    def validate_repo_url(cls, v: str | None) -> str | None:
        if v is None:
            return v
        if not GITHUB_REPO_RE.search(v):
            raise ValueError("repo_url must be a GitHub repository URL")
        return v


class RunCreate(BaseModel):
    """Request body for starting a planning run."""

    project_id: str = Field(..., min_length=1, max_length=64)


class TicketUpdate(BaseModel):
    """Edits a reviewer makes to a generated ticket."""

    model_config = ConfigDict(populate_by_name=True)

    description: str = Field(..., min_length=1)
    acceptance_criteria: str = Field(..., min_length=1, alias="acceptanceCriteria")
