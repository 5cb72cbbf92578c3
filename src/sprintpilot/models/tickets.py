"""Stage output models: the wire contract between the LLM and the pipeline.

The models accept the camelCase keys the prompts ask for (``acceptanceCriteria``,
``estimateHours`` ...) as well as the snake_case names used in PipelineState.
Missing or sloppy values are normalised with safe defaults.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

TSHIRT_SIZES: tuple[str, ...] = ("XS", "S", "M", "L", "XL")

DEFAULT_PRIORITY = 5
DEFAULT_SPRINT = 1
DEFAULT_ESTIMATE_HOURS = 8.0
DEFAULT_TSHIRT_SIZE = "M"


def size_for_hours(hours: float) -> str:
    """Map an hour estimate onto the t-shirt buckets used by the estimator prompt."""
    if hours <= 4:
        return "XS"
    if hours <= 8:
        return "S"
    if hours <= 16:
        return "M"
    if hours <= 32:
        return "L"
    return "XL"


def _string_list(value: Any) -> Any:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value if item is not None]
    return value


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Clarifications(_WireModel):
    """Clarifier output."""

    questions: list[str] = Field(default_factory=list)
    assumptions: list[str] = Field(default_factory=list)
    scope: str = ""

    @field_validator("questions", "assumptions", mode="before")
    @classmethod
    def coerce_lists(cls, v: Any) -> Any:
        return _string_list(v)

    @field_validator("scope", mode="before")
    @classmethod
    def scope_text(cls, v: Any) -> Any:
        return "" if v is None else v


class Architecture(_WireModel):
    """HLD drafter output."""

    modules: list[str] = Field(default_factory=list)
    data_flows: list[str] = Field(default_factory=list, alias="dataFlows")
    risks: list[str] = Field(default_factory=list)
    nfrs: list[str] = Field(default_factory=list)

    @field_validator("modules", "data_flows", "risks", "nfrs", mode="before")
    @classmethod
    def coerce_lists(cls, v: Any) -> Any:
        return _string_list(v)


class RawTicket(_WireModel):
    """A sliced user story before estimation."""

    title: str = Field(..., min_length=1)
    description: str = ""
    acceptance_criteria: str = Field(default="", alias="acceptanceCriteria")

    @field_validator("description", mode="before")
    @classmethod
    def description_text(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("acceptance_criteria", mode="before")
    @classmethod
    def join_criteria(cls, v: Any) -> Any:
        if v is None:
            return ""
        if isinstance(v, (list, tuple)):
            return "\n".join(str(item) for item in v)
        return v


class EstimatedTicket(RawTicket):
    """Ticket with an effort estimate."""

    estimate_hours: float = Field(default=DEFAULT_ESTIMATE_HOURS, alias="estimateHours")
    tshirt_size: str = Field(default=DEFAULT_TSHIRT_SIZE, alias="tshirtSize")

    @field_validator("estimate_hours", mode="before")
    @classmethod
    def default_hours(cls, v: Any) -> Any:
        if v is None or v == "":
            return DEFAULT_ESTIMATE_HOURS
        return v

    @field_validator("estimate_hours")
    @classmethod
    def positive_hours(cls, v: float) -> float:
        return v if v > 0 else DEFAULT_ESTIMATE_HOURS

    @field_validator("tshirt_size", mode="before")
    @classmethod
    def normalize_size(cls, v: Any, info: ValidationInfo) -> Any:
        if v is None or (isinstance(v, str) and not v.strip()):
            return DEFAULT_TSHIRT_SIZE
        size = str(v).strip().upper()
        if size in TSHIRT_SIZES:
            return size
        hours = info.data.get("estimate_hours", DEFAULT_ESTIMATE_HOURS)
        return size_for_hours(hours)


class FinalTicket(EstimatedTicket):
    """Ticket scheduled into a sprint."""

    priority: int = DEFAULT_PRIORITY
    sprint: int = DEFAULT_SPRINT
    dependencies: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)

    @field_validator("priority", mode="before")
    @classmethod
    def clamp_priority(cls, v: Any) -> int:
        try:
            value = int(round(float(v)))
        except (TypeError, ValueError):
            return DEFAULT_PRIORITY
        return min(10, max(1, value))

    @field_validator("sprint", mode="before")
    @classmethod
    def positive_sprint(cls, v: Any) -> int:
        try:
            value = int(v)
        except (TypeError, ValueError):
            return DEFAULT_SPRINT
        return value if value >= 1 else DEFAULT_SPRINT

    @field_validator("dependencies", "tags", mode="before")
    @classmethod
    def coerce_links(cls, v: Any) -> Any:
        return _string_list(v)


class CodingPractices(_WireModel):
    strengths: list[str] = Field(default_factory=list)
    weaknesses: list[str] = Field(default_factory=list)

    @field_validator("strengths", "weaknesses", mode="before")
    @classmethod
    def coerce_lists(cls, v: Any) -> Any:
        return _string_list(v)


class RepoAnalysis(_WireModel):
    """Repository analysis: the only stage output that may carry a failure marker."""

    status: Literal["available", "skipped", "failed"]
    repo_url: str | None = Field(default=None, alias="repoUrl")
    repo_name: str | None = Field(default=None, alias="repoName")
    message: str | None = None
    summary: str | None = None
    alignment: list[str] = Field(default_factory=list)
    gaps: list[str] = Field(default_factory=list)
    over_engineering: list[str] = Field(default_factory=list, alias="overEngineering")
    coding_practices: CodingPractices = Field(default_factory=CodingPractices, alias="codingPractices")
    risks: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    evidence: dict[str, Any] | None = None

    @field_validator(
        "alignment", "gaps", "over_engineering", "risks", "recommendations", mode="before",
    )
    @classmethod
    def coerce_lists(cls, v: Any) -> Any:
        return _string_list(v)

    @field_validator("coding_practices", mode="before")
    @classmethod
    def default_practices(cls, v: Any) -> Any:
        return {} if v is None else v


def validate_ticket_list(model: type[RawTicket], value: Any) -> list[dict[str, Any]]:
    """Validate an LLM-produced ticket array and return snake_case dicts.

    Raises ValueError when the payload is not a list (pydantic's
    ValidationError is itself a ValueError).
    """
    if isinstance(value, dict) and isinstance(value.get("tickets"), list):
        value = value["tickets"]
    if not isinstance(value, list):
        raise ValueError(f"expected a JSON array of tickets, got {type(value).__name__}")
    return [model.model_validate(item).model_dump() for item in value]
