"""PipelineState: the central data structure threaded through every pipeline stage.

This is a TypedDict so that stages can return plain partial dicts and the
runner can shallow-merge them. Stage outputs are stored as plain dicts
(``model_dump()`` of the models in ``sprintpilot.models.tickets``).
"""

from __future__ import annotations

from enum import Enum
from typing import Any, TypedDict


class RunStatus(str, Enum):
    PENDING = "PENDING"
    CLARIFYING = "CLARIFYING"
    ANALYZING_REPO = "ANALYZING_REPO"
    DRAFTING_HLD = "DRAFTING_HLD"
    SLICING_TICKETS = "SLICING_TICKETS"
    ESTIMATING = "ESTIMATING"
    PRIORITIZING = "PRIORITIZING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class ClarificationsDict(TypedDict, total=False):
    questions: list[str]
    assumptions: list[str]
    scope: str


class ArchitectureDict(TypedDict, total=False):
    """High-level design produced by the HLD drafter."""

    modules: list[str]
    data_flows: list[str]
    risks: list[str]
    nfrs: list[str]


class RawTicketDict(TypedDict, total=False):
    title: str
    description: str
    acceptance_criteria: str


class EstimatedTicketDict(RawTicketDict, total=False):
    estimate_hours: float
    tshirt_size: str  # XS | S | M | L | XL


class FinalTicketDict(EstimatedTicketDict, total=False):
    priority: int  # 1..10, 10 = highest
    sprint: int
    dependencies: list[str]
    tags: list[str]


class PipelineState(TypedDict, total=False):
    """State object carried through all pipeline stages.

    Every optional output field is written by exactly one stage and never
    touched again. ``errors`` only grows.
    """

    # --- Inputs (immutable) ---
    run_id: str
    project_id: str
    title: str
    problem: str
    constraints: str | None
    repo_url: str | None

    # --- Stage outputs ---
    clarifications: ClarificationsDict
    repo_analysis: dict[str, Any]
    architecture: ArchitectureDict
    raw_tickets: list[RawTicketDict]
    estimated_tickets: list[EstimatedTicketDict]
    final_tickets: list[FinalTicketDict]

    # --- Status tracking ---
    current_step: str
    errors: list[str]
    tokens_used: int


def create_initial_state(
    *,
    project_id: str,
    title: str,
    problem: str,
    constraints: str | None = None,
    repo_url: str | None = None,
    run_id: str = "",
) -> PipelineState:
    """Build the PENDING state for a new run. Only the inputs are populated."""
    return {
        "run_id": run_id,
        "project_id": project_id,
        "title": title,
        "problem": problem,
        "constraints": constraints,
        "repo_url": repo_url or None,
        "current_step": RunStatus.PENDING.value,
        "errors": [],
        "tokens_used": 0,
    }


def merge_state(state: PipelineState, partial: dict[str, Any]) -> PipelineState:
    """Shallow-merge a stage's partial output into a new state.

    Keys present in ``partial`` overwrite; keys absent from it are kept as-is.
    """
    merged: dict[str, Any] = dict(state)
    merged.update(partial)
    return merged  # type: ignore[return-value]
