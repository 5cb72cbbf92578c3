"""Clarifier stage: turn the raw feature idea into questions, assumptions and a scope."""

from __future__ import annotations

import logging
from typing import Any

from sprintpilot.models.pipeline_state import PipelineState, RunStatus
from sprintpilot.models.tickets import Clarifications
from sprintpilot.pipeline.stages import (
    Stage, StageContext, error_message, fail, invoke_llm_json, succeed,
)

logger = logging.getLogger(__name__)

LABEL = "Clarifier"


async def clarifier_stage(state: PipelineState, ctx: StageContext) -> dict[str, Any]:
    """Ask the model to clarify the feature. Needs only the run inputs."""
    logger.info(
        "[%s] Clarifier starting: title=%r problem=%d chars constraints=%s",
        ctx.run_id, state.get("title", ""), len(state.get("problem") or ""),
        bool(state.get("constraints")),
    )

    try:
        prompt = ctx.prompts.render(
            "clarifier",
            title=state.get("title", ""),
            problem=state.get("problem", ""),
            constraints=state.get("constraints") or "None",
        )
        value, tokens = await invoke_llm_json(ctx, prompt, label=LABEL, expect="object")
        clarifications = Clarifications.model_validate(value).model_dump()
    except Exception as exc:
        logger.error("[%s] Clarifier failed: %s", ctx.run_id, error_message(exc))
        return fail(state, LABEL, error_message(exc))

    logger.info(
        "[%s] Clarifier done: %d questions, %d assumptions, tokens=%d",
        ctx.run_id, len(clarifications["questions"]), len(clarifications["assumptions"]), tokens,
    )
    return succeed(state, "clarifications", clarifications, RunStatus.CLARIFYING, tokens)


CLARIFIER = Stage(
    name="clarifier",
    label=LABEL,
    fn=clarifier_stage,
    produces="clarifications",
    active_status=RunStatus.CLARIFYING,
)
