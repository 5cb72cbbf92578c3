"""Estimator stage: hours and t-shirt size per ticket."""

from __future__ import annotations

import logging
from typing import Any

from sprintpilot.errors import StagePreconditionError
from sprintpilot.models.pipeline_state import PipelineState, RunStatus
from sprintpilot.models.tickets import EstimatedTicket, RawTicket, validate_ticket_list
from sprintpilot.pipeline.stages import (
    Stage, StageContext, error_message, fail, invoke_llm_json, require, succeed,
    to_prompt_json,
)

logger = logging.getLogger(__name__)

LABEL = "Estimator"


async def estimator_stage(state: PipelineState, ctx: StageContext) -> dict[str, Any]:
    try:
        require(state, LABEL, "raw_tickets")
    except StagePreconditionError as exc:
        return fail(state, LABEL, str(exc))

    raw_tickets = state["raw_tickets"]
    logger.info("[%s] Estimating %d tickets", ctx.run_id, len(raw_tickets))
    try:
        tickets_json = to_prompt_json([
            RawTicket.model_validate(t).model_dump(by_alias=True) for t in raw_tickets
        ])
        prompt = ctx.prompts.render("estimator", tickets=tickets_json)
        value, tokens = await invoke_llm_json(ctx, prompt, label=LABEL, expect="array")
        estimated = validate_ticket_list(EstimatedTicket, value)
        if not estimated:
            raise ValueError("model returned no estimates")
    except Exception as exc:
        logger.error("[%s] Estimator failed: %s", ctx.run_id, error_message(exc))
        return fail(state, LABEL, error_message(exc))

    total_hours = sum(t["estimate_hours"] for t in estimated)
    logger.info(
        "[%s] Estimated %d tickets (%.1fh total), tokens=%d",
        ctx.run_id, len(estimated), total_hours, tokens,
    )
    return succeed(state, "estimated_tickets", estimated, RunStatus.ESTIMATING, tokens)


ESTIMATOR = Stage(
    name="estimator",
    label=LABEL,
    fn=estimator_stage,
    produces="estimated_tickets",
    active_status=RunStatus.ESTIMATING,
    requires=("raw_tickets",),
)
