"""Prioritizer stage: priority, sprint, dependencies and tags per ticket. Last stage."""

from __future__ import annotations

import logging
from typing import Any

from sprintpilot.errors import StagePreconditionError
from sprintpilot.models.pipeline_state import PipelineState, RunStatus
from sprintpilot.models.tickets import EstimatedTicket, FinalTicket, validate_ticket_list
from sprintpilot.pipeline.stages import (
    Stage, StageContext, error_message, fail, invoke_llm_json, require, succeed,
    to_prompt_json,
)

logger = logging.getLogger(__name__)

LABEL = "Prioritizer"


async def prioritizer_stage(state: PipelineState, ctx: StageContext) -> dict[str, Any]:
    try:
        require(state, LABEL, "estimated_tickets")
    except StagePreconditionError as exc:
        return fail(state, LABEL, str(exc))

    estimated = state["estimated_tickets"]
    capacity = int(ctx.setting("sprint_capacity_hours"))
    logger.info(
        "[%s] Prioritizing %d tickets (capacity %dh/sprint)", ctx.run_id, len(estimated), capacity,
    )
    try:
        tickets_json = to_prompt_json([
            EstimatedTicket.model_validate(t).model_dump(by_alias=True) for t in estimated
        ])
        prompt = ctx.prompts.render("prioritizer", tickets=tickets_json, sprint_capacity=capacity)
        value, tokens = await invoke_llm_json(ctx, prompt, label=LABEL, expect="array")
        final = validate_ticket_list(FinalTicket, value)
        if not final:
            raise ValueError("model returned no prioritized tickets")
    except Exception as exc:
        logger.error("[%s] Prioritizer failed: %s", ctx.run_id, error_message(exc))
        return fail(state, LABEL, error_message(exc))

    sprints = sorted({t["sprint"] for t in final})
    logger.info(
        "[%s] Prioritized %d tickets across sprints %s, tokens=%d",
        ctx.run_id, len(final), sprints, tokens,
    )
    return succeed(state, "final_tickets", final, RunStatus.COMPLETED, tokens)


PRIORITIZER = Stage(
    name="prioritizer",
    label=LABEL,
    fn=prioritizer_stage,
    produces="final_tickets",
    active_status=RunStatus.PRIORITIZING,
    requires=("estimated_tickets",),
)
