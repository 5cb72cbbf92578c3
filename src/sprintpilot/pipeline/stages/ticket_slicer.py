"""Ticket slicer stage: break the design into user stories."""

from __future__ import annotations

import logging
from typing import Any

from sprintpilot.errors import StagePreconditionError
from sprintpilot.models.pipeline_state import PipelineState, RunStatus
from sprintpilot.models.tickets import RawTicket, validate_ticket_list
from sprintpilot.pipeline.stages import (
    Stage, StageContext, error_message, fail, invoke_llm_json, require, succeed,
)

logger = logging.getLogger(__name__)

LABEL = "Ticket Slicer"


async def ticket_slicer_stage(state: PipelineState, ctx: StageContext) -> dict[str, Any]:
    try:
        require(state, LABEL, "clarifications", "architecture")
    except StagePreconditionError as exc:
        return fail(state, LABEL, str(exc))

    max_tickets = int(ctx.setting("max_tickets_per_run"))
    logger.info("[%s] Ticket slicer starting (max %d tickets)", ctx.run_id, max_tickets)
    try:
        prompt = ctx.prompts.render(
            "ticket_slicer",
            title=state.get("title", ""),
            scope=state["clarifications"].get("scope", ""),
            modules=", ".join(state["architecture"].get("modules", [])),
            problem=state.get("problem", ""),
            max_tickets=max_tickets,
        )
        value, tokens = await invoke_llm_json(ctx, prompt, label=LABEL, expect="array")
        tickets = validate_ticket_list(RawTicket, value)
        if not tickets:
            raise ValueError("model returned no tickets")
    except Exception as exc:
        logger.error("[%s] Ticket slicer failed: %s", ctx.run_id, error_message(exc))
        return fail(state, LABEL, error_message(exc))

    if len(tickets) > max_tickets:
        logger.warning(
            "[%s] Ticket slicer returned %d tickets, keeping the first %d",
            ctx.run_id, len(tickets), max_tickets,
        )
        tickets = tickets[:max_tickets]

    logger.info("[%s] Sliced %d tickets, tokens=%d", ctx.run_id, len(tickets), tokens)
    return succeed(state, "raw_tickets", tickets, RunStatus.SLICING_TICKETS, tokens)


TICKET_SLICER = Stage(
    name="ticket_slicer",
    label=LABEL,
    fn=ticket_slicer_stage,
    produces="raw_tickets",
    active_status=RunStatus.SLICING_TICKETS,
    requires=("clarifications", "architecture"),
)
