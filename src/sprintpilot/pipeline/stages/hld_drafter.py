"""HLD drafter stage: modules, data flows, risks and NFRs for the clarified scope."""

from __future__ import annotations

import logging
from typing import Any

from sprintpilot.errors import StagePreconditionError
from sprintpilot.models.pipeline_state import PipelineState, RunStatus
from sprintpilot.models.tickets import Architecture
from sprintpilot.pipeline.stages import (
    Stage, StageContext, error_message, fail, invoke_llm_json, require, succeed,
)
from sprintpilot.pipeline.stages.repo_analyzer import format_repo_analysis

logger = logging.getLogger(__name__)

LABEL = "HLD Drafter"


async def hld_drafter_stage(state: PipelineState, ctx: StageContext) -> dict[str, Any]:
    try:
        require(state, LABEL, "clarifications")
    except StagePreconditionError as exc:
        return fail(state, LABEL, str(exc))

    logger.info("[%s] HLD drafter starting", ctx.run_id)
    try:
        prompt = ctx.prompts.render(
            "hld_drafter",
            title=state.get("title", ""),
            scope=state["clarifications"].get("scope", ""),
            problem=state.get("problem", ""),
            constraints=state.get("constraints") or "None",
            repo_analysis=format_repo_analysis(state.get("repo_analysis")),
        )
        value, tokens = await invoke_llm_json(ctx, prompt, label=LABEL, expect="object")
        architecture = Architecture.model_validate(value).model_dump()
    except Exception as exc:
        logger.error("[%s] HLD drafter failed: %s", ctx.run_id, error_message(exc))
        return fail(state, LABEL, error_message(exc))

    logger.info(
        "[%s] HLD drafted: %d modules, %d risks, tokens=%d",
        ctx.run_id, len(architecture["modules"]), len(architecture["risks"]), tokens,
    )
    return succeed(state, "architecture", architecture, RunStatus.DRAFTING_HLD, tokens)


HLD_DRAFTER = Stage(
    name="hld_drafter",
    label=LABEL,
    fn=hld_drafter_stage,
    produces="architecture",
    active_status=RunStatus.DRAFTING_HLD,
    requires=("clarifications",),
)
