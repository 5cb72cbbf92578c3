"""Pipeline runner: drives the ordered stage list over one run's state.

Stage order:
    Clarifier → Repo Analyzer (optional, never fatal) → HLD Drafter
        → Ticket Slicer → Estimator → Prioritizer

The first fatal stage that reports FAILED ends the run; its snapshot is
still yielded so observers see the failure.
"""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Awaitable, Callable

from sprintpilot.errors import PipelineInvariantError
from sprintpilot.models.pipeline_state import PipelineState, RunStatus, merge_state
from sprintpilot.pipeline.stages import (
    Stage, StageContext, error_message, fail, missing_fields,
)
from sprintpilot.pipeline.stages.clarifier import CLARIFIER
from sprintpilot.pipeline.stages.estimator import ESTIMATOR
from sprintpilot.pipeline.stages.hld_drafter import HLD_DRAFTER
from sprintpilot.pipeline.stages.prioritizer import PRIORITIZER
from sprintpilot.pipeline.stages.repo_analyzer import REPO_ANALYZER
from sprintpilot.pipeline.stages.ticket_slicer import TICKET_SLICER

logger = logging.getLogger(__name__)

Observer = Callable[[str, PipelineState], Awaitable[None]]


def build_stages() -> list[Stage]:
    """A fresh list of the pipeline's stages, in execution order."""
    return [CLARIFIER, REPO_ANALYZER, HLD_DRAFTER, TICKET_SLICER, ESTIMATOR, PRIORITIZER]


def is_failed(state: PipelineState) -> bool:
    return state.get("current_step") == RunStatus.FAILED.value


class PipelineRunner:
    """Runs stages in order over one run's state. Not shared between runs."""

    def __init__(self, stages: list[Stage], ctx: StageContext) -> None:
        if not stages:
            raise ValueError("PipelineRunner needs at least one stage")
        names = [s.name for s in stages]
        if len(set(names)) != len(names):
            raise ValueError(f"duplicate stage names: {names}")
        self.stages = list(stages)
        self.ctx = ctx

    async def _invoke(self, stage: Stage, state: PipelineState) -> dict[str, Any]:
        try:
            return await stage(state, self.ctx)
        except PipelineInvariantError:
            raise
        except Exception as exc:
            logger.exception("[%s] Stage %s raised", self.ctx.run_id, stage.name)
            if not stage.fatal:
                return {
                    stage.produces: {"status": "failed", "message": error_message(exc)},
                    "current_step": stage.active_status.value,
                }
            return fail(state, stage.label, error_message(exc))

    async def stream(self, state: PipelineState) -> AsyncIterator[tuple[str, PipelineState]]:
        """Yield ``(stage_name, state)`` after every stage that ran."""
        for stage in self.stages:
            missing = missing_fields(state, stage.requires)
            if missing:
                raise PipelineInvariantError(
                    f"stage {stage.name} reached without {', '.join(missing)}"
                )

            tokens_before = state.get("tokens_used", 0)
            partial = await self._invoke(stage, state)
            state = merge_state(state, partial)

            if state.get("tokens_used", 0) < tokens_before:
                raise PipelineInvariantError(
                    f"stage {stage.name} decreased tokens_used "
                    f"({tokens_before} -> {state.get('tokens_used', 0)})"
                )

            logger.debug(
                "[%s] Stage %s done: step=%s tokens=%d",
                self.ctx.run_id, stage.name, state.get("current_step"), state.get("tokens_used", 0),
            )
            yield stage.name, state

            if stage.fatal and is_failed(state):
                logger.info("[%s] Pipeline halted at %s", self.ctx.run_id, stage.name)
                return

    async def run(self, state: PipelineState, observer: Observer | None = None) -> PipelineState:
        """Drive the stream to the end and return the terminal state."""
        final = state
        async for stage_name, snapshot in self.stream(state):
            final = snapshot
            if observer is not None:
                await observer(stage_name, snapshot)
        return final
