"""Tests for PipelineRunner: ordering, fail-fast, token accounting, invariants."""

from __future__ import annotations

from typing import Any

import pytest

from conftest import CLARIFICATIONS_JSON, HAPPY_PATH, HLD_JSON
from sprintpilot.errors import PipelineInvariantError
from sprintpilot.llm.base import LLMResponse
from sprintpilot.models.pipeline_state import RunStatus, create_initial_state, merge_state
from sprintpilot.pipeline.runner import PipelineRunner, build_stages
from sprintpilot.pipeline.stages import Stage
from sprintpilot.pipeline.stages.clarifier import CLARIFIER
from sprintpilot.pipeline.stages.hld_drafter import HLD_DRAFTER

STAGE_ORDER = ["clarifier", "repo_analyzer", "hld_drafter", "ticket_slicer", "estimator", "prioritizer"]


async def _collect(runner: PipelineRunner, state) -> list[tuple[str, dict]]:
    return [(name, snapshot) async for name, snapshot in runner.stream(state)]


def _stage(name: str, fn, *, fatal: bool = True, produces: str = "clarifications") -> Stage:
    return Stage(
        name=name, label=name.title(), fn=fn, produces=produces,
        active_status=RunStatus.CLARIFYING, fatal=fatal,
    )


# ---------------------------------------------------------------------------
# build_stages
# ---------------------------------------------------------------------------


class TestBuildStages:
    def test_order(self) -> None:
        assert [s.name for s in build_stages()] == STAGE_ORDER

    def test_fresh_list_each_call(self) -> None:
        first = build_stages()
        first.pop()
        assert len(build_stages()) == 6

    def test_only_repo_analysis_is_optional(self) -> None:
        assert [s.name for s in build_stages() if not s.fatal] == ["repo_analyzer"]

    def test_duplicate_names_rejected(self, make_ctx) -> None:
        with pytest.raises(ValueError):
            PipelineRunner([CLARIFIER, CLARIFIER], make_ctx([]))


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------


class TestHappyPath:
    @pytest.mark.asyncio
    async def test_user_auth_run_completes(self, make_ctx, initial_state) -> None:
        ctx = make_ctx(HAPPY_PATH)
        final = await PipelineRunner(build_stages(), ctx).run(initial_state)

        assert final["current_step"] == "COMPLETED"
        assert final["errors"] == []
        assert final["tokens_used"] == 1000
        assert len(final["final_tickets"]) == 2
        assert final["repo_analysis"]["status"] == "skipped"
        assert ctx.llm.calls == 5
        for field in ("clarifications", "architecture", "raw_tickets", "estimated_tickets"):
            assert field in final

    @pytest.mark.asyncio
    async def test_stream_yields_every_stage_in_order(self, make_ctx, initial_state) -> None:
        events = await _collect(PipelineRunner(build_stages(), make_ctx(HAPPY_PATH)), initial_state)
        assert [name for name, _ in events] == STAGE_ORDER
        assert [snap["current_step"] for _, snap in events] == [
            "CLARIFYING", "ANALYZING_REPO", "DRAFTING_HLD", "SLICING_TICKETS", "ESTIMATING", "COMPLETED",
        ]

    @pytest.mark.asyncio
    async def test_tokens_never_decrease(self, make_ctx, initial_state) -> None:
        events = await _collect(PipelineRunner(build_stages(), make_ctx(HAPPY_PATH)), initial_state)
        tokens = [snap["tokens_used"] for _, snap in events]
        assert tokens == sorted(tokens)
        assert tokens == [100, 100, 300, 600, 750, 1000]

    @pytest.mark.asyncio
    async def test_fenced_responses(self, make_ctx, initial_state) -> None:
        fenced = [LLMResponse(f"```json\n{r.content}\n```", r.total_tokens) for r in HAPPY_PATH]
        final = await PipelineRunner(build_stages(), make_ctx(fenced)).run(initial_state)
        assert final["current_step"] == "COMPLETED"

    @pytest.mark.asyncio
    async def test_initial_state_not_mutated(self, make_ctx, initial_state) -> None:
        before = dict(initial_state)
        await PipelineRunner(build_stages(), make_ctx(HAPPY_PATH)).run(initial_state)
        assert initial_state == before

    @pytest.mark.asyncio
    async def test_observer_sees_each_snapshot(self, make_ctx, initial_state) -> None:
        seen: list[tuple[str, str]] = []

        async def observer(stage: str, snapshot) -> None:
            seen.append((stage, snapshot["current_step"]))

        await PipelineRunner(build_stages(), make_ctx(HAPPY_PATH)).run(initial_state, observer=observer)
        assert [s for s, _ in seen] == STAGE_ORDER
        assert seen[-1] == ("prioritizer", "COMPLETED")


# ---------------------------------------------------------------------------
# Failure handling
# ---------------------------------------------------------------------------


class TestFailFast:
    @pytest.mark.asyncio
    async def test_hld_failure_after_retries(self, make_ctx, initial_state, sleep) -> None:
        ctx = make_ctx([LLMResponse(CLARIFICATIONS_JSON, 100)] + [TimeoutError("LLM timeout")] * 3)
        runner = PipelineRunner(build_stages(), ctx)
        events = await _collect(runner, initial_state)
        final = events[-1][1]

        assert [name for name, _ in events] == ["clarifier", "repo_analyzer", "hld_drafter"]
        assert final["current_step"] == "FAILED"
        assert "clarifications" in final
        assert "architecture" not in final
        assert len(final["errors"]) == 1
        assert "HLD Drafter" in final["errors"][0]
        assert final["tokens_used"] == 100
        assert ctx.llm.calls == 4
        assert sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_clarifier_malformed_stops_everything(self, make_ctx, initial_state) -> None:
        ctx = make_ctx(["sorry, no JSON today"])
        events = await _collect(PipelineRunner(build_stages(), ctx), initial_state)
        assert [name for name, _ in events] == ["clarifier"]
        assert events[-1][1]["current_step"] == "FAILED"
        assert ctx.llm.calls == 1

    @pytest.mark.asyncio
    async def test_later_stage_failure_keeps_earlier_outputs(self, make_ctx, initial_state) -> None:
        script = HAPPY_PATH[:3] + ["not json"]
        final = await PipelineRunner(build_stages(), make_ctx(script)).run(initial_state)
        assert final["current_step"] == "FAILED"
        assert final["raw_tickets"]
        assert "estimated_tickets" not in final
        assert final["errors"][0].startswith("Estimator failed:")

    @pytest.mark.asyncio
    async def test_repo_failure_does_not_stop_run(self, make_ctx) -> None:
        class _BrokenGitHub:
            async def fetch(self, parsed: Any) -> dict:
                raise RuntimeError("GitHub repo lookup failed (404).")

        state = create_initial_state(
            project_id="p", title="User Auth", problem="Users need to log in securely.",
            repo_url="https://github.com/acme/private-repo",
        )
        final = await PipelineRunner(build_stages(), make_ctx(HAPPY_PATH, github=_BrokenGitHub())).run(state)
        assert final["current_step"] == "COMPLETED"
        assert final["errors"] == []
        assert final["repo_analysis"]["status"] == "failed"
        assert final["repo_analysis"]["message"] == "GitHub repo lookup failed (404)."

    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_stage_failure(self, make_ctx, initial_state) -> None:
        async def boom(state, ctx) -> dict:
            raise KeyError("scope")

        final = await PipelineRunner([_stage("exploder", boom)], make_ctx([])).run(initial_state)
        assert final["current_step"] == "FAILED"
        assert final["errors"] == ["Exploder failed: 'scope'"]

    @pytest.mark.asyncio
    async def test_unexpected_exception_in_optional_stage_leaves_failed_marker(self, make_ctx, initial_state) -> None:
        async def boom(state, ctx) -> dict:
            raise RuntimeError("flaky")

        stages = [CLARIFIER, _stage("extra", boom, fatal=False, produces="repo_analysis"), HLD_DRAFTER]
        final = await PipelineRunner(stages, make_ctx([CLARIFICATIONS_JSON, HLD_JSON])).run(initial_state)
        assert final["current_step"] == "DRAFTING_HLD"
        assert final["errors"] == []
        assert final["repo_analysis"] == {"status": "failed", "message": "flaky"}


# ---------------------------------------------------------------------------
# Token accounting
# ---------------------------------------------------------------------------


class TestTokenAccounting:
    @pytest.mark.asyncio
    async def test_failed_attempts_add_no_tokens(self, make_ctx, initial_state) -> None:
        script = [TimeoutError("first try"), *HAPPY_PATH]
        final = await PipelineRunner(build_stages(), make_ctx(script)).run(initial_state)
        assert final["tokens_used"] == 1000

    @pytest.mark.asyncio
    async def test_failed_stage_keeps_previous_total(self, make_ctx, initial_state) -> None:
        script = [LLMResponse(CLARIFICATIONS_JSON, 100), LLMResponse("garbage", 999)]
        final = await PipelineRunner(build_stages(), make_ctx(script)).run(initial_state)
        assert final["tokens_used"] == 100


# ---------------------------------------------------------------------------
# Invariants
# ---------------------------------------------------------------------------


class TestInvariants:
    @pytest.mark.asyncio
    async def test_missing_predecessor_field_raises(self, make_ctx, initial_state) -> None:
        ctx = make_ctx([HLD_JSON])
        with pytest.raises(PipelineInvariantError, match="clarifications"):
            await PipelineRunner([HLD_DRAFTER], ctx).run(initial_state)
        assert ctx.llm.calls == 0

    @pytest.mark.asyncio
    async def test_token_decrease_raises(self, make_ctx, initial_state) -> None:
        async def refund(state, ctx) -> dict:
            return {"clarifications": {}, "tokens_used": state["tokens_used"] - 10}

        state = merge_state(initial_state, {"tokens_used": 50})
        with pytest.raises(PipelineInvariantError, match="tokens_used"):
            await PipelineRunner([_stage("refund", refund)], make_ctx([])).run(state)


# ---------------------------------------------------------------------------
# merge_state
# ---------------------------------------------------------------------------


class TestMergeState:
    def test_partial_overwrites_and_absent_keys_kept(self, initial_state) -> None:
        merged = merge_state(initial_state, {"current_step": "CLARIFYING", "tokens_used": 5})
        assert merged["current_step"] == "CLARIFYING"
        assert merged["title"] == "User Auth"
        assert initial_state["current_step"] == "PENDING"

    def test_initial_state_defaults(self) -> None:
        state = create_initial_state(project_id="p", title="T", problem="P", repo_url="")
        assert state["current_step"] == "PENDING"
        assert state["errors"] == []
        assert state["tokens_used"] == 0
        assert state["repo_url"] is None
