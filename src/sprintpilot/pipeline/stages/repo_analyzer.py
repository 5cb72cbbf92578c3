"""Repo analyzer stage: optional review of the target repository.

This is the one non-fatal stage. Whatever goes wrong ends up as a
``repo_analysis`` marker with status ``failed``; the run carries on and the
HLD drafter simply sees less context.
"""

from __future__ import annotations

import logging
from typing import Any

from sprintpilot.models.pipeline_state import PipelineState, RunStatus
from sprintpilot.models.tickets import RepoAnalysis
from sprintpilot.pipeline.stages import (
    Stage, StageContext, error_message, invoke_llm_json, to_prompt_json,
)
from sprintpilot.repo.snapshot import parse_github_repo_url

logger = logging.getLogger(__name__)

LABEL = "Repo Analyzer"


def format_repo_analysis(analysis: dict[str, Any] | None) -> str:
    """Render an analysis as prompt text for the HLD drafter."""
    if not analysis:
        return "No repository analysis available."
    if analysis.get("status") != "available":
        return analysis.get("message") or "Repository analysis unavailable."

    practices = analysis.get("coding_practices") or {}
    sections = [
        ("Summary", analysis.get("summary")),
        ("Alignment", analysis.get("alignment")),
        ("Gaps", analysis.get("gaps")),
        ("Over-engineering", analysis.get("over_engineering")),
        ("Coding strengths", practices.get("strengths")),
        ("Coding weaknesses", practices.get("weaknesses")),
        ("Risks", analysis.get("risks")),
        ("Recommendations", analysis.get("recommendations")),
    ]
    lines = []
    for heading, value in sections:
        if not value:
            continue
        text = "; ".join(value) if isinstance(value, list) else str(value)
        lines.append(f"{heading}: {text}")
    return "\n".join(lines)


def _marker(state: PipelineState, status: str, message: str, repo_url: str | None) -> dict[str, Any]:
    analysis = RepoAnalysis(status=status, message=message, repo_url=repo_url).model_dump()
    return {
        "repo_analysis": analysis,
        "current_step": RunStatus.ANALYZING_REPO.value,
        "tokens_used": state.get("tokens_used", 0),
    }


async def repo_analyzer_stage(state: PipelineState, ctx: StageContext) -> dict[str, Any]:
    repo_url = state.get("repo_url")
    if not repo_url:
        logger.info("[%s] No repository URL, skipping repo analysis", ctx.run_id)
        return _marker(state, "skipped", "No repository URL provided.", None)

    parsed = parse_github_repo_url(repo_url)
    if parsed is None:
        logger.warning("[%s] Not a GitHub repository URL: %s", ctx.run_id, repo_url)
        return _marker(state, "failed", "Invalid GitHub repository URL.", repo_url)

    if ctx.github is None:
        return _marker(state, "failed", "Repository access is not configured.", parsed.url)

    clarifications = state.get("clarifications") or {}
    try:
        snapshot = await ctx.github.fetch(parsed)
        prompt = ctx.prompts.render(
            "repo_analyzer",
            title=state.get("title", ""),
            scope=clarifications.get("scope") or "Not specified",
            problem=state.get("problem", ""),
            constraints=state.get("constraints") or "None",
            repo_snapshot=to_prompt_json(snapshot),
        )
        value, tokens = await invoke_llm_json(ctx, prompt, label=LABEL, expect="object")
        if not isinstance(value, dict):
            raise ValueError("expected a JSON object")
        analysis = RepoAnalysis.model_validate({
            **value,
            "status": "available",
            "repo_url": parsed.url,
            "repo_name": snapshot["repo"]["name"],
            "evidence": {
                "languages": snapshot.get("languages", {}),
                "top_level": snapshot.get("top_level", []),
                "recent_commits": snapshot.get("recent_commits", []),
                "readme_excerpt": snapshot.get("readme_excerpt", ""),
            },
        }).model_dump()
    except Exception as exc:
        logger.warning(
            "[%s] Repo analysis failed for %s: %s", ctx.run_id, parsed.full_name, error_message(exc),
        )
        return _marker(state, "failed", error_message(exc), parsed.url)

    logger.info(
        "[%s] Repo analysis done for %s: %d gaps, tokens=%d",
        ctx.run_id, parsed.full_name, len(analysis["gaps"]), tokens,
    )
    return {
        "repo_analysis": analysis,
        "current_step": RunStatus.ANALYZING_REPO.value,
        "tokens_used": state.get("tokens_used", 0) + tokens,
    }


REPO_ANALYZER = Stage(
    name="repo_analyzer",
    label=LABEL,
    fn=repo_analyzer_stage,
    produces="repo_analysis",
    active_status=RunStatus.ANALYZING_REPO,
    requires=("clarifications",),
    fatal=False,
    skip_unless="repo_url",
)
