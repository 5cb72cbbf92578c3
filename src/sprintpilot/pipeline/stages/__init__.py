"""Stage contract and helpers shared by every pipeline stage.

A stage is an async function ``(state, ctx) -> partial state``. It reads only
the fields it needs, performs one LLM round-trip through the retry policy,
validates the JSON it gets back and returns either its produced field plus
the new ``current_step`` and ``tokens_used``, or a failure marker built by
``fail``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from sprintpilot.config.defaults import PIPELINE_DEFAULTS
from sprintpilot.errors import StagePreconditionError
from sprintpilot.llm.base import LLMClient
from sprintpilot.llm.prompt import PromptComposer
from sprintpilot.models.pipeline_state import PipelineState, RunStatus
from sprintpilot.pipeline.parsing import Expect, extract_json
from sprintpilot.pipeline.retry import Sleep, retry_with_backoff

logger = logging.getLogger(__name__)


@dataclass
class StageContext:
    """Per-run collaborators handed to every stage.

    Built fresh for each run; only ``llm`` (and ``github``) are shared
    process-wide.
    """

    llm: LLMClient
    run_id: str = ""
    settings: dict[str, Any] = field(default_factory=lambda: dict(PIPELINE_DEFAULTS))
    prompts: PromptComposer = field(default_factory=PromptComposer)
    github: Any = None  # sprintpilot.repo.snapshot.RepoSnapshotFetcher
    sleep: Sleep = asyncio.sleep

    def setting(self, key: str) -> Any:
        return self.settings.get(key, PIPELINE_DEFAULTS[key])


StageFn = Callable[[PipelineState, StageContext], Awaitable[dict[str, Any]]]


@dataclass(frozen=True)
class Stage:
    """One step of the pipeline and the bookkeeping the runner needs about it."""

    name: str
    label: str  # human name used in error messages, e.g. "HLD Drafter"
    fn: StageFn
    produces: str
    active_status: RunStatus
    requires: tuple[str, ...] = ()
    fatal: bool = True
    skip_unless: str | None = None  # state field the stage has nothing to do without

    def skips(self, state: PipelineState) -> bool:
        return self.skip_unless is not None and not state.get(self.skip_unless)

    async def __call__(self, state: PipelineState, ctx: StageContext) -> dict[str, Any]:
        return await self.fn(state, ctx)


def missing_fields(state: PipelineState, required: tuple[str, ...]) -> list[str]:
    return [name for name in required if state.get(name) is None]


def require(state: PipelineState, stage: str, *fields: str) -> None:
    """Raise StagePreconditionError if any of ``fields`` is absent from state."""
    missing = missing_fields(state, fields)
    if missing:
        raise StagePreconditionError(stage, missing)


def fail(state: PipelineState, label: str, message: str) -> dict[str, Any]:
    """Failure marker: FAILED status plus the accumulated errors and this one."""
    return {
        "current_step": RunStatus.FAILED.value,
        "errors": [*state.get("errors", []), f"{label} failed: {message}"],
    }


def succeed(
    state: PipelineState, produced: str, value: Any, step: RunStatus, tokens: int,
) -> dict[str, Any]:
    return {
        produced: value,
        "current_step": step.value,
        "tokens_used": state.get("tokens_used", 0) + tokens,
    }


def to_prompt_json(value: Any) -> str:
    return json.dumps(value, indent=2, ensure_ascii=False)


async def invoke_llm_json(
    ctx: StageContext, prompt: str, *, label: str, expect: Expect = None,
) -> tuple[Any, int]:
    """One LLM round-trip with retry, then JSON extraction.

    Only the invocation is retried. A response that does not parse raises
    JsonExtractionError straight away. Returns ``(value, tokens)`` where
    tokens is the successful response's reported usage.
    """
    response = await retry_with_backoff(
        lambda: ctx.llm.invoke(prompt),
        max_attempts=ctx.setting("retry_max_attempts"),
        base_delay_ms=ctx.setting("retry_base_delay_ms"),
        label=f"[{ctx.run_id}] {label}",
        sleep=ctx.sleep,
    )
    logger.debug("[%s] %s response: %d chars", ctx.run_id, label, len(response.content))
    value = extract_json(response.content, expect=expect).unwrap()
    return value, response.total_tokens


def error_message(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__
