"""Worker entry point: executes the planning pipeline for a single run.

Usage: python -m sprintpilot.worker.main --run-id=<id>
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import time
from typing import Any

import redis.asyncio as aioredis

from sprintpilot.config.bootstrap import load_bootstrap_config
from sprintpilot.config.defaults import get_config_snapshot
from sprintpilot.db.engine import create_engine, create_session_factory
from sprintpilot.db.store import RunStore, SqlRunStore
from sprintpilot.events.bus import EventBus, RedisEventBus
from sprintpilot.llm.base import LLMClient
from sprintpilot.llm.provider_chain import build_llm_client
from sprintpilot.models.events import EventType, PipelineEvent
from sprintpilot.models.pipeline_state import PipelineState, RunStatus, create_initial_state
from sprintpilot.pipeline.projector import RunStatusProjector
from sprintpilot.pipeline.runner import PipelineRunner, build_stages, is_failed
from sprintpilot.pipeline.stages import StageContext, error_message
from sprintpilot.repo.snapshot import RepoSnapshotFetcher

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"


async def _emit(event_bus: EventBus | None, run_id: str, event_type: EventType, **data: Any) -> None:
    if event_bus is not None:
        await event_bus.emit(PipelineEvent(
            run_id=run_id, event_type=event_type, stage="worker", data=data,
        ))


async def _mark_failed(
    store: RunStore, event_bus: EventBus | None, run_id: str, message: str, started: float,
) -> None:
    await store.update(
        run_id,
        status=RunStatus.FAILED.value,
        error_message=message,
        duration_ms=int((time.monotonic() - started) * 1000),
    )
    await _emit(event_bus, run_id, EventType.PIPELINE_FAILED, error=message)


async def execute_run(
    run_id: str,
    project: dict[str, Any],
    *,
    store: RunStore,
    llm: LLMClient,
    event_bus: EventBus | None = None,
    github: RepoSnapshotFetcher | None = None,
    settings: dict[str, Any] | None = None,
) -> PipelineState | None:
    """Run the pipeline for one run record and write its terminal state.

    Returns the terminal pipeline state, or None when the run broke outside
    any stage (store failure, invariant violation); the record is marked
    FAILED either way.
    """
    started = time.monotonic()

    def elapsed_ms() -> int:
        return int((time.monotonic() - started) * 1000)

    try:
        await store.update(run_id, status=RunStatus.CLARIFYING.value)
        await _emit(event_bus, run_id, EventType.PIPELINE_STARTED)

        stages = build_stages()
        ctx = StageContext(
            llm=llm,
            run_id=run_id,
            settings=settings if settings is not None else get_config_snapshot()["pipeline"],
            github=github,
        )
        initial = create_initial_state(
            run_id=run_id,
            project_id=project["id"],
            title=project["title"],
            problem=project["problem"],
            constraints=project.get("constraints"),
            repo_url=project.get("repo_url"),
        )
        projector = RunStatusProjector(run_id, store, stages, event_bus=event_bus)
        try:
            final = await PipelineRunner(stages, ctx).run(initial, observer=projector.observe)
        finally:
            await projector.aclose()

        if is_failed(final):
            message = "; ".join(final.get("errors", []))
            await store.update(
                run_id,
                status=RunStatus.FAILED.value,
                error_message=message,
                tokens_used=final.get("tokens_used", 0),
                duration_ms=elapsed_ms(),
            )
            await _emit(event_bus, run_id, EventType.PIPELINE_FAILED, error=message)
            logger.warning("Run %s failed: %s", run_id, message)
            return final

        tickets = final.get("final_tickets") or []
        await store.add_tickets(run_id, tickets)
        duration = elapsed_ms()
        await store.update(
            run_id,
            status=RunStatus.COMPLETED.value,
            clarifications=final.get("clarifications"),
            hld=final.get("architecture"),
            repo_analysis=final.get("repo_analysis"),
            tokens_used=final.get("tokens_used", 0),
            duration_ms=duration,
        )
        await _emit(
            event_bus, run_id, EventType.PIPELINE_COMPLETED,
            tickets=len(tickets), tokens_used=final.get("tokens_used", 0),
        )
        logger.info(
            "Run %s completed: %d tickets, %d tokens, %dms",
            run_id, len(tickets), final.get("tokens_used", 0), duration,
        )
        return final

    except Exception as e:
        logger.exception("Run %s failed outside the pipeline", run_id)
        await _mark_failed(store, event_bus, run_id, error_message(e), started)
        return None


async def start_run(
    run_id: str,
    *,
    store: RunStore,
    llm: LLMClient | None,
    event_bus: EventBus | None = None,
    github: RepoSnapshotFetcher | None = None,
    settings: dict[str, Any] | None = None,
    llm_error: str = "No LLM provider configured",
) -> PipelineState | None:
    """Load a PENDING run and its project, then execute it.

    Shared by the worker process and the in-process spawner. A run that
    cannot start (lookup failure, missing project, no LLM client) is marked
    FAILED with a message and duration rather than left PENDING.
    """
    started = time.monotonic()
    try:
        run = await store.get(run_id)
        if run is None:
            logger.error("Run %s not found in database", run_id)
            return None
        project = await store.get_project(run["project_id"])
        if project is None:
            message = f"Project {run['project_id']} not found"
        elif llm is None:
            message = llm_error
        else:
            return await execute_run(
                run_id, project,
                store=store, llm=llm, event_bus=event_bus, github=github, settings=settings,
            )
    except Exception as e:
        logger.exception("Run %s could not be started", run_id)
        message = error_message(e)

    logger.error("Cannot start run %s: %s", run_id, message)
    await _mark_failed(store, event_bus, run_id, message, started)
    return None


async def run_worker(run_id: str) -> None:
    """Execute one run with infrastructure built from the environment."""
    cfg = load_bootstrap_config()
    logging.basicConfig(level=getattr(logging, cfg.log_level.upper(), logging.INFO), format=LOG_FORMAT)

    logger.info("Worker starting for run %s", run_id)

    engine = create_engine(cfg.database_url)
    store = SqlRunStore(create_session_factory(engine))
    redis_client = aioredis.from_url(cfg.redis_url) if cfg.redis_url else None
    event_bus = RedisEventBus(redis_client) if redis_client else None
    github = RepoSnapshotFetcher(token=cfg.github_token)

    llm: LLMClient | None = None
    llm_error = ""
    try:
        llm = build_llm_client(cfg)
    except RuntimeError as e:
        llm_error = str(e)

    try:
        await start_run(
            run_id, store=store, llm=llm, event_bus=event_bus, github=github, llm_error=llm_error,
        )
    finally:
        await github.aclose()
        if redis_client is not None:
            await redis_client.aclose()
        await engine.dispose()


def main() -> None:
    parser = argparse.ArgumentParser(description="SprintPilot pipeline worker")
    parser.add_argument("--run-id", required=True, help="Run ID to execute")
    args = parser.parse_args()
    asyncio.run(run_worker(args.run_id))


if __name__ == "__main__":
    main()
