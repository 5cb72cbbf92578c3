"""FastAPI application factory for the SprintPilot controller."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import redis.asyncio as aioredis
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from sprintpilot.config.bootstrap import load_bootstrap_config
from sprintpilot.controller.job_spawner import InProcessJobSpawner, JobSpawner, SubprocessJobSpawner
from sprintpilot.controller.rate_limit import SlidingWindowRateLimiter
from sprintpilot.db.engine import create_engine, create_session_factory
from sprintpilot.db.store import SqlRunStore
from sprintpilot.errors import RateLimitExceeded
from sprintpilot.events.bus import RedisEventBus
from sprintpilot.llm.provider_chain import build_llm_client
from sprintpilot.models.config import BootstrapConfig
from sprintpilot.repo.snapshot import RepoSnapshotFetcher
from sprintpilot.worker.main import LOG_FORMAT, start_run

logger = logging.getLogger(__name__)


def _in_process_executor(app: FastAPI):
    """Run executor for InProcessJobSpawner, bound to the app's shared clients."""

    async def execute(run_id: str) -> None:
        state = app.state
        await start_run(
            run_id,
            store=state.store,
            llm=state.llm,
            event_bus=state.event_bus,
            github=state.github,
        )

    return execute


def build_job_spawner(app: FastAPI, cfg: BootstrapConfig) -> JobSpawner:
    if cfg.job_spawner == "subprocess":
        return SubprocessJobSpawner()
    return InProcessJobSpawner(_in_process_executor(app))


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage DB, Redis and HTTP clients across the app lifecycle."""
    cfg = load_bootstrap_config()
    logging.basicConfig(level=getattr(logging, cfg.log_level.upper(), logging.INFO), format=LOG_FORMAT)

    engine = create_engine(cfg.database_url)
    session_factory = create_session_factory(engine)
    redis_client = aioredis.from_url(cfg.redis_url) if cfg.redis_url else None
    if redis_client is None:
        logger.warning("No Redis configured: rate limiting and event streaming are disabled")

    try:
        llm = build_llm_client(cfg)
    except RuntimeError as e:
        logger.warning("%s; runs will fail until a key is set", e)
        llm = None

    app.state.config = cfg
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.store = SqlRunStore(session_factory)
    app.state.redis = redis_client
    app.state.event_bus = RedisEventBus(redis_client) if redis_client else None
    app.state.rate_limiter = SlidingWindowRateLimiter(redis_client, limit=cfg.rate_limit_per_hour)
    app.state.llm = llm
    app.state.github = RepoSnapshotFetcher(token=cfg.github_token)
    app.state.job_spawner = build_job_spawner(app, cfg)

    yield

    if isinstance(app.state.job_spawner, InProcessJobSpawner):
        await app.state.job_spawner.wait_all()
    await app.state.github.aclose()
    if redis_client is not None:
        await redis_client.aclose()
    await engine.dispose()


async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={
            "error": "Rate limit exceeded",
            "code": "RATE_LIMIT_EXCEEDED",
            "reset_time": exc.reset_at.isoformat(),
        },
        headers={
            "X-RateLimit-Remaining": str(exc.remaining),
            "X-RateLimit-Reset": exc.reset_at.isoformat(),
        },
    )


def create_app(use_lifespan: bool = True) -> FastAPI:
    """Create and configure the FastAPI application.

    Tests pass ``use_lifespan=False`` and fill ``app.state`` with fakes.
    """
    app = FastAPI(
        title="SprintPilot Controller",
        description="Turns feature ideas into sprint-ready tickets",
        version="0.1.0",
        lifespan=lifespan if use_lifespan else None,
    )

    from sprintpilot.controller.routes.config import router as config_router
    from sprintpilot.controller.routes.events import router as events_router
    from sprintpilot.controller.routes.health import router as health_router
    from sprintpilot.controller.routes.projects import router as projects_router
    from sprintpilot.controller.routes.runs import router as runs_router
    from sprintpilot.controller.routes.tickets import router as tickets_router

    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    app.include_router(health_router)
    app.include_router(projects_router, prefix="/api")
    app.include_router(runs_router, prefix="/api")
    app.include_router(tickets_router, prefix="/api")
    app.include_router(events_router, prefix="/api")
    app.include_router(config_router, prefix="/api")

    return app


def main() -> None:
    import uvicorn

    cfg = load_bootstrap_config()
    uvicorn.run(create_app(), host=cfg.controller_host, port=cfg.controller_port, log_level=cfg.log_level.lower())


if __name__ == "__main__":
    main()
