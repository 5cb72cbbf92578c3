"""Run routes: start a planning run and poll its record."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request, Response

from sprintpilot.controller.rate_limit import client_identity
from sprintpilot.errors import RateLimitExceeded
from sprintpilot.models.project import RunCreate

logger = logging.getLogger(__name__)
router = APIRouter(tags=["runs"])


@router.post("/runs", status_code=201)
async def create_run(body: RunCreate, request: Request, response: Response) -> dict:
    """Create a PENDING run and start it without waiting for the pipeline."""
    state = request.app.state
    limited = await state.rate_limiter.check(client_identity(request))
    if not limited.success:
        raise RateLimitExceeded(limited.reset_time, remaining=limited.remaining)
    response.headers.update(limited.headers())

    project = await state.store.get_project(body.project_id)
    if project is None:
        raise HTTPException(status_code=404, detail="Project not found")

    run = await state.store.create(body.project_id)
    await state.job_spawner.spawn(run["id"])
    logger.info("Run %s queued for project %s", run["id"], body.project_id)
    return {"run": run}


@router.get("/runs/{run_id}")
async def get_run(run_id: str, request: Request) -> dict:
    """The run record with its tickets (sprint ascending, priority descending)."""
    store = request.app.state.store
    run = await store.get(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail="Run not found")
    project = await store.get_project(run["project_id"])
    if project is not None:
        run["project"] = {k: project[k] for k in ("id", "title", "problem", "constraints")}
    return {"run": run}
