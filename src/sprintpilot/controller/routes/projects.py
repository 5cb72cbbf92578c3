"""Project routes: feature ideas waiting to be planned."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request

from sprintpilot.models.project import ProjectCreate

logger = logging.getLogger(__name__)
router = APIRouter(tags=["projects"])


@router.post("/projects", status_code=201)
async def create_project(body: ProjectCreate, request: Request) -> dict:
    project = await request.app.state.store.create_project(**body.model_dump())
    logger.info("Created project %s: %s", project["id"], project["title"])
    return {"project": project}


@router.get("/projects")
async def list_projects(request: Request) -> dict:
    return {"projects": await request.app.state.store.list_projects()}


@router.get("/projects/{project_id}")
async def get_project(project_id: str, request: Request) -> dict:
    project = await request.app.state.store.get_project(project_id)
    if project is None:
        raise HTTPException(status_code=404, detail="Project not found")
    return {"project": project}
