"""Record store: the persistence contract the worker, projector and routes use.

``SqlRunStore`` is the SQLAlchemy implementation. Records cross the boundary
as plain dicts so the pipeline never holds ORM objects.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from sqlalchemy import select, update

from sprintpilot.db.models import Project, Run, Ticket
from sprintpilot.models.pipeline_state import RunStatus

logger = logging.getLogger(__name__)

RUN_COLUMNS = frozenset({
    "status", "clarifications", "repo_analysis", "hld", "tokens_used",
    "duration_ms", "error_message",
})
EDITABLE_TICKET_COLUMNS = frozenset({"description", "acceptance_criteria"})
TICKET_COLUMNS = (
    "title", "description", "acceptance_criteria", "estimate_hours", "tshirt_size",
    "priority", "sprint", "dependencies", "tags",
)


class RunStore(Protocol):
    async def create_project(self, **fields: Any) -> dict[str, Any]: ...

    async def get_project(self, project_id: str) -> dict[str, Any] | None: ...

    async def list_projects(self, limit: int = 100) -> list[dict[str, Any]]: ...

    async def create(self, project_id: str) -> dict[str, Any]: ...

    async def update(self, run_id: str, **fields: Any) -> None: ...

    async def get(self, run_id: str) -> dict[str, Any] | None: ...

    async def add_tickets(self, run_id: str, tickets: list[dict[str, Any]]) -> int: ...

    async def update_ticket(self, ticket_id: str, **fields: Any) -> dict[str, Any] | None: ...


def _iso(value: Any) -> str | None:
    return value.isoformat() if value else None


def project_to_dict(p: Project) -> dict[str, Any]:
    return {
        "id": p.id,
        "title": p.title,
        "problem": p.problem,
        "constraints": p.constraints,
        "repo_url": p.repo_url,
        "created_at": _iso(p.created_at),
    }


def run_to_dict(r: Run) -> dict[str, Any]:
    return {
        "id": r.id,
        "project_id": r.project_id,
        "status": r.status,
        "clarifications": r.clarifications,
        "repo_analysis": r.repo_analysis,
        "hld": r.hld,
        "tokens_used": r.tokens_used,
        "duration_ms": r.duration_ms,
        "error_message": r.error_message,
        "created_at": _iso(r.created_at),
        "updated_at": _iso(r.updated_at),
    }


def ticket_to_dict(t: Ticket) -> dict[str, Any]:
    data = {name: getattr(t, name) for name in TICKET_COLUMNS}
    data.update(id=t.id, run_id=t.run_id, status=t.status)
    return data


class SqlRunStore:
    """RunStore over an async SQLAlchemy session factory."""

    def __init__(self, session_factory: Any) -> None:
        self._session_factory = session_factory

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    async def create_project(self, **fields: Any) -> dict[str, Any]:
        project = Project(**fields)
        async with self._session_factory() as session:
            session.add(project)
            await session.commit()
            await session.refresh(project)
            return project_to_dict(project)

    async def get_project(self, project_id: str) -> dict[str, Any] | None:
        async with self._session_factory() as session:
            project = await session.get(Project, project_id)
            return project_to_dict(project) if project else None

    async def list_projects(self, limit: int = 100) -> list[dict[str, Any]]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Project).order_by(Project.created_at.desc()).limit(limit)
            )
            return [project_to_dict(p) for p in result.scalars().all()]

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    async def create(self, project_id: str) -> dict[str, Any]:
        run = Run(project_id=project_id, status=RunStatus.PENDING.value, tokens_used=0)
        async with self._session_factory() as session:
            session.add(run)
            await session.commit()
            await session.refresh(run)
            return run_to_dict(run)

    async def update(self, run_id: str, **fields: Any) -> None:
        unknown = set(fields) - RUN_COLUMNS
        if unknown:
            raise ValueError(f"unknown run fields: {sorted(unknown)}")
        if not fields:
            return
        async with self._session_factory() as session:
            result = await session.execute(
                update(Run).where(Run.id == run_id).values(**fields)
            )
            await session.commit()
        if result.rowcount == 0:
            raise LookupError(f"run {run_id} not found")

    async def get(self, run_id: str) -> dict[str, Any] | None:
        """The run with its tickets, ordered by sprint then priority (highest first)."""
        async with self._session_factory() as session:
            run = await session.get(Run, run_id)
            if run is None:
                return None
            result = await session.execute(
                select(Ticket)
                .where(Ticket.run_id == run_id)
                .order_by(Ticket.sprint.asc(), Ticket.priority.desc())
            )
            data = run_to_dict(run)
            data["tickets"] = [ticket_to_dict(t) for t in result.scalars().all()]
            return data

    async def add_tickets(self, run_id: str, tickets: list[dict[str, Any]]) -> int:
        rows = [
            Ticket(run_id=run_id, status="TODO", **{k: t[k] for k in TICKET_COLUMNS if k in t})
            for t in tickets
        ]
        async with self._session_factory() as session:
            session.add_all(rows)
            await session.commit()
        logger.info("Saved %d tickets for run %s", len(rows), run_id)
        return len(rows)

    # ------------------------------------------------------------------
    # Tickets
    # ------------------------------------------------------------------

    async def update_ticket(self, ticket_id: str, **fields: Any) -> dict[str, Any] | None:
        """Edit a generated ticket's text. None when the ticket does not exist."""
        unknown = set(fields) - EDITABLE_TICKET_COLUMNS
        if unknown:
            raise ValueError(f"ticket fields not editable: {sorted(unknown)}")
        async with self._session_factory() as session:
            ticket = await session.get(Ticket, ticket_id)
            if ticket is None:
                return None
            for name, value in fields.items():
                setattr(ticket, name, value)
            await session.commit()
            await session.refresh(ticket)
            return ticket_to_dict(ticket)
