"""Ticket routes: edit generated tickets after a run completes."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request

from sprintpilot.models.project import TicketUpdate

logger = logging.getLogger(__name__)
router = APIRouter(tags=["tickets"])


@router.patch("/tickets/{ticket_id}")
async def update_ticket(ticket_id: str, body: TicketUpdate, request: Request) -> dict:
    ticket = await request.app.state.store.update_ticket(
        ticket_id,
        description=body.description,
        acceptance_criteria=body.acceptance_criteria,
    )
    if ticket is None:
        raise HTTPException(status_code=404, detail="Ticket not found")
    logger.info("Ticket %s edited", ticket_id)
    return {"ticket": ticket}
