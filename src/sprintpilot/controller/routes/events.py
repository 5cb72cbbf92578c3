"""SSE event streaming endpoint."""

from __future__ import annotations

from typing import AsyncIterator

from fastapi import APIRouter, HTTPException, Request
from sse_starlette.sse import EventSourceResponse

from sprintpilot.models.events import TERMINAL_EVENT_TYPES

router = APIRouter(tags=["events"])


async def _event_generator(request: Request, run_id: str) -> AsyncIterator[dict]:
    """Replay a run's stored events, then follow the stream until it ends."""
    event_bus = request.app.state.event_bus

    events, last_id = await event_bus.replay(run_id)
    for event in events:
        yield {"event": event.event_type.value, "data": event.model_dump_json()}
        if event.event_type in TERMINAL_EVENT_TYPES:
            return

    # from the last replayed ID so nothing emitted during replay is lost
    async for event in event_bus.subscribe(run_id, last_id=last_id):
        if await request.is_disconnected():
            break
        yield {"event": event.event_type.value, "data": event.model_dump_json()}
        if event.event_type in TERMINAL_EVENT_TYPES:
            break


@router.get("/events/stream")
async def event_stream(run_id: str, request: Request) -> EventSourceResponse:
    """SSE endpoint for live run progress."""
    if request.app.state.event_bus is None:
        raise HTTPException(status_code=503, detail="Event streaming requires Redis")
    return EventSourceResponse(_event_generator(request, run_id))
