"""RunStatusProjector: persists run progress as the pipeline advances.

The projector is the runner's observer. It turns each completed stage into a
record update and hands it to a single writer task, so the pipeline moves on
without waiting for the store while the writes for one run still land in the
order they were issued.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from sprintpilot.events.bus import EventBus
from sprintpilot.models.events import EventType, PipelineEvent
from sprintpilot.models.pipeline_state import PipelineState, RunStatus
from sprintpilot.pipeline.stages import Stage

logger = logging.getLogger(__name__)

# state field -> runs column; ticket lists are written with the terminal record
RECORD_COLUMNS = {
    "clarifications": "clarifications",
    "repo_analysis": "repo_analysis",
    "architecture": "hld",
}

Job = Callable[[], Awaitable[Any]]


class RunStatusProjector:
    def __init__(
        self,
        run_id: str,
        store: Any,
        stages: list[Stage],
        event_bus: EventBus | None = None,
    ) -> None:
        self.run_id = run_id
        self.store = store
        self.event_bus = event_bus
        self._stages = {s.name: s for s in stages}
        self._next = {
            s.name: (stages[i + 1] if i + 1 < len(stages) else None)
            for i, s in enumerate(stages)
        }
        self._queue: asyncio.Queue[Job | None] = asyncio.Queue()
        self._writer: asyncio.Task | None = None
        self._error: BaseException | None = None
        self.writes = 0

    def status_after(self, stage_name: str, snapshot: PipelineState) -> RunStatus | None:
        """External status once ``stage_name`` has finished, or None to leave it.

        Stages that will skip (no input to work on) never show as active. The
        status is left alone after a skipped stage, since the previous write
        already named the stage that comes next, and after the last stage,
        where the terminal record write owns COMPLETED.
        """
        stage = self._stages[stage_name]
        if stage.fatal and snapshot.get("current_step") == RunStatus.FAILED.value:
            return RunStatus.FAILED
        if stage.skips(snapshot):
            return None
        following = self._next[stage_name]
        while following is not None and following.skips(snapshot):
            following = self._next[following.name]
        return following.active_status if following else None

    def fields_for(self, stage_name: str, snapshot: PipelineState) -> dict[str, Any]:
        stage = self._stages[stage_name]
        fields: dict[str, Any] = {"tokens_used": snapshot.get("tokens_used", 0)}
        status = self.status_after(stage_name, snapshot)
        if status is not None:
            fields["status"] = status.value
        column = RECORD_COLUMNS.get(stage.produces)
        if column and snapshot.get(stage.produces) is not None:
            fields[column] = snapshot[stage.produces]
        return fields

    def _raise_pending(self) -> None:
        if self._error is not None:
            raise self._error

    def _submit(self, job: Job) -> None:
        if self._writer is None:
            self._writer = asyncio.create_task(
                self._drain(), name=f"projector-{self.run_id}",
            )
        self._queue.put_nowait(job)

    async def _drain(self) -> None:
        while True:
            job = await self._queue.get()
            if job is None:
                return
            if self._error is not None:
                continue
            try:
                await job()
                self.writes += 1
            except Exception as exc:
                logger.error("[%s] Status write failed: %s", self.run_id, exc)
                self._error = exc

    async def observe(self, stage_name: str, snapshot: PipelineState) -> None:
        """Runner observer: enqueue this stage's record update and event."""
        self._raise_pending()
        fields = self.fields_for(stage_name, snapshot)
        logger.info(
            "[%s] Stage %s finished, status -> %s",
            self.run_id, stage_name, fields.get("status", "(unchanged)"),
        )
        self._submit(lambda: self.store.update(self.run_id, **fields))

        if self.event_bus is not None:
            failed = fields.get("status") == RunStatus.FAILED.value
            event = PipelineEvent(
                run_id=self.run_id,
                event_type=EventType.STAGE_FAILED if failed else EventType.STAGE_COMPLETED,
                stage=stage_name,
                data={
                    "status": fields.get("status"),
                    "tokens_used": fields["tokens_used"],
                    "errors": list(snapshot.get("errors", [])),
                },
            )
            self._submit(lambda: self.event_bus.emit(event))

    async def aclose(self) -> None:
        """Wait for every queued write, then surface the first failure if any."""
        if self._writer is not None:
            self._queue.put_nowait(None)
            await self._writer
            self._writer = None
        self._raise_pending()
