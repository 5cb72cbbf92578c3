"""Event models emitted during a run to the event bus."""

from __future__ import annotations

import time
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EventType(str, Enum):
    PIPELINE_STARTED = "pipeline_started"
    PIPELINE_COMPLETED = "pipeline_completed"
    PIPELINE_FAILED = "pipeline_failed"
    STAGE_COMPLETED = "stage_completed"
    STAGE_FAILED = "stage_failed"


TERMINAL_EVENT_TYPES = frozenset({EventType.PIPELINE_COMPLETED, EventType.PIPELINE_FAILED})


class PipelineEvent(BaseModel):
    """Base event emitted to the event bus."""

    run_id: str
    event_type: EventType
    stage: str = ""
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: float = Field(default_factory=time.time)
