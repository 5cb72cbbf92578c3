"""Event bus: per-run Redis Streams carrying stage progress to live subscribers."""

from __future__ import annotations

from typing import Any, AsyncIterator, Protocol

import redis.asyncio as aioredis

from sprintpilot.models.events import PipelineEvent

STREAM_MAXLEN = 500
STREAM_TTL_S = 24 * 3600


class EventBus(Protocol):
    """Protocol for event distribution."""

    async def emit(self, event: PipelineEvent) -> None: ...

    def subscribe(self, run_id: str, last_id: str = "0") -> AsyncIterator[PipelineEvent]: ...

    async def replay(self, run_id: str, from_id: str = "0") -> tuple[list[PipelineEvent], str]: ...


def stream_key(run_id: str) -> str:
    return f"sprintpilot:run:{run_id}:events"


def _as_str(value: Any) -> str:
    return value.decode() if isinstance(value, bytes) else value


def _decode(fields: dict) -> PipelineEvent | None:
    raw = fields.get(b"data") or fields.get("data")
    if not raw:
        return None
    return PipelineEvent.model_validate_json(_as_str(raw))


class RedisEventBus:
    """Event bus backed by Redis Streams (XADD/XREAD/XRANGE).

    Each run gets its own capped stream that expires a day after the last
    event, so finished runs clean up after themselves.
    """

    def __init__(self, redis: aioredis.Redis, block_ms: int = 5000) -> None:
        self._redis = redis
        self._block_ms = block_ms

    async def emit(self, event: PipelineEvent) -> None:
        key = stream_key(event.run_id)
        pipe = self._redis.pipeline()
        pipe.xadd(key, {"data": event.model_dump_json()}, maxlen=STREAM_MAXLEN, approximate=True)
        pipe.expire(key, STREAM_TTL_S)
        await pipe.execute()

    async def subscribe(self, run_id: str, last_id: str = "0") -> AsyncIterator[PipelineEvent]:
        """Yield events after ``last_id`` (exclusive), blocking for new entries.

        Runs until the consumer stops iterating; the SSE route stops on a
        terminal event.
        """
        key = stream_key(run_id)
        current_id = last_id
        while True:
            entries = await self._redis.xread({key: current_id}, block=self._block_ms, count=50)
            for _stream, messages in entries or []:
                for msg_id, fields in messages:
                    current_id = _as_str(msg_id)
                    event = _decode(fields)
                    if event is not None:
                        yield event

    async def replay(self, run_id: str, from_id: str = "0") -> tuple[list[PipelineEvent], str]:
        """All events from ``from_id`` (inclusive) plus the last stream ID seen.

        The returned ID is "0" for an empty stream, which is what
        ``subscribe`` expects to start from the beginning.
        """
        entries = await self._redis.xrange(stream_key(run_id), min=from_id)
        events = []
        last_id = "0"
        for msg_id, fields in entries:
            last_id = _as_str(msg_id)
            event = _decode(fields)
            if event is not None:
                events.append(event)
        return events, last_id
