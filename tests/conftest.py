"""Shared test fixtures: scripted LLM, in-memory record store, fake Redis."""

from __future__ import annotations

import asyncio
import itertools
import json
from typing import Any

import pytest

from sprintpilot.llm.base import LLMResponse
from sprintpilot.models.pipeline_state import PipelineState, create_initial_state
from sprintpilot.pipeline.stages import StageContext


# ---------------------------------------------------------------------------
# Canned model output for the happy path
# ---------------------------------------------------------------------------

CLARIFICATIONS_JSON = json.dumps({
    "questions": ["Which identity providers must be supported?"],
    "assumptions": ["Email and password login is enough for the first release"],
    "scope": "Sign-up, login, logout and password reset for web users",
})

HLD_JSON = json.dumps({
    "modules": ["Auth API", "User store", "Session service"],
    "dataFlows": ["Browser -> Auth API -> User store"],
    "risks": ["Credential stuffing"],
    "nfrs": ["p95 login latency under 300ms"],
})

RAW_TICKETS_JSON = json.dumps([
    {
        "title": "Sign-up endpoint",
        "description": "Create accounts with email and password",
        "acceptanceCriteria": ["Duplicate email is rejected", "Password is hashed"],
    },
    {
        "title": "Login endpoint",
        "description": "Exchange credentials for a session",
        "acceptanceCriteria": "Valid credentials return a session cookie",
    },
])

ESTIMATED_TICKETS_JSON = json.dumps([
    {
        "title": "Sign-up endpoint",
        "description": "Create accounts with email and password",
        "acceptanceCriteria": "Duplicate email is rejected\nPassword is hashed",
        "estimateHours": 6,
        "tshirtSize": "S",
    },
    {
        "title": "Login endpoint",
        "description": "Exchange credentials for a session",
        "acceptanceCriteria": "Valid credentials return a session cookie",
        "estimateHours": 20,
    },
])

FINAL_TICKETS_JSON = json.dumps([
    {
        "title": "Sign-up endpoint",
        "description": "Create accounts with email and password",
        "acceptanceCriteria": "Duplicate email is rejected\nPassword is hashed",
        "estimateHours": 6,
        "tshirtSize": "S",
        "priority": 9,
        "sprint": 1,
        "dependencies": [],
        "tags": ["auth", "backend"],
    },
    {
        "title": "Login endpoint",
        "description": "Exchange credentials for a session",
        "acceptanceCriteria": "Valid credentials return a session cookie",
        "estimateHours": 20,
        "tshirtSize": "L",
        "priority": 7,
        "sprint": 2,
        "dependencies": ["Sign-up endpoint"],
    },
])

HAPPY_PATH = [
    LLMResponse(CLARIFICATIONS_JSON, 100),
    LLMResponse(HLD_JSON, 200),
    LLMResponse(RAW_TICKETS_JSON, 300),
    LLMResponse(ESTIMATED_TICKETS_JSON, 150),
    LLMResponse(FINAL_TICKETS_JSON, 250),
]


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeLLM:
    """Plays back a script of responses; an Exception entry is raised instead."""

    name = "fake"

    def __init__(self, script: list[Any]) -> None:
        self._script = list(script)
        self.prompts: list[str] = []

    @property
    def calls(self) -> int:
        return len(self.prompts)

    async def invoke(self, prompt: str) -> LLMResponse:
        self.prompts.append(prompt)
        if not self._script:
            raise AssertionError("FakeLLM script exhausted")
        item = self._script.pop(0)
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, str):
            return LLMResponse(item, 0)
        return item


class FakeRunStore:
    """In-memory RunStore that records every update in call order."""

    def __init__(self, fail_on_update: int | None = None) -> None:
        self.projects: dict[str, dict[str, Any]] = {}
        self.runs: dict[str, dict[str, Any]] = {}
        self.tickets: dict[str, list[dict[str, Any]]] = {}
        self.updates: list[tuple[str, dict[str, Any]]] = []
        self._ids = itertools.count(1)
        self._fail_on_update = fail_on_update

    async def create_project(self, **fields: Any) -> dict[str, Any]:
        project = {"id": f"proj-{next(self._ids)}", "created_at": None, **fields}
        self.projects[project["id"]] = project
        return dict(project)

    async def get_project(self, project_id: str) -> dict[str, Any] | None:
        project = self.projects.get(project_id)
        return dict(project) if project else None

    async def list_projects(self, limit: int = 100) -> list[dict[str, Any]]:
        return [dict(p) for p in list(self.projects.values())[:limit]]

    async def create(self, project_id: str) -> dict[str, Any]:
        run = {
            "id": f"run-{next(self._ids)}",
            "project_id": project_id,
            "status": "PENDING",
            "tokens_used": 0,
            "duration_ms": None,
            "error_message": None,
        }
        self.runs[run["id"]] = run
        return dict(run)

    async def update(self, run_id: str, **fields: Any) -> None:
        await asyncio.sleep(0)
        self.updates.append((run_id, fields))
        if self._fail_on_update is not None and len(self.updates) == self._fail_on_update:
            raise ConnectionError("database went away")
        self.runs.setdefault(run_id, {"id": run_id}).update(fields)

    async def get(self, run_id: str) -> dict[str, Any] | None:
        run = self.runs.get(run_id)
        if run is None:
            return None
        tickets = sorted(
            self.tickets.get(run_id, []), key=lambda t: (t["sprint"], -t["priority"]),
        )
        return {**run, "tickets": tickets}

    async def add_tickets(self, run_id: str, tickets: list[dict[str, Any]]) -> int:
        self.tickets.setdefault(run_id, []).extend(
            {"id": f"ticket-{next(self._ids)}", **t} for t in tickets
        )
        return len(tickets)

    async def update_ticket(self, ticket_id: str, **fields: Any) -> dict[str, Any] | None:
        for tickets in self.tickets.values():
            for ticket in tickets:
                if ticket.get("id") == ticket_id:
                    ticket.update(fields)
                    return dict(ticket)
        return None

    def statuses(self, run_id: str) -> list[str]:
        return [f["status"] for rid, f in self.updates if rid == run_id and "status" in f]


class _FakePipeline:
    """Queues commands; ``execute`` runs them as one MULTI/EXEC block."""

    def __init__(self, redis: "FakeRedis") -> None:
        self._redis = redis
        self._calls: list[tuple[str, tuple, dict]] = []

    def __getattr__(self, name: str):
        def _queue(*args: Any, **kwargs: Any) -> "_FakePipeline":
            self._calls.append((name, args, kwargs))
            return self
        return _queue

    async def execute(self) -> list[Any]:
        async with self._redis.multi_lock:
            return [await getattr(self._redis, name)(*args, **kwargs) for name, args, kwargs in self._calls]


class FakeRedis:
    """Redis Streams + sorted sets, enough for the event bus and the rate limiter."""

    def __init__(self, interleave: bool = False) -> None:
        # interleave: every command yields to the event loop, so separate
        # round trips from concurrent callers can interleave
        self.interleave = interleave
        self.multi_lock = asyncio.Lock()
        self._streams: dict[str, list[tuple[str, dict[str, str]]]] = {}
        self._zsets: dict[str, dict[str, float]] = {}
        self._counter = 0
        self._waiters: dict[str, list[asyncio.Queue]] = {}
        self.expiries: dict[str, int] = {}

    def pipeline(self, transaction: bool = True) -> _FakePipeline:
        return _FakePipeline(self)

    async def ping(self) -> bool:
        return True

    async def expire(self, key: str, seconds: int) -> bool:
        self.expiries[key] = seconds
        return True

    # streams

    async def xadd(self, key: str, fields: dict[str, str], maxlen: int | None = None,
                   approximate: bool = True) -> str:
        self._counter += 1
        msg_id = f"0-{self._counter}"
        self._streams.setdefault(key, []).append((msg_id, fields))
        for q in self._waiters.get(key, []):
            q.put_nowait(True)
        return msg_id

    def _after(self, key: str, last_id: str) -> list[tuple[str, dict[str, str]]]:
        entries = self._streams.get(key, [])
        if last_id in ("0", "-"):
            return entries[:]
        seq = int(last_id.split("-")[1])
        return [(mid, f) for mid, f in entries if int(mid.split("-")[1]) > seq]

    async def xrange(self, key: str, min: str = "-", max: str = "+") -> list[tuple[str, dict[str, str]]]:
        if min in ("0", "-"):
            return self._streams.get(key, [])[:]
        seq = int(min.split("-")[1])
        return [(mid, f) for mid, f in self._streams.get(key, []) if int(mid.split("-")[1]) >= seq]

    async def xread(self, streams: dict[str, str], block: int = 0, count: int | None = None) -> list:
        result = []
        for key, last_id in streams.items():
            new = self._after(key, last_id)
            if new:
                result.append((key, new[:count] if count else new))
        if result or block <= 0:
            return result

        key = next(iter(streams))
        q: asyncio.Queue = asyncio.Queue()
        self._waiters.setdefault(key, []).append(q)
        try:
            await asyncio.wait_for(q.get(), timeout=block / 1000)
        except asyncio.TimeoutError:
            return []
        finally:
            self._waiters[key].remove(q)
        return await self.xread(streams, block=0, count=count)

    # sorted sets

    async def _yield(self) -> None:
        if self.interleave:
            await asyncio.sleep(0)

    async def zadd(self, key: str, mapping: dict[str, float]) -> int:
        await self._yield()
        zset = self._zsets.setdefault(key, {})
        added = sum(1 for m in mapping if m not in zset)
        zset.update(mapping)
        return added

    async def zremrangebyscore(self, key: str, lo: float, hi: float) -> int:
        await self._yield()
        zset = self._zsets.get(key, {})
        doomed = [m for m, s in zset.items() if lo <= s <= hi]
        for m in doomed:
            del zset[m]
        return len(doomed)

    async def zrem(self, key: str, *members: str) -> int:
        # a single command: runs between MULTI blocks, never inside one
        async with self.multi_lock:
            await self._yield()
            zset = self._zsets.get(key, {})
            return sum(1 for m in members if zset.pop(m, None) is not None)

    async def zcard(self, key: str) -> int:
        await self._yield()
        return len(self._zsets.get(key, {}))

    async def zrange(self, key: str, start: int, end: int, withscores: bool = False) -> list:
        await self._yield()
        ordered = sorted(self._zsets.get(key, {}).items(), key=lambda kv: kv[1])
        stop = None if end == -1 else end + 1
        window = ordered[start:stop]
        return window if withscores else [m for m, _ in window]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def store() -> FakeRunStore:
    return FakeRunStore()


@pytest.fixture
def make_ctx(sleep: RecordingSleep):
    """Build a StageContext around a scripted FakeLLM."""

    def _make(script: list[Any], **kwargs: Any) -> StageContext:
        kwargs.setdefault("run_id", "run-test")
        kwargs.setdefault("sleep", sleep)
        return StageContext(llm=FakeLLM(script), **kwargs)

    return _make


@pytest.fixture
def initial_state() -> PipelineState:
    return create_initial_state(
        run_id="run-test",
        project_id="proj-1",
        title="User Auth",
        problem="Users need to sign up and log in securely with email and password.",
        constraints="Must use the existing Postgres database",
    )
