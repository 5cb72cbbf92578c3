"""Job spawner: starts run execution without holding the triggering request."""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from typing import Any, Awaitable, Callable, Protocol

logger = logging.getLogger(__name__)


class JobSpawner(Protocol):
    """Protocol for job spawner implementations."""

    async def spawn(self, run_id: str) -> None: ...


class InProcessJobSpawner:
    """Runs each job as an asyncio task in the controller process.

    The tasks share the controller's LLM client and store. References are
    kept until a task finishes so it cannot be garbage collected mid-run.
    """

    def __init__(self, execute: Callable[[str], Awaitable[Any]]) -> None:
        self._execute = execute
        self._tasks: dict[str, asyncio.Task] = {}

    @property
    def active(self) -> list[str]:
        return list(self._tasks)

    async def spawn(self, run_id: str) -> None:
        logger.info("Starting in-process run %s", run_id)
        task = asyncio.create_task(self._execute(run_id), name=f"run-{run_id}")
        self._tasks[run_id] = task
        task.add_done_callback(lambda t: self._finished(run_id, t))

    def _finished(self, run_id: str, task: asyncio.Task) -> None:
        self._tasks.pop(run_id, None)
        if task.cancelled():
            logger.warning("Run %s task was cancelled", run_id)
        elif task.exception() is not None:
            logger.error("Run %s task crashed: %s", run_id, task.exception())

    async def wait_all(self) -> None:
        """Wait for every running task; used on shutdown and in tests."""
        if self._tasks:
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)


class SubprocessJobSpawner:
    """Spawns workers as local subprocesses, one per run."""

    def __init__(self) -> None:
        self._processes: dict[str, asyncio.subprocess.Process] = {}
        self._log_tasks: set[asyncio.Task] = set()

    async def spawn(self, run_id: str) -> None:
        logger.info("Spawning subprocess worker for run %s", run_id)
        proc = await asyncio.create_subprocess_exec(
            sys.executable, "-m", "sprintpilot.worker.main", f"--run-id={run_id}",
            env=dict(os.environ),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        self._processes[run_id] = proc

        task = asyncio.create_task(self._log_output(run_id, proc))
        self._log_tasks.add(task)
        task.add_done_callback(self._log_tasks.discard)

    async def _log_output(self, run_id: str, proc: asyncio.subprocess.Process) -> None:
        """Relay worker output to this process's log."""
        try:
            stdout, _ = await proc.communicate()
            if stdout:
                for line in stdout.decode(errors="replace").splitlines():
                    logger.info("[worker:%s] %s", run_id, line)
            logger.info("Worker for run %s exited with code %s", run_id, proc.returncode)
        finally:
            self._processes.pop(run_id, None)
