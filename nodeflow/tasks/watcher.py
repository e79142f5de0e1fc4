"""Follows one external task from submission to a terminal state or timeout."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from .base import TaskClient, TaskHandle, TaskStatus

logger = logging.getLogger(__name__)


class WatchPhase(str, Enum):
    SUBMITTED = "submitted"
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass(slots=True)
class TaskResult:
    phase: WatchPhase
    status: TaskStatus | None = None
    output: Any = None
    error: str | None = None
    elapsed: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.phase is WatchPhase.SUCCEEDED

    def describe(self) -> str:
        """Short failure label for node error messages."""
        if self.phase is WatchPhase.TIMED_OUT:
            label = f"timed out after {self.elapsed:.0f}s"
        elif self.status is not None:
            label = self.status.value
        else:
            label = self.phase.value
        if self.error:
            return f"{label} ({self.error})"
        return label


class TaskWatcher:
    def __init__(
        self,
        client: TaskClient,
        poll_interval: float = 1.0,
        timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        self.client = client
        self.poll_interval = poll_interval
        self.timeout = timeout
        self._clock = clock

    async def run(self, task_name: str, payload: dict[str, Any]) -> TaskResult:
        handle = await self.client.submit(task_name, payload)
        logger.info(f"Submitted task {task_name} as {handle.id}")
        return await self.watch(handle)

    async def watch(self, handle: TaskHandle) -> TaskResult:
        phase = WatchPhase.SUBMITTED
        started = self._clock()
        deadline = started + self.timeout

        while True:
            state = await self.client.poll_status(handle)
            elapsed = self._clock() - started

            if state.status.is_terminal:
                phase = WatchPhase.SUCCEEDED if state.status is TaskStatus.SUCCEEDED else WatchPhase.FAILED
                logger.info(f"Task {handle.task_name}/{handle.id} finished: {state.status.value} in {elapsed:.1f}s")
                await self.client.forget(handle)
                return TaskResult(
                    phase=phase,
                    status=state.status,
                    output=state.output,
                    error=state.error,
                    elapsed=elapsed,
                )

            remaining = deadline - self._clock()
            if remaining <= 0:
                logger.warning(f"Task {handle.task_name}/{handle.id} timed out after {self.timeout:.0f}s")
                await self.client.cancel(handle)
                await self.client.forget(handle)
                return TaskResult(
                    phase=WatchPhase.TIMED_OUT,
                    status=state.status,
                    elapsed=self.timeout,
                )

            if phase is WatchPhase.SUBMITTED:
                phase = WatchPhase.POLLING
            await self.client.wait_for_update(handle, min(self.poll_interval, remaining))
