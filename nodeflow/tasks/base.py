from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any

LLM_TASK = "llm-generate"
CROP_TASK = "crop-image"
FRAME_TASK = "extract-frame"


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"
    TIMED_OUT = "timed_out"
    CRASHED = "crashed"
    SYSTEM_FAILURE = "system_failure"

    @property
    def is_terminal(self) -> bool:
        return self not in (TaskStatus.PENDING, TaskStatus.RUNNING)


@dataclass(slots=True, frozen=True)
class TaskHandle:
    id: str
    task_name: str


@dataclass(slots=True)
class TaskState:
    status: TaskStatus
    output: Any = None
    error: str | None = None


class TaskClient(ABC):
    """Submit-and-poll interface to an external task system."""

    @abstractmethod
    async def submit(self, task_name: str, payload: dict[str, Any]) -> TaskHandle:
        ...

    @abstractmethod
    async def poll_status(self, handle: TaskHandle) -> TaskState:
        ...

    async def wait_for_update(self, handle: TaskHandle, timeout: float) -> None:
        """Suspend until the task may have changed state.

        Plain polling clients just sleep; push-capable clients wake early.
        """
        await asyncio.sleep(timeout)

    async def cancel(self, handle: TaskHandle) -> None:
        """Best-effort stop of a task the caller gave up on."""
        return None

    async def forget(self, handle: TaskHandle) -> None:
        """Drop any state kept for a handle the caller is done with."""
        return None
