from __future__ import annotations

import asyncio
import inspect
import logging
import uuid
from typing import Any, Callable

from .base import TaskClient, TaskHandle, TaskState, TaskStatus

logger = logging.getLogger(__name__)

TaskRunner = Callable[[dict[str, Any]], Any]


class LocalTaskClient(TaskClient):
    """Runs registered task runners inside the current process.

    Blocking runners are moved to a worker thread. Waiters are woken through
    an event whenever a task changes state, so the watcher does not have to
    sleep out the full poll interval.
    """

    def __init__(self, runners: dict[str, TaskRunner] | None = None) -> None:
        self._runners: dict[str, TaskRunner] = dict(runners or {})
        self._states: dict[str, TaskState] = {}
        self._events: dict[str, asyncio.Event] = {}
        self._tasks: dict[str, asyncio.Task] = {}

    def register(self, task_name: str, runner: TaskRunner) -> None:
        self._runners[task_name] = runner

    def task_names(self) -> list[str]:
        return sorted(self._runners)

    async def submit(self, task_name: str, payload: dict[str, Any]) -> TaskHandle:
        handle = TaskHandle(id=uuid.uuid4().hex[:12], task_name=task_name)
        self._events[handle.id] = asyncio.Event()

        runner = self._runners.get(task_name)
        if runner is None:
            self._set_state(handle, TaskState(TaskStatus.SYSTEM_FAILURE, error=f"Unknown task: {task_name}"))
            return handle

        self._set_state(handle, TaskState(TaskStatus.PENDING))
        self._tasks[handle.id] = asyncio.create_task(self._execute(handle, runner, dict(payload)))
        return handle

    async def poll_status(self, handle: TaskHandle) -> TaskState:
        state = self._states.get(handle.id)
        if state is None:
            return TaskState(TaskStatus.SYSTEM_FAILURE, error=f"Unknown task handle: {handle.id}")
        return state

    async def wait_for_update(self, handle: TaskHandle, timeout: float) -> None:
        event = self._events.get(handle.id)
        if event is None:
            await asyncio.sleep(timeout)
            return
        try:
            await asyncio.wait_for(event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return
        event.clear()

    async def cancel(self, handle: TaskHandle) -> None:
        task = self._tasks.get(handle.id)
        if task is not None and not task.done():
            task.cancel()

    async def forget(self, handle: TaskHandle) -> None:
        self._states.pop(handle.id, None)
        self._events.pop(handle.id, None)

    async def _execute(self, handle: TaskHandle, runner: TaskRunner, payload: dict[str, Any]) -> None:
        self._set_state(handle, TaskState(TaskStatus.RUNNING))
        try:
            if inspect.iscoroutinefunction(runner):
                output = await runner(payload)
            else:
                output = await asyncio.to_thread(runner, payload)
        except asyncio.CancelledError:
            self._set_state(handle, TaskState(TaskStatus.CANCELED))
            raise
        except Exception as exc:
            logger.error(f"Task {handle.task_name}/{handle.id} failed: {exc}", exc_info=True)
            self._set_state(handle, TaskState(TaskStatus.FAILED, error=str(exc) or type(exc).__name__))
        else:
            self._set_state(handle, TaskState(TaskStatus.SUCCEEDED, output=output))
        finally:
            self._tasks.pop(handle.id, None)

    def _set_state(self, handle: TaskHandle, state: TaskState) -> None:
        event = self._events.get(handle.id)
        if event is None:
            # forgotten by the caller; a cancelled runner may still report in
            return
        self._states[handle.id] = state
        event.set()
