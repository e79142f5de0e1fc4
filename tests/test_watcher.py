"""Test the task watcher state machine and the in-process task client."""

import asyncio
import time

import pytest

from nodeflow.tasks import LocalTaskClient, TaskState, TaskStatus, TaskWatcher, WatchPhase


def test_watcher_succeeds(fake_client):
    fake_client.respond("echo", lambda payload: TaskState(TaskStatus.SUCCEEDED, output=payload))
    watcher = TaskWatcher(fake_client, poll_interval=0.01, timeout=1)

    result = asyncio.run(watcher.run("echo", {"value": 1}))

    assert result.succeeded
    assert result.phase is WatchPhase.SUCCEEDED
    assert result.output == {"value": 1}
    assert fake_client.submitted == [("echo", {"value": 1})]
    assert fake_client.forgotten == ["task-0"]


@pytest.mark.parametrize(
    "status",
    [TaskStatus.FAILED, TaskStatus.CANCELED, TaskStatus.CRASHED, TaskStatus.SYSTEM_FAILURE, TaskStatus.TIMED_OUT],
)
def test_watcher_maps_terminal_failures(fake_client, status):
    fake_client.respond("job", TaskState(status, error="bad input"))
    watcher = TaskWatcher(fake_client, poll_interval=0.01, timeout=1)

    result = asyncio.run(watcher.run("job", {}))

    assert result.phase is WatchPhase.FAILED
    assert result.status is status
    assert result.describe() == f"{status.value} (bad input)"


def test_watcher_times_out_without_raising(fake_client):
    watcher = TaskWatcher(fake_client, poll_interval=0.01, timeout=0.05)

    result = asyncio.run(watcher.run("never", {}))

    assert result.phase is WatchPhase.TIMED_OUT
    assert not result.succeeded
    assert result.describe().startswith("timed out after")
    assert fake_client.canceled == ["task-0"]
    assert fake_client.forgotten == ["task-0"]


def test_watcher_polls_until_terminal(fake_client):
    polls = []

    def eventually(_payload):
        polls.append(1)
        if len(polls) < 3:
            return TaskState(TaskStatus.PENDING)
        return TaskState(TaskStatus.SUCCEEDED, output="done")

    fake_client.respond("slow", eventually)
    watcher = TaskWatcher(fake_client, poll_interval=0.01, timeout=1)

    result = asyncio.run(watcher.run("slow", {}))

    assert result.output == "done"
    assert len(polls) == 3


def test_watcher_rejects_bad_settings(fake_client):
    with pytest.raises(ValueError):
        TaskWatcher(fake_client, poll_interval=0)
    with pytest.raises(ValueError):
        TaskWatcher(fake_client, timeout=-1)


def test_local_client_runs_sync_runner():
    client = LocalTaskClient({"double": lambda payload: {"value": payload["value"] * 2}})
    watcher = TaskWatcher(client, poll_interval=5, timeout=10)

    started = time.monotonic()
    result = asyncio.run(watcher.run("double", {"value": 21}))

    assert result.succeeded
    assert result.output == {"value": 42}
    # completion wakes the watcher instead of waiting out the poll interval
    assert time.monotonic() - started < 2


def test_local_client_runs_async_runner():
    async def shout(payload):
        await asyncio.sleep(0)
        return payload["text"].upper()

    client = LocalTaskClient()
    client.register("shout", shout)
    watcher = TaskWatcher(client, poll_interval=0.01, timeout=1)

    result = asyncio.run(watcher.run("shout", {"text": "hi"}))

    assert result.output == "HI"
    assert client.task_names() == ["shout"]


def test_local_client_reports_runner_errors():
    def broken(_payload):
        raise RuntimeError("disk full")

    client = LocalTaskClient({"broken": broken})
    watcher = TaskWatcher(client, poll_interval=0.01, timeout=1)

    result = asyncio.run(watcher.run("broken", {}))

    assert result.phase is WatchPhase.FAILED
    assert result.status is TaskStatus.FAILED
    assert result.error == "disk full"


def test_local_client_unknown_task():
    client = LocalTaskClient()
    watcher = TaskWatcher(client, poll_interval=0.01, timeout=1)

    result = asyncio.run(watcher.run("missing", {}))

    assert result.status is TaskStatus.SYSTEM_FAILURE
    assert "Unknown task" in result.error


def test_local_client_cancels_on_timeout():
    cancelled = []

    async def forever(_payload):
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled.append(True)
            raise

    client = LocalTaskClient({"forever": forever})
    watcher = TaskWatcher(client, poll_interval=0.01, timeout=0.05)

    async def scenario():
        handle = await client.submit("forever", {})
        result = await watcher.watch(handle)
        await asyncio.sleep(0.01)
        return result, await client.poll_status(handle)

    result, state = asyncio.run(scenario())

    assert result.phase is WatchPhase.TIMED_OUT
    assert cancelled == [True]
    # the late cancellation report is not kept for a forgotten handle
    assert state.status is TaskStatus.SYSTEM_FAILURE
    assert client._states == {}
    assert client._events == {}


def test_local_client_drops_finished_tasks():
    client = LocalTaskClient({"echo": lambda payload: payload})
    watcher = TaskWatcher(client, poll_interval=0.01, timeout=1)

    async def scenario():
        return [await watcher.run("echo", {"n": n}) for n in range(50)]

    results = asyncio.run(scenario())

    assert all(result.succeeded for result in results)
    assert client._states == {}
    assert client._events == {}
    assert client._tasks == {}


def test_terminal_statuses():
    assert not TaskStatus.PENDING.is_terminal
    assert not TaskStatus.RUNNING.is_terminal
    assert all(status.is_terminal for status in TaskStatus if status.value not in ("pending", "running"))
