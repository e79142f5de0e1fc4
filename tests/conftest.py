"""Shared fixtures: a scriptable task client and engine builders."""

from __future__ import annotations

from typing import Any, Callable

import pytest

from nodeflow.engine import WorkflowEngine
from nodeflow.models import Graph
from nodeflow.nodes import NodeContext, NodeRegistry, register_builtin_nodes
from nodeflow.tasks import TaskClient, TaskHandle, TaskState, TaskStatus, TaskWatcher

Responder = Callable[[dict[str, Any]], TaskState]


class FakeTaskClient(TaskClient):
    """Answers every poll for a task name with a scripted state.

    Task names without a script stay pending forever.
    """

    def __init__(self) -> None:
        self.responders: dict[str, Responder] = {}
        self.submitted: list[tuple[str, dict[str, Any]]] = []
        self.canceled: list[str] = []
        self.forgotten: list[str] = []
        self._payloads: dict[str, dict[str, Any]] = {}

    def respond(self, task_name: str, state: TaskState | Responder) -> None:
        if isinstance(state, TaskState):
            self.responders[task_name] = lambda _payload: state
        else:
            self.responders[task_name] = state

    async def submit(self, task_name: str, payload: dict[str, Any]) -> TaskHandle:
        handle = TaskHandle(id=f"task-{len(self.submitted)}", task_name=task_name)
        self.submitted.append((task_name, payload))
        self._payloads[handle.id] = payload
        return handle

    async def poll_status(self, handle: TaskHandle) -> TaskState:
        responder = self.responders.get(handle.task_name)
        if responder is None:
            return TaskState(TaskStatus.RUNNING)
        return responder(self._payloads[handle.id])

    async def cancel(self, handle: TaskHandle) -> None:
        self.canceled.append(handle.id)

    async def forget(self, handle: TaskHandle) -> None:
        self.forgotten.append(handle.id)


def build_graph(nodes: list[dict[str, Any]], edges: list[dict[str, Any]] | None = None) -> Graph:
    return Graph.model_validate({"nodes": nodes, "edges": edges or []})


@pytest.fixture
def fake_client() -> FakeTaskClient:
    return FakeTaskClient()


@pytest.fixture
def registry() -> NodeRegistry:
    registry = NodeRegistry()
    register_builtin_nodes(registry)
    return registry


@pytest.fixture
def context(fake_client: FakeTaskClient) -> NodeContext:
    watcher = TaskWatcher(fake_client, poll_interval=0.01, timeout=0.2)
    return NodeContext(watcher=watcher, llm_defaults={"model": "test-model", "system_prompt": "be brief"})


@pytest.fixture
def engine(registry: NodeRegistry, context: NodeContext) -> WorkflowEngine:
    return WorkflowEngine(registry, context)


@pytest.fixture
def graph_factory() -> Callable[..., Graph]:
    return build_graph
