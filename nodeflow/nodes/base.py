from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from ..models import Node
from ..tasks.watcher import TaskWatcher

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class NodeOutcome:
    output: Any = None
    error: str | None = None


@dataclass(slots=True)
class NodeContext:
    """Collaborators and defaults shared by every node in a run."""

    watcher: TaskWatcher
    llm_defaults: dict[str, Any] = field(default_factory=dict)


InputValidator = Callable[[Node, dict[str, Any]], str | None]
NodeHandler = Callable[[Node, dict[str, Any], NodeContext], Awaitable[NodeOutcome]]


def accept_any(_node: Node, _inputs: dict[str, Any]) -> str | None:
    return None


def pick(node: Node, inputs: dict[str, Any], key: str, default: Any = None) -> Any:
    """Port value first, then the node's own configuration, then ``default``."""
    value = inputs.get(key)
    if value is None or value == "":
        value = node.configuration.get(key)
    if value is None or value == "":
        return default
    return value


@dataclass(slots=True)
class NodeSpec:
    kind: str
    description: str
    handler: NodeHandler
    validator: InputValidator = accept_any


class NodeRegistry:
    def __init__(self) -> None:
        self._nodes: dict[str, NodeSpec] = {}

    def register(self, spec: NodeSpec) -> None:
        self._nodes[spec.kind] = spec

    def get(self, kind: str) -> NodeSpec:
        if kind not in self._nodes:
            raise KeyError(f"Unknown node type: {kind}")
        return self._nodes[kind]

    def list_types(self) -> list[str]:
        return sorted(self._nodes)

    def list_specs(self) -> list[dict[str, str]]:
        return [
            {"type": self._nodes[key].kind, "description": self._nodes[key].description}
            for key in sorted(self._nodes)
        ]

    async def execute(self, node: Node, inputs: dict[str, Any], context: NodeContext) -> NodeOutcome:
        """Run one node. Failures come back as ``NodeOutcome.error``, never as exceptions."""
        spec = self._nodes.get(node.kind)
        if spec is None:
            return NodeOutcome(error=f"Unknown node type: {node.kind}")

        try:
            problem = spec.validator(node, inputs)
            if problem:
                return NodeOutcome(error=problem)
            outcome = await spec.handler(node, inputs, context)
        except Exception as exc:
            logger.error(f"Node {node.id} ({node.kind}) raised: {exc}", exc_info=True)
            return NodeOutcome(error=str(exc) or "Execution failed")

        if outcome.error is not None:
            return NodeOutcome(error=outcome.error)
        return outcome
