from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any

from .graph import GraphValidationError, compute_waves, resolve_inputs, validate_graph
from .models import Graph, Node, NodeResult, RunSummary
from .nodes.base import NodeContext, NodeRegistry

logger = logging.getLogger(__name__)


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


class WorkflowEngine:
    """Runs a graph wave by wave; nodes inside a wave run concurrently."""

    def __init__(self, registry: NodeRegistry, context: NodeContext) -> None:
        self.registry = registry
        self.context = context

    async def run(self, graph: Graph) -> RunSummary:
        started = time.perf_counter()
        try:
            validate_graph(graph)
        except GraphValidationError as exc:
            logger.warning(f"Rejected workflow graph: {exc}")
            return RunSummary(success=False, error=str(exc), total_duration_ms=_elapsed_ms(started))

        waves = compute_waves(graph)
        logger.info(f"Running {len(graph.nodes)} nodes in {len(waves)} waves")

        node_map = {node.id: node for node in graph.nodes}
        outputs: dict[str, Any] = {}
        results: dict[str, NodeResult] = {}
        try:
            for index, wave in enumerate(waves):
                nodes = [self._require_node(node_map, node_id) for node_id in wave]
                batch = [(node, resolve_inputs(graph, outputs, node.id)) for node in nodes]
                wave_results = await asyncio.gather(*(self._run_node(node, inputs) for node, inputs in batch))
                for node, result in zip(nodes, wave_results):
                    results[node.id] = result
                    if result.succeeded and result.output is not None:
                        outputs[node.id] = result.output
                        node.last_output = result.output
                failed = sum(1 for result in wave_results if not result.succeeded)
                logger.info(f"Wave {index + 1}/{len(waves)} done: {len(wave)} nodes, {failed} failed")
        except Exception as exc:
            logger.error(f"Workflow run aborted: {exc}", exc_info=True)
            return RunSummary(
                success=False,
                node_results=results,
                total_duration_ms=_elapsed_ms(started),
                error=str(exc) or "Workflow execution failed",
            )

        return RunSummary(success=True, node_results=results, total_duration_ms=_elapsed_ms(started))

    def run_sync(self, graph: Graph) -> RunSummary:
        return asyncio.run(self.run(graph))

    async def _run_node(self, node: Node, inputs: dict[str, Any]) -> NodeResult:
        started_at = datetime.now(timezone.utc)
        started = time.perf_counter()
        outcome = await self.registry.execute(node, inputs, self.context)
        duration_ms = _elapsed_ms(started)

        if outcome.error is not None:
            logger.info(f"Node {node.id} ({node.kind}) failed after {duration_ms}ms: {outcome.error}")
        else:
            logger.debug(f"Node {node.id} ({node.kind}) finished in {duration_ms}ms")

        return NodeResult(
            node_id=node.id,
            output=outcome.output,
            error=outcome.error,
            duration_ms=duration_ms,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
        )

    @staticmethod
    def _require_node(node_map: dict[str, Node], node_id: str) -> Node:
        node = node_map.get(node_id)
        if node is None:
            raise ValueError(f"Unknown node in execution plan: {node_id}")
        return node
