"""Graph checks and planning: cycle detection, wave planning, input resolution."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Mapping

from .models import Graph

logger = logging.getLogger(__name__)

IMAGES_PORT = "images"
CYCLE_MESSAGE = "Workflow contains cycles. Please fix the connections."


class GraphValidationError(ValueError):
    """Raised when a graph cannot be executed at all."""


def has_cycle(graph: Graph) -> bool:
    """Depth-first search for a back edge.

    Iterative so long chains do not run into the recursion limit. Edges that
    point at unknown nodes are walked like any other target.
    """
    adjacency: dict[str, list[str]] = defaultdict(list)
    for edge in graph.edges:
        adjacency[edge.source_node_id].append(edge.target_node_id)

    visited: set[str] = set()
    on_stack: set[str] = set()

    for root in graph.node_ids():
        if root in visited:
            continue
        visited.add(root)
        on_stack.add(root)
        stack = [(root, iter(adjacency[root]))]
        while stack:
            node_id, targets = stack[-1]
            advanced = False
            for target in targets:
                if target in on_stack:
                    return True
                if target not in visited:
                    visited.add(target)
                    on_stack.add(target)
                    stack.append((target, iter(adjacency[target])))
                    advanced = True
                    break
            if not advanced:
                on_stack.discard(node_id)
                stack.pop()

    return False


def compute_waves(graph: Graph) -> list[list[str]]:
    """Group nodes into dependency levels by repeated in-degree reduction.

    Every edge counts towards in-degree, so two edges from the same
    predecessor are both removed when that predecessor is placed. If the
    reduction stalls (only possible on a cyclic graph) the waves found so far
    are returned.
    """
    order = graph.node_ids()
    indegree = {node_id: 0 for node_id in order}
    adjacency: dict[str, list[str]] = defaultdict(list)

    for edge in graph.edges:
        adjacency[edge.source_node_id].append(edge.target_node_id)
        if edge.target_node_id in indegree:
            indegree[edge.target_node_id] += 1

    waves: list[list[str]] = []
    remaining = list(order)

    while remaining:
        wave = [node_id for node_id in remaining if indegree[node_id] == 0]
        if not wave:
            logger.warning(f"Wave planning stalled with {len(remaining)} nodes left: {remaining}")
            break

        waves.append(wave)
        placed = set(wave)
        remaining = [node_id for node_id in remaining if node_id not in placed]
        for node_id in wave:
            for target in adjacency[node_id]:
                if target in indegree:
                    indegree[target] -= 1

    return waves


def topological_order(graph: Graph) -> list[str]:
    return [node_id for wave in compute_waves(graph) for node_id in wave]


def resolve_inputs(
    graph: Graph,
    completed_outputs: Mapping[str, Any],
    node_id: str,
) -> dict[str, Any]:
    """Collect upstream outputs for ``node_id`` keyed by target port.

    The ``images`` port gathers every connected output into a list, in edge
    order. Ports whose source has no output are left out.
    """
    inputs: dict[str, Any] = {}
    for edge in graph.incoming(node_id):
        if edge.source_node_id not in completed_outputs:
            continue
        value = completed_outputs[edge.source_node_id]
        if edge.target_port == IMAGES_PORT:
            inputs.setdefault(IMAGES_PORT, []).append(value)
        else:
            inputs[edge.target_port] = value
    return inputs


def validate_graph(graph: Graph) -> None:
    if has_cycle(graph):
        raise GraphValidationError(CYCLE_MESSAGE)

    seen: set[str] = set()
    for node in graph.nodes:
        if node.id in seen:
            raise GraphValidationError(f"Duplicate node id: {node.id}")
        seen.add(node.id)

    fed_ports: dict[tuple[str, str], str] = {}
    for edge in graph.edges:
        if edge.source_node_id not in seen:
            raise GraphValidationError(f"Unknown source node in edge {edge.id}: {edge.source_node_id}")
        if edge.target_node_id not in seen:
            raise GraphValidationError(f"Unknown target node in edge {edge.id}: {edge.target_node_id}")
        if edge.target_port == IMAGES_PORT:
            continue
        key = (edge.target_node_id, edge.target_port)
        if key in fed_ports:
            raise GraphValidationError(
                f"Port '{edge.target_port}' of node {edge.target_node_id} is fed by more than one edge "
                f"({fed_ports[key]}, {edge.id})"
            )
        fed_ports[key] = edge.id
