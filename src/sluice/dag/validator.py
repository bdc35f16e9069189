"""Graph validation — cycle detection with full cycle reporting."""

from __future__ import annotations
import logging

from sluice.dag.graph import DependencyGraph
from sluice.errors import CyclicDependency

logger = logging.getLogger("sluice.dag.validator")

WHITE, GRAY, BLACK = 0, 1, 2


def _name_order(graph: DependencyGraph, indexes) -> list[int]:
    return sorted(indexes, key=lambda i: (graph.tables[i].key, graph.tables[i].name))


def find_cycle(graph: DependencyGraph) -> list[str] | None:
    """Detect a cycle using DFS. Returns the cycle path (edge direction) or None.

    Nodes and children are visited in name order so the reported cycle is
    stable across runs.
    """
    color = [WHITE] * len(graph)
    stack: list[int] = []

    def dfs(node: int) -> list[int] | None:
        color[node] = GRAY
        stack.append(node)
        for child in _name_order(graph, graph.downstream_indexes(node)):
            if color[child] == GRAY:
                return stack[stack.index(child):]
            if color[child] == WHITE:
                cycle = dfs(child)
                if cycle:
                    return cycle
        stack.pop()
        color[node] = BLACK
        return None

    for node in _name_order(graph, range(len(graph))):
        if color[node] == WHITE:
            cycle = dfs(node)
            if cycle:
                return [graph.tables[i].name for i in cycle]
    return None


def validate(graph: DependencyGraph) -> DependencyGraph:
    """Raise CyclicDependency if the graph has a cycle; log unresolved references."""
    cycle = find_cycle(graph)
    if cycle:
        raise CyclicDependency(cycle)

    for ref in graph.unresolved:
        logger.info(f"Unresolved reference (treated as external source): {ref}")
    return graph
