"""Topological scheduling — deterministic execution order."""

from __future__ import annotations
import heapq

from sluice.dag.graph import DependencyGraph
from sluice.dag.validator import find_cycle
from sluice.errors import CyclicDependency
from sluice.models.table import Table


def _sort_key(table: Table) -> tuple[str, str]:
    return (table.key, table.name)


def _in_degrees(graph: DependencyGraph) -> list[int]:
    return [len(graph.upstream_indexes(i)) for i in range(len(graph))]


def topological_order(graph: DependencyGraph) -> list[Table]:
    """Return tables in dependency order (sources first).

    Kahn's algorithm; among tables that become eligible at the same time the
    one with the smallest name runs first, so a workflow always yields the
    same order. Raises CyclicDependency on a cyclic graph.
    """
    in_degree = _in_degrees(graph)
    heap = [(_sort_key(graph.tables[i]), i) for i, d in enumerate(in_degree) if d == 0]
    heapq.heapify(heap)
    order = []

    while heap:
        _, node = heapq.heappop(heap)
        order.append(graph.tables[node])
        for child in graph.downstream_indexes(node):
            in_degree[child] -= 1
            if in_degree[child] == 0:
                heapq.heappush(heap, (_sort_key(graph.tables[child]), child))

    if len(order) != len(graph):
        raise CyclicDependency(find_cycle(graph) or [t.name for t in graph.tables if t not in order])

    return order


def parallel_groups(graph: DependencyGraph) -> list[list[str]]:
    """Return execution levels — tables in the same level share no dependency.

    Each level only runs after all previous levels have completed.
    """
    in_degree = _in_degrees(graph)
    current = [i for i, d in enumerate(in_degree) if d == 0]
    groups = []
    placed = 0

    while current:
        current.sort(key=lambda i: _sort_key(graph.tables[i]))
        groups.append([graph.tables[i].name for i in current])
        placed += len(current)
        following = []
        for node in current:
            for child in graph.downstream_indexes(node):
                in_degree[child] -= 1
                if in_degree[child] == 0:
                    following.append(child)
        current = following

    if placed != len(graph):
        raise CyclicDependency(find_cycle(graph) or [])

    return groups
