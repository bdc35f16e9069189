"""Dependency graph derivation, validation and scheduling."""

from sluice.dag.references import find_references, find_relation_names
from sluice.dag.graph import DependencyGraph, build_graph
from sluice.dag.validator import find_cycle, validate
from sluice.dag.scheduler import topological_order, parallel_groups

__all__ = [
    "find_references",
    "find_relation_names",
    "DependencyGraph",
    "build_graph",
    "find_cycle",
    "validate",
    "topological_order",
    "parallel_groups",
]
