"""Dependency graph — built from immutable table snapshots.

Tables live in an arena (a tuple indexed by position); edges are stored as
(source_index, target_index) pairs meaning "target reads source".
"""

from __future__ import annotations
from collections import deque
from dataclasses import dataclass, field
from typing import Iterable

from sluice.dag.references import find_references, find_relation_names
from sluice.errors import DuplicateTableId, DuplicateTableName, TableNotFound, UnresolvedReference
from sluice.models.table import Table


@dataclass(frozen=True)
class DependencyGraph:
    tables: tuple[Table, ...]
    edges: tuple[tuple[int, int], ...]
    unresolved: tuple[UnresolvedReference, ...] = ()
    _index: dict[str, int] = field(default_factory=dict, repr=False, compare=False)
    _upstream: tuple[tuple[int, ...], ...] = field(default=(), repr=False, compare=False)
    _downstream: tuple[tuple[int, ...], ...] = field(default=(), repr=False, compare=False)

    def __post_init__(self):
        up: list[list[int]] = [[] for _ in self.tables]
        down: list[list[int]] = [[] for _ in self.tables]
        for source, target in self.edges:
            up[target].append(source)
            down[source].append(target)
        object.__setattr__(self, "_index", {t.key: i for i, t in enumerate(self.tables)})
        object.__setattr__(self, "_upstream", tuple(tuple(sorted(u)) for u in up))
        object.__setattr__(self, "_downstream", tuple(tuple(sorted(d)) for d in down))

    def __len__(self) -> int:
        return len(self.tables)

    def index_of(self, name: str) -> int:
        try:
            return self._index[name.casefold()]
        except KeyError:
            raise TableNotFound(name) from None

    def table(self, name: str) -> Table:
        return self.tables[self.index_of(name)]

    def upstream_indexes(self, index: int) -> tuple[int, ...]:
        return self._upstream[index]

    def downstream_indexes(self, index: int) -> tuple[int, ...]:
        return self._downstream[index]

    def direct_upstream(self, name: str) -> list[str]:
        """Names of tables that `name` reads directly."""
        return sorted(self.tables[i].name for i in self._upstream[self.index_of(name)])

    def direct_downstream(self, name: str) -> list[str]:
        """Names of tables that read `name` directly."""
        return sorted(self.tables[i].name for i in self._downstream[self.index_of(name)])

    def upstream(self, name: str) -> set[str]:
        """All transitive upstream dependencies."""
        return self._walk(self.index_of(name), self._upstream)

    def downstream(self, name: str) -> set[str]:
        """All transitive downstream dependents."""
        return self._walk(self.index_of(name), self._downstream)

    def _walk(self, start: int, adjacency) -> set[str]:
        visited = set()
        queue = deque(adjacency[start])
        while queue:
            node = queue.popleft()
            if node in visited:
                continue
            visited.add(node)
            queue.extend(adjacency[node])
        visited.discard(start)
        return {self.tables[i].name for i in visited}

    def edge_list(self) -> list[tuple[str, str]]:
        """(source_table_id, target_table_id) pairs, for visualization."""
        return [(self.tables[s].id, self.tables[t].id) for s, t in self.edges]

    def to_dict(self) -> dict:
        """Serialize the graph for JSON output."""
        from sluice.dag.scheduler import parallel_groups, topological_order

        return {
            "nodes": [{"id": t.id, "name": t.name} for t in self.tables],
            "edges": [
                {
                    "source": self.tables[s].id,
                    "target": self.tables[t].id,
                    "upstream": self.tables[s].name,
                    "downstream": self.tables[t].name,
                }
                for s, t in self.edges
            ],
            "order": [t.name for t in topological_order(self)],
            "groups": parallel_groups(self),
            "unresolved": [{"table": u.table, "name": u.name} for u in self.unresolved],
        }


def build_graph(tables: Iterable[Table]) -> DependencyGraph:
    """Derive the dependency graph of a set of tables.

    Raises DuplicateTableName when two tables share a name (case-insensitive)
    and DuplicateTableId when two share an id.
    Relations read by a table that match no table are recorded as unresolved.
    """
    arena = tuple(tables)
    index: dict[str, int] = {}
    ids: dict[str, int] = {}
    for i, table in enumerate(arena):
        if table.key in index:
            raise DuplicateTableName(table.name)
        if table.id in ids:
            raise DuplicateTableId(table.id, [arena[ids[table.id]].name, table.name])
        index[table.key] = i
        ids[table.id] = i

    names = [t.name for t in arena]
    edges = []
    unresolved = []
    for target, table in enumerate(arena):
        for name in find_references(table.definition, names, self_name=table.name):
            edges.append((index[name.casefold()], target))

        for relation in sorted(find_relation_names(table.definition)):
            short = relation.rsplit(".", 1)[-1].casefold()
            if relation.casefold() in index or short in index:
                continue
            unresolved.append(UnresolvedReference(table=table.name, name=relation))

    return DependencyGraph(
        tables=arena,
        edges=tuple(sorted(edges)),
        unresolved=tuple(unresolved),
    )
