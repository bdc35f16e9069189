"""Workflow — a named set of tables sharing one window config and one graph."""

from __future__ import annotations
import logging
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sluice.errors import TableInUse, TableNotFound
from sluice.models.table import Table
from sluice.models.window import WindowConfig

if TYPE_CHECKING:
    from sluice.dag.graph import DependencyGraph

logger = logging.getLogger("sluice.workflow")


@dataclass
class Workflow:
    """A named collection of tables.

    Every mutation rebuilds and validates the dependency graph. A mutation that
    would introduce a duplicate name or id, or a cycle, raises and leaves the workflow
    unchanged, so a Workflow instance is always runnable.
    """
    name: str
    tables: list[Table] = field(default_factory=list)
    window: WindowConfig = field(default_factory=WindowConfig)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self):
        self.tables = list(self.tables)
        self.graph()

    def graph(self) -> "DependencyGraph":
        """Build and validate the dependency graph for the current tables."""
        from sluice.dag.graph import build_graph
        from sluice.dag.validator import validate

        graph = build_graph(self.tables)
        validate(graph)
        return graph

    def get_table(self, name: str) -> Table:
        key = name.casefold()
        for table in self.tables:
            if table.key == key:
                return table
        raise TableNotFound(name)

    def has_table(self, name: str) -> bool:
        key = name.casefold()
        return any(t.key == key for t in self.tables)

    def add_table(self, table: Table) -> Table:
        self._commit(self.tables + [table])
        logger.info(f"[{self.name}] Added table {table.name}")
        return table

    def update_table(self, name: str, **changes) -> Table:
        """Edit a table's fields (definition, time_column, upsert_constraints, ...)."""
        current = self.get_table(name)
        updated = current.replace(**changes)
        self._commit([updated if t.id == current.id else t for t in self.tables])
        logger.info(f"[{self.name}] Updated table {current.name}")
        return updated

    def remove_table(self, name: str, force: bool = False) -> Table:
        """Remove a table.

        Refused while other tables reference it, unless `force` is set; forced
        removal leaves the dependents with an unresolved reference.
        """
        table = self.get_table(name)
        dependents = self.graph().direct_downstream(table.name)
        if dependents and not force:
            raise TableInUse(table.name, dependents)

        self._commit([t for t in self.tables if t.id != table.id])
        if dependents:
            logger.warning(
                f"[{self.name}] Removed {table.name}; {dependents} now reference a missing table"
            )
        else:
            logger.info(f"[{self.name}] Removed table {table.name}")
        return table

    def _commit(self, tables: list[Table]) -> None:
        previous = self.tables
        self.tables = tables
        try:
            self.graph()
        except Exception:
            self.tables = previous
            raise
