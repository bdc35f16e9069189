"""Sluice error taxonomy."""

from __future__ import annotations
from dataclasses import dataclass


class SluiceError(Exception):
    """Base class for all Sluice errors."""


class DuplicateTableName(SluiceError):
    """Two tables in one workflow share a name (case-insensitive)."""
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Duplicate table name: '{name}'")


class DuplicateTableId(SluiceError):
    """Two tables in one workflow share an id."""
    def __init__(self, table_id: str, names: list[str]):
        self.table_id = table_id
        self.names = names
        super().__init__(f"Duplicate table id '{table_id}' (tables {names})")


class CyclicDependency(SluiceError):
    """Raised when table references form a cycle."""
    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        path = " → ".join(cycle + cycle[:1])
        super().__init__(f"Dependency cycle detected: {path}")


class TableNotFound(SluiceError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Table '{name}' does not exist")


class TableInUse(SluiceError):
    """Raised when deleting a table that other tables still reference."""
    def __init__(self, name: str, dependents: list[str]):
        self.name = name
        self.dependents = dependents
        super().__init__(f"Cannot remove '{name}': tables {dependents} depend on it")


class ExecutionError(SluiceError):
    """A table's transformation failed in the SQL engine (or timed out)."""
    def __init__(self, table: str, message: str):
        self.table = table
        self.message = message
        super().__init__(f"{table}: {message}")


class WorkflowValidationError(SluiceError):
    """An imported workflow document is malformed."""


@dataclass(frozen=True)
class UnresolvedReference:
    """A relation read by a table that matches no table in the workflow.

    Informational only: the relation is assumed to be a raw/external source.
    """
    table: str
    name: str

    def __str__(self) -> str:
        return f"{self.table} reads unresolved relation '{self.name}'"
