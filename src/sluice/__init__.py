"""Sluice — incrementally materialized SQL table workflows on tumbling windows."""

__version__ = "0.1.0"

from sluice.models import Table, FunctionType, Workflow, WindowConfig, ExecutionWindow
from sluice.errors import (
    SluiceError,
    DuplicateTableName,
    DuplicateTableId,
    CyclicDependency,
    ExecutionError,
    UnresolvedReference,
)

__all__ = [
    "Table",
    "FunctionType",
    "Workflow",
    "WindowConfig",
    "ExecutionWindow",
    "SluiceError",
    "DuplicateTableName",
    "DuplicateTableId",
    "CyclicDependency",
    "ExecutionError",
    "UnresolvedReference",
    "__version__",
]
