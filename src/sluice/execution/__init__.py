"""Table execution against the external SQL engine."""

from sluice.execution.results import TableStatus, TableRunResult, WindowRunResult
from sluice.execution.sql import WindowQuery, render_window_query
from sluice.execution.executor import TableExecutor

__all__ = [
    "TableStatus",
    "TableRunResult",
    "WindowRunResult",
    "WindowQuery",
    "render_window_query",
    "TableExecutor",
]
