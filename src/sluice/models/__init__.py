"""Workflow data model."""

from sluice.models.table import Table, FunctionType
from sluice.models.window import (
    WindowConfig,
    ExecutionWindow,
    parse_duration,
    format_duration,
)
from sluice.models.workflow import Workflow

__all__ = [
    "Table",
    "FunctionType",
    "WindowConfig",
    "ExecutionWindow",
    "parse_duration",
    "format_duration",
    "Workflow",
]
