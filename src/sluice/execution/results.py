"""Per-table and per-window execution results."""

from __future__ import annotations
import enum
from dataclasses import dataclass, field
from datetime import datetime

from sluice.models.window import ExecutionWindow


class TableStatus(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    TIMEOUT = "timeout"
    DEPENDENCY_FAILED = "dependency_failed"

    @property
    def is_failure(self) -> bool:
        return self in (TableStatus.FAILED, TableStatus.TIMEOUT, TableStatus.DEPENDENCY_FAILED)


@dataclass
class TableRunResult:
    """Outcome of one table for one window."""
    table: str
    window: ExecutionWindow
    status: TableStatus = TableStatus.PENDING
    rows_written: int = 0
    strategy: str | None = None  # upsert | append | create
    window_injected: bool = False
    error: str | None = None
    failed_dependency: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    duration_ms: int | None = None

    @property
    def ok(self) -> bool:
        return self.status == TableStatus.SUCCESS

    def to_dict(self) -> dict:
        return {
            "table": self.table,
            "window": self.window.to_dict(),
            "status": self.status.value,
            "rows_written": self.rows_written,
            "strategy": self.strategy,
            "window_injected": self.window_injected,
            "error": self.error,
            "failed_dependency": self.failed_dependency,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_ms": self.duration_ms,
        }


@dataclass
class WindowRunResult:
    """Result of executing a whole workflow for one window."""
    workflow: str
    window: ExecutionWindow
    status: str = "pending"  # pending | running | success | failed | partial | cancelled
    started_at: datetime | None = None
    finished_at: datetime | None = None
    duration_ms: int | None = None
    results: dict[str, TableRunResult] = field(default_factory=dict)  # table name → result
    failed: list[str] = field(default_factory=list)
    dependency_failed: list[str] = field(default_factory=list)
    execution_order: list[str] = field(default_factory=list)

    def finish(self) -> None:
        if self.failed or self.dependency_failed:
            succeeded = any(r.ok for r in self.results.values())
            self.status = "partial" if succeeded else "failed"
        else:
            self.status = "success"

    def to_dict(self) -> dict:
        return {
            "workflow": self.workflow,
            "window": self.window.to_dict(),
            "status": self.status,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_ms": self.duration_ms,
            "results": {name: r.to_dict() for name, r in self.results.items()},
            "failed": self.failed,
            "dependency_failed": self.dependency_failed,
            "execution_order": self.execution_order,
        }
