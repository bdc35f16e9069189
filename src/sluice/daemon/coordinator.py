"""Window coordinator — drives one workflow through successive tumbling windows.

State machine: IDLE → SCHEDULED → RUNNING → IDLE, terminal STOPPED.

- IDLE: compute the next window. The first one is the window containing
  "now" (or `start_at`); every later one starts at the previous end, so
  windows tile the timeline even when a run overruns.
- SCHEDULED: wait until the window's end has elapsed. The wait is a timer on
  a cancellation event, so stop() interrupts it immediately.
- RUNNING: execute tables in topological order. A failed table marks its
  descendants DEPENDENCY_FAILED for this window; unrelated tables still run.

Late rows for a closed window are not picked up again (no backfill).
"""

from __future__ import annotations
import asyncio
import enum
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Callable

from sluice.dag.scheduler import parallel_groups, topological_order
from sluice.execution.executor import TableExecutor
from sluice.execution.results import TableRunResult, TableStatus, WindowRunResult
from sluice.models.table import Table
from sluice.models.window import ExecutionWindow, ensure_utc
from sluice.models.workflow import Workflow

logger = logging.getLogger("sluice.coordinator")


class CoordinatorState(str, enum.Enum):
    IDLE = "idle"
    SCHEDULED = "scheduled"
    RUNNING = "running"
    STOPPED = "stopped"


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


class WindowCoordinator:
    """Runs a workflow once per tumbling window."""

    def __init__(
        self,
        workflow: Workflow,
        executor: TableExecutor,
        max_parallel: int = 1,
        history_size: int = 50,
        start_at: datetime | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Args:
            workflow: The workflow to run (its graph must be valid)
            executor: Executes single tables against the engine
            max_parallel: Tables of one dependency level run concurrently up to this limit
            history_size: Number of window results kept in memory
            start_at: Start of the first window (default: window containing now)
            clock: Source of the current time
        """
        self.executor = executor
        self.max_parallel = max_parallel
        self.start_at = ensure_utc(start_at) if start_at else None
        self.history: deque[WindowRunResult] = deque(maxlen=history_size)
        self.state = CoordinatorState.IDLE
        self._clock = clock
        self._cancel = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._table_locks: dict[str, asyncio.Lock] = {}
        self._last_window: ExecutionWindow | None = None
        self.update_workflow(workflow)

    @property
    def name(self) -> str:
        return self.workflow.name

    @property
    def last_order(self) -> list[str]:
        """Names in the last computed execution order."""
        return [t.name for t in self.order]

    @property
    def last_window(self) -> ExecutionWindow | None:
        """The last window the schedule completed."""
        return self._last_window

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def update_workflow(self, workflow: Workflow) -> None:
        """Swap in an edited workflow; takes effect from the next window."""
        self.workflow = workflow
        self.graph = workflow.graph()
        self.order: list[Table] = topological_order(self.graph)
        self.groups: list[list[str]] = parallel_groups(self.graph)
        logger.info(f"[{workflow.name}] Execution order: {self.last_order}")

    def next_window(self) -> ExecutionWindow:
        if self._last_window is not None:
            return self.workflow.window.following(self._last_window)
        return self.workflow.window.window_at(self.start_at or self._clock())

    # ─── Single window ───

    async def run_window(self, window: ExecutionWindow) -> WindowRunResult:
        """Execute every table of the workflow for one window."""
        # Snapshot: an update_workflow during the run applies from the next window
        graph, order, groups = self.graph, list(self.order), [list(g) for g in self.groups]
        result = WindowRunResult(
            workflow=self.workflow.name,
            window=window,
            status="running",
            started_at=utc_now(),
            execution_order=[t.name for t in order],
        )
        root_cause: dict[str, str] = {}  # failed table → table that originally failed

        async def _run_one(table: Table) -> None:
            blocked = sorted(u for u in graph.direct_upstream(table.name) if u in root_cause)
            if blocked:
                cause = root_cause[blocked[0]]
                root_cause[table.name] = cause
                result.dependency_failed.append(table.name)
                result.results[table.name] = TableRunResult(
                    table=table.name,
                    window=window,
                    status=TableStatus.DEPENDENCY_FAILED,
                    failed_dependency=cause,
                    error=f"Skipped: upstream dependency '{cause}' failed",
                )
                logger.info(f"[{self.name}] Skipping {table.name} — upstream {cause} failed")
                return

            async with self._lock_for(table):
                table_result = await self.executor.execute(table, window)
            result.results[table.name] = table_result
            if table_result.status.is_failure:
                root_cause[table.name] = table.name
                result.failed.append(table.name)

        logger.info(f"[{self.name}] Running window {window}")
        try:
            if self.max_parallel > 1:
                semaphore = asyncio.Semaphore(self.max_parallel)

                async def _limited(table: Table) -> None:
                    async with semaphore:
                        await _run_one(table)

                for group in groups:
                    await asyncio.gather(*[_limited(graph.table(name)) for name in group])
            else:
                for table in order:
                    await _run_one(table)
        except asyncio.CancelledError:
            result.status = "cancelled"
            logger.warning(f"[{self.name}] Window {window} abandoned")
            raise
        else:
            result.finish()
        finally:
            result.finished_at = utc_now()
            result.duration_ms = int(
                (result.finished_at - result.started_at).total_seconds() * 1000
            )
            self.history.append(result)

        if result.status == "success":
            logger.info(f"[{self.name}] Window {window} succeeded ({result.duration_ms}ms)")
        else:
            logger.error(
                f"[{self.name}] Window {window} {result.status}: failed={result.failed} "
                f"dependency_failed={result.dependency_failed}"
            )
        return result

    def _lock_for(self, table: Table) -> asyncio.Lock:
        # One writer per table: an overrunning window delays the next one
        return self._table_locks.setdefault(table.id, asyncio.Lock())

    # ─── Schedule loop ───

    async def run(self, max_windows: int | None = None) -> int:
        """Run windows back to back, waiting for each to close. Returns windows run."""
        if self.state == CoordinatorState.STOPPED:
            raise RuntimeError(f"Coordinator for '{self.name}' is stopped")

        count = 0
        while not self._cancel.is_set() and (max_windows is None or count < max_windows):
            window = self.next_window()

            self.state = CoordinatorState.SCHEDULED
            delay = (window.end - self._clock()).total_seconds()
            if delay > 0:
                logger.debug(f"[{self.name}] Waiting {delay:.1f}s for {window} to close")
                if await self._wait_cancelled(delay):
                    break

            self.state = CoordinatorState.RUNNING
            try:
                await self.run_window(window)
            except Exception:
                logger.exception(f"[{self.name}] Unexpected error in window {window}")
            self._last_window = window
            self.state = CoordinatorState.IDLE
            count += 1

        if self._cancel.is_set():
            self.state = CoordinatorState.STOPPED
        return count

    async def _wait_cancelled(self, delay: float) -> bool:
        try:
            await asyncio.wait_for(self._cancel.wait(), timeout=delay)
            return True
        except asyncio.TimeoutError:
            return False

    def start(self) -> asyncio.Task:
        """Start the schedule loop as a background task."""
        if self.running:
            return self._task
        if self.state == CoordinatorState.STOPPED:
            raise RuntimeError(f"Coordinator for '{self.name}' is stopped")
        self._task = asyncio.create_task(self.run(), name=f"sluice-coordinator-{self.name}")
        logger.info(f"[{self.name}] Coordinator started")
        return self._task

    async def stop(self) -> None:
        """Cancel the pending wait and abandon any in-flight window."""
        self._cancel.set()
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.state = CoordinatorState.STOPPED
        logger.info(f"[{self.name}] Coordinator stopped")

    def info(self) -> dict:
        last = self.history[-1] if self.history else None
        return {
            "workflow": self.name,
            "state": self.state.value,
            "window_size": self.workflow.window.size.total_seconds(),
            "order": self.last_order,
            "last_window": self._last_window.to_dict() if self._last_window else None,
            "last_status": last.status if last else None,
        }
