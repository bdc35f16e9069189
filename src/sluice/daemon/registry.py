"""Workflow registry — owns every active window coordinator in the process."""

from __future__ import annotations
import logging
from datetime import datetime
from typing import Callable

from sluice.daemon.coordinator import WindowCoordinator, utc_now
from sluice.execution.executor import TableExecutor
from sluice.models.workflow import Workflow

logger = logging.getLogger("sluice.registry")


class WorkflowRegistry:
    """Registry of workflow coordinators, created at startup and torn down on shutdown.

    Each workflow gets its own coordinator and its own executor, so workflows
    share no mutable state:

        registry = WorkflowRegistry(executor_factory=lambda wf: TableExecutor(duckdb_local()))
        registry.register(workflow)
        registry.start_all()
        ...
        await registry.stop_all()
    """

    def __init__(
        self,
        executor_factory: Callable[[Workflow], TableExecutor],
        max_parallel: int = 1,
        history_size: int = 50,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._executor_factory = executor_factory
        self._max_parallel = max_parallel
        self._history_size = history_size
        self._clock = clock
        self._coordinators: dict[str, WindowCoordinator] = {}

    def __contains__(self, name: str) -> bool:
        return name in self._coordinators

    def __len__(self) -> int:
        return len(self._coordinators)

    @property
    def names(self) -> list[str]:
        return sorted(self._coordinators)

    def get(self, name: str) -> WindowCoordinator | None:
        return self._coordinators.get(name)

    def register(self, workflow: Workflow, start_at: datetime | None = None) -> WindowCoordinator:
        """Add a workflow, or swap in a new version of an already registered one."""
        existing = self._coordinators.get(workflow.name)
        if existing is not None:
            existing.update_workflow(workflow)
            logger.info(f"Updated workflow: {workflow.name}")
            return existing

        coordinator = WindowCoordinator(
            workflow,
            executor=self._executor_factory(workflow),
            max_parallel=self._max_parallel,
            history_size=self._history_size,
            start_at=start_at,
            clock=self._clock,
        )
        self._coordinators[workflow.name] = coordinator
        logger.info(f"Registered workflow: {workflow.name} ({len(workflow.tables)} tables)")
        return coordinator

    async def unregister(self, name: str) -> bool:
        """Remove a workflow, cancelling its pending wait and in-flight window."""
        coordinator = self._coordinators.pop(name, None)
        if coordinator is None:
            return False
        await coordinator.stop()
        logger.info(f"Unregistered workflow: {name}")
        return True

    def start_all(self) -> None:
        for coordinator in self._coordinators.values():
            coordinator.start()

    async def stop_all(self) -> None:
        for name in list(self._coordinators):
            await self.unregister(name)

    def info(self) -> list[dict]:
        return [self._coordinators[name].info() for name in self.names]
