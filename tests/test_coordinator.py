"""Tests for the window coordinator and the workflow registry."""

import asyncio
from datetime import timedelta

import pytest

from sluice.daemon.coordinator import CoordinatorState, WindowCoordinator
from sluice.daemon.registry import WorkflowRegistry
from sluice.execution import TableExecutor, TableStatus
from sluice.models import Table, Workflow
from tests.conftest import MockSQLEngine, TransactionalEngine, utc


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


class TestRunWindow:
    @pytest.mark.asyncio
    async def test_all_tables_succeed_in_order(self, chain_workflow, engine, window):
        coordinator = WindowCoordinator(chain_workflow, TableExecutor(engine))
        result = await coordinator.run_window(window)

        assert result.status == "success"
        assert result.execution_order == ["raw", "daily_agg", "raw_copy", "summary"]
        assert all(r.status == TableStatus.SUCCESS for r in result.results.values())
        staged = [engine.staged_table(q) for q in engine.statements("CREATE OR REPLACE TEMP TABLE")]
        assert staged == ["raw", "daily_agg", "raw_copy", "summary"]

    @pytest.mark.asyncio
    async def test_failure_skips_descendants_only(self, chain_workflow, engine, window):
        engine.fail_on("FROM raw GROUP BY")
        coordinator = WindowCoordinator(chain_workflow, TableExecutor(engine))
        result = await coordinator.run_window(window)

        assert result.status == "partial"
        assert result.failed == ["daily_agg"]
        assert result.dependency_failed == ["summary"]
        assert result.results["daily_agg"].status == TableStatus.FAILED
        assert result.results["summary"].status == TableStatus.DEPENDENCY_FAILED
        assert result.results["summary"].failed_dependency == "daily_agg"
        assert result.results["raw"].status == TableStatus.SUCCESS
        assert result.results["raw_copy"].status == TableStatus.SUCCESS
        # summary never reached the engine
        assert not [q for q in engine.executed if "__stage_summary__" in q]

    @pytest.mark.asyncio
    async def test_root_cause_propagates_through_levels(self, chain_workflow, engine, window):
        engine.fail_on("FROM events")
        coordinator = WindowCoordinator(chain_workflow, TableExecutor(engine))
        result = await coordinator.run_window(window)

        assert result.status == "failed"
        assert result.failed == ["raw"]
        assert sorted(result.dependency_failed) == ["daily_agg", "raw_copy", "summary"]
        assert result.results["summary"].failed_dependency == "raw"

    @pytest.mark.asyncio
    async def test_parallel_levels(self, chain_workflow, engine, window):
        engine.fail_on("FROM raw GROUP BY")
        coordinator = WindowCoordinator(chain_workflow, TableExecutor(engine), max_parallel=4)
        result = await coordinator.run_window(window)

        assert coordinator.groups == [["raw"], ["daily_agg", "raw_copy"], ["summary"]]
        assert result.results["raw_copy"].status == TableStatus.SUCCESS
        assert result.results["summary"].status == TableStatus.DEPENDENCY_FAILED

    @pytest.mark.asyncio
    async def test_history_is_bounded(self, chain_workflow, engine, window):
        coordinator = WindowCoordinator(chain_workflow, TableExecutor(engine), history_size=2)
        for _ in range(3):
            await coordinator.run_window(window)
        assert len(coordinator.history) == 2

    @pytest.mark.asyncio
    async def test_manual_run_does_not_move_schedule(self, chain_workflow, engine, window):
        coordinator = WindowCoordinator(chain_workflow, TableExecutor(engine))
        await coordinator.run_window(window)
        assert coordinator.last_window is None

    @pytest.mark.asyncio
    async def test_update_workflow_changes_order(self, chain_workflow, engine, window):
        coordinator = WindowCoordinator(chain_workflow, TableExecutor(engine))
        chain_workflow.add_table(Table(name="aaa_report", definition="SELECT * FROM summary"))
        coordinator.update_workflow(chain_workflow)
        assert coordinator.last_order[-1] == "aaa_report"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("max_parallel", [1, 4])
    async def test_update_during_run_applies_to_next_window(self, chain_workflow, window, max_parallel):
        edited = Workflow(name="analytics", tables=[
            t for t in chain_workflow.tables if t.name not in ("daily_agg", "summary")
        ] + [Table(name="late", definition="SELECT * FROM raw_copy")])

        class EditingEngine(MockSQLEngine):
            async def execute(self, query, params=None):
                await super().execute(query, params)
                if query.startswith("CREATE OR REPLACE TEMP TABLE") and "__stage_raw__" in query:
                    coordinator.update_workflow(edited)

        engine = EditingEngine()
        engine.set_rows("daily_agg", [], columns=["day", "n", "ts"])
        coordinator = WindowCoordinator(chain_workflow, TableExecutor(engine), max_parallel=max_parallel)
        result = await coordinator.run_window(window)

        assert result.status == "success"
        assert result.execution_order == ["raw", "daily_agg", "raw_copy", "summary"]
        assert sorted(result.results) == ["daily_agg", "raw", "raw_copy", "summary"]
        assert coordinator.last_order == ["raw", "raw_copy", "late"]

    @pytest.mark.asyncio
    async def test_parallel_siblings_share_connection_safely(self, chain_workflow, window):
        engine = TransactionalEngine()
        engine.set_rows("daily_agg", [], columns=["day", "n", "ts"])
        engine.fail_on("FROM raw GROUP BY")
        chain_workflow.add_table(Table(name="raw_dedup", definition="SELECT DISTINCT * FROM raw"))
        coordinator = WindowCoordinator(chain_workflow, TableExecutor(engine), max_parallel=4)
        result = await coordinator.run_window(window)

        assert coordinator.groups[1] == ["daily_agg", "raw_copy", "raw_dedup"]
        assert result.failed == ["daily_agg"]
        assert result.results["raw_copy"].status == TableStatus.SUCCESS
        assert result.results["raw_dedup"].status == TableStatus.SUCCESS
        assert "transaction" not in result.results["daily_agg"].error.lower()
        assert not engine.in_transaction


class TestScheduleLoop:
    @pytest.mark.asyncio
    async def test_windows_tile_from_start(self, chain_workflow, engine):
        clock = FakeClock(utc(2024, 1, 2))
        coordinator = WindowCoordinator(
            chain_workflow,
            TableExecutor(engine),
            start_at=utc(2024, 1, 1, 0, 30),
            clock=clock,
        )
        ran = await coordinator.run(max_windows=3)

        assert ran == 3
        windows = [r.window for r in coordinator.history]
        assert windows[0].start == utc(2024, 1, 1, 0)
        for previous, current in zip(windows, windows[1:]):
            assert current.start == previous.end
        assert coordinator.last_window == windows[-1]
        assert coordinator.state == CoordinatorState.IDLE

    @pytest.mark.asyncio
    async def test_first_window_from_clock(self, chain_workflow, engine):
        clock = FakeClock(utc(2024, 1, 1, 5, 20))
        coordinator = WindowCoordinator(chain_workflow, TableExecutor(engine), clock=clock)
        window = coordinator.next_window()
        assert window.start == utc(2024, 1, 1, 5)
        assert window.end == utc(2024, 1, 1, 6)

    @pytest.mark.asyncio
    async def test_failed_window_still_advances(self, chain_workflow, engine):
        engine.fail_on("FROM events")
        clock = FakeClock(utc(2024, 1, 2))
        coordinator = WindowCoordinator(
            chain_workflow, TableExecutor(engine), start_at=utc(2024, 1, 1), clock=clock
        )
        await coordinator.run(max_windows=2)
        assert [r.status for r in coordinator.history] == ["failed", "failed"]
        assert coordinator.last_window.start == utc(2024, 1, 1, 1)

    @pytest.mark.asyncio
    async def test_stop_interrupts_wait(self, chain_workflow, engine):
        # The first window closes an hour from now, so the loop is waiting
        clock = FakeClock(utc(2024, 1, 1, 0, 0, 1))
        coordinator = WindowCoordinator(chain_workflow, TableExecutor(engine), clock=clock)
        task = coordinator.start()
        await asyncio.sleep(0.01)
        assert coordinator.state == CoordinatorState.SCHEDULED

        await asyncio.wait_for(coordinator.stop(), timeout=1)
        assert task.done()
        assert coordinator.state == CoordinatorState.STOPPED
        assert len(coordinator.history) == 0
        with pytest.raises(RuntimeError):
            coordinator.start()

    @pytest.mark.asyncio
    async def test_stop_abandons_in_flight_window(self, chain_workflow):
        class BlockingEngine(MockSQLEngine):
            async def execute(self, query, params=None):
                await super().execute(query, params)
                if query.startswith("CREATE OR REPLACE TEMP TABLE"):
                    await asyncio.sleep(60)

        clock = FakeClock(utc(2024, 1, 2))
        coordinator = WindowCoordinator(
            chain_workflow, TableExecutor(BlockingEngine()), start_at=utc(2024, 1, 1), clock=clock
        )
        coordinator.start()
        await asyncio.sleep(0.01)
        assert coordinator.state == CoordinatorState.RUNNING

        await asyncio.wait_for(coordinator.stop(), timeout=1)
        assert [r.status for r in coordinator.history] == ["cancelled"]
        assert coordinator.last_window is None


class TestWorkflowRegistry:
    def _registry(self, engines):
        def factory(workflow):
            engines[workflow.name] = MockSQLEngine()
            return TableExecutor(engines[workflow.name])

        return WorkflowRegistry(executor_factory=factory, clock=FakeClock(utc(2024, 1, 1, 0, 0, 1)))

    def test_register_isolates_workflows(self, chain_workflow):
        engines = {}
        registry = self._registry(engines)
        registry.register(chain_workflow)
        registry.register(Workflow(name="other", tables=[Table(name="t", definition="SELECT 1")]))

        assert registry.names == ["analytics", "other"]
        assert "analytics" in registry
        assert len(registry) == 2
        assert engines["analytics"] is not engines["other"]
        assert registry.get("analytics").executor is not registry.get("other").executor

    def test_register_same_name_updates(self, chain_workflow):
        registry = self._registry({})
        first = registry.register(chain_workflow)
        replacement = Workflow(name="analytics", tables=[Table(name="only", definition="SELECT 1")])
        second = registry.register(replacement)
        assert first is second
        assert second.last_order == ["only"]

    @pytest.mark.asyncio
    async def test_start_and_stop_all(self, chain_workflow):
        registry = self._registry({})
        registry.register(chain_workflow)
        registry.register(Workflow(name="other"))
        registry.start_all()
        await asyncio.sleep(0.01)
        assert all(registry.get(n).running for n in registry.names)

        await asyncio.wait_for(registry.stop_all(), timeout=1)
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_unregister_unknown(self):
        assert await self._registry({}).unregister("missing") is False

    def test_info(self, chain_workflow):
        registry = self._registry({})
        registry.register(chain_workflow)
        [info] = registry.info()
        assert info["workflow"] == "analytics"
        assert info["state"] == "idle"
        assert info["window_size"] == timedelta(hours=1).total_seconds()
