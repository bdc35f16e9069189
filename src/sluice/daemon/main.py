"""Sluice daemon — loads workflow documents and keeps their windows ticking."""

import asyncio
import logging
import signal
import sys
from pathlib import Path

from sluice import __version__
from sluice.connectors.duckdb import DuckDBConnector
from sluice.core.config import SluiceSettings, get_settings
from sluice.daemon.registry import WorkflowRegistry
from sluice.execution.executor import TableExecutor
from sluice.models.workflow import Workflow
from sluice.serialization.codec import import_workflows

logger = logging.getLogger("sluice")


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        datefmt="%H:%M:%S",
    )


def load_workflows(directory: Path, settings: SluiceSettings) -> list[Workflow]:
    """Load every workflow from the *.yaml / *.yml documents in `directory`."""
    workflows = []
    for path in sorted([*directory.glob("*.yaml"), *directory.glob("*.yml")]):
        loaded = import_workflows(path.read_text(), settings.default_window_size)
        logger.info(f"Loaded {len(loaded)} workflow(s) from {path}")
        workflows.extend(loaded)
    return workflows


def build_registry(settings: SluiceSettings) -> WorkflowRegistry:
    def executor_factory(workflow: Workflow) -> TableExecutor:
        return TableExecutor(
            DuckDBConnector(database=settings.database),
            timeout_seconds=settings.table_timeout_seconds,
        )

    return WorkflowRegistry(
        executor_factory=executor_factory,
        max_parallel=settings.max_parallel,
        history_size=settings.history_size,
    )


async def serve(settings: SluiceSettings) -> None:
    """Run all workflows until SIGINT/SIGTERM."""
    directory = Path(settings.workflows_dir)
    if not directory.is_dir():
        raise FileNotFoundError(f"Workflows directory not found: {directory}")

    registry = build_registry(settings)
    for workflow in load_workflows(directory, settings):
        registry.register(workflow)

    if not len(registry):
        logger.warning(f"No workflows found in {directory}")

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers; Ctrl+C still raises
            pass

    registry.start_all()
    logger.info(f"Sluice daemon running {registry.names}")
    try:
        await stop.wait()
    finally:
        await registry.stop_all()
        logger.info("Sluice daemon stopped")


def main():
    """Entry point for `sluiced` command."""
    settings = get_settings()

    # Parse CLI args (simple, no dep on typer for daemon)
    args = sys.argv[1:]
    overrides = {}
    for i, arg in enumerate(args):
        if arg == "--workflows" and i + 1 < len(args):
            overrides["workflows_dir"] = args[i + 1]
        if arg == "--database" and i + 1 < len(args):
            overrides["database"] = args[i + 1]
    if overrides:
        settings = get_settings(**overrides)

    configure_logging(settings.log_level)
    logger.info(f"Starting Sluice daemon v{__version__} (workflows: {settings.workflows_dir})")
    asyncio.run(serve(settings))


if __name__ == "__main__":
    main()
