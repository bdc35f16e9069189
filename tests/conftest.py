"""Shared test fixtures for Sluice tests."""

import asyncio
from datetime import datetime, timezone

import pytest
import pytest_asyncio

from sluice.connectors.duckdb import DuckDBConnector
from sluice.models import Table, WindowConfig, Workflow
from sluice.models.window import ExecutionWindow


class MockSQLEngine:
    """Recording SQL engine for executor and coordinator tests.

    Statements are recorded verbatim. The existence check succeeds only for
    names in `existing`; staged columns and row counts come from `set_rows`;
    any statement containing a string registered with `fail_on` raises.
    """

    def __init__(self):
        self.executed: list[str] = []
        self.existing: set[str] = set()
        self._rows: dict[str, list[dict]] = {}
        self._columns: dict[str, list[str]] = {}
        self._failures: dict[str, Exception] = {}

    def set_rows(self, table_name: str, rows: list[dict], columns: list[str] | None = None):
        self._rows[table_name] = rows
        self._columns[table_name] = columns or (list(rows[0]) if rows else [])

    def fail_on(self, substring: str, error: Exception | None = None):
        self._failures[substring] = error or RuntimeError(f"Catalog Error: {substring}")

    def _check(self, query: str):
        for substring, error in self._failures.items():
            if substring in query:
                raise error

    @staticmethod
    def staged_table(query: str) -> str:
        """Table name behind a __stage_<name>__<id> reference in `query`."""
        stage = next(word for word in query.split() if word.startswith("__stage_"))
        return stage[len("__stage_"):].rsplit("__", 1)[0]

    async def execute(self, query: str, params=None):
        self.executed.append(query)
        if query.startswith("CREATE OR REPLACE TEMP TABLE"):
            self._check(query)
        elif query.startswith("CREATE TABLE"):
            name = query.split()[2].strip('"')
            self.existing.add(name)

    async def extract(self, query: str, params=None, **kwargs) -> list[dict]:
        self.executed.append(query)
        if query.startswith("SELECT 1 FROM"):
            name = query.split()[3].strip('"')
            if name not in self.existing:
                raise RuntimeError(f"Catalog Error: Table with name {name} does not exist!")
            return []
        if query.startswith("DESCRIBE __stage_"):
            return [{"column_name": c} for c in self._columns.get(self.staged_table(query), [])]
        if query.startswith("SELECT count(*) AS n FROM __stage_"):
            return [{"n": len(self._rows.get(self.staged_table(query), []))}]
        return []

    def statements(self, prefix: str) -> list[str]:
        return [q for q in self.executed if q.startswith(prefix)]


class TransactionalEngine(MockSQLEngine):
    """Yields on every statement and rejects interleaved transactions on its one connection."""

    def __init__(self):
        super().__init__()
        self.in_transaction = False

    async def execute(self, query, params=None):
        await asyncio.sleep(0)
        if query == "BEGIN TRANSACTION":
            if self.in_transaction:
                raise RuntimeError("TransactionContext Error: cannot start a transaction within a transaction")
            self.in_transaction = True
        elif query in ("COMMIT", "ROLLBACK"):
            if not self.in_transaction:
                raise RuntimeError(f"TransactionContext Error: cannot {query.lower()} - no transaction is active")
            self.in_transaction = False
        await super().execute(query, params)

    async def extract(self, query, params=None, **kwargs):
        await asyncio.sleep(0)
        return await super().extract(query, params, **kwargs)


# ─── Sample workflows ───

ORDERS_SQL = "SELECT id, amount, created_at FROM orders"
RAW_SQL = "SELECT * FROM events"
DAILY_AGG_SQL = (
    "SELECT date_trunc('day', ts) AS day, count(*) AS n, max(ts) AS ts "
    "FROM raw GROUP BY 1"
)
SUMMARY_SQL = "SELECT sum(n) AS total FROM daily_agg"
RAW_COPY_SQL = "SELECT * FROM raw"


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def window() -> ExecutionWindow:
    return ExecutionWindow(start=utc(2024, 1, 1, 0), end=utc(2024, 1, 1, 1))


@pytest.fixture
def chain_workflow() -> Workflow:
    """raw → daily_agg → summary, raw → raw_copy"""
    return Workflow(
        name="analytics",
        window=WindowConfig(size="1h"),
        tables=[
            Table(name="summary", definition=SUMMARY_SQL),
            Table(name="daily_agg", definition=DAILY_AGG_SQL, upsert_constraints=("day",)),
            Table(name="raw", definition=RAW_SQL, time_column="ts"),
            Table(name="raw_copy", definition=RAW_COPY_SQL),
        ],
    )


@pytest.fixture
def engine() -> MockSQLEngine:
    engine = MockSQLEngine()
    # Staged schema of the one keyed table in chain_workflow
    engine.set_rows("daily_agg", [], columns=["day", "n", "ts"])
    return engine


@pytest_asyncio.fixture
async def duckdb_engine():
    """In-memory DuckDB with an `events` source table."""
    connector = DuckDBConnector()
    await connector.connect()
    await connector.execute("CREATE TABLE events (id INTEGER, kind VARCHAR, ts TIMESTAMP)")
    yield connector
    await connector.disconnect()
