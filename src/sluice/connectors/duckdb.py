"""DuckDB connector — local or in-memory engine for table materialization."""

from __future__ import annotations
import logging
from typing import Any

import duckdb

from sluice.connectors.base import Connector

logger = logging.getLogger("sluice.connectors.duckdb")


class DuckDBConnector(Connector):
    """Run workflow SQL against a DuckDB database file (or `:memory:`)."""

    dialect = "duckdb"

    def __init__(self, database: str = ":memory:", read_only: bool = False):
        self.database = database
        self.read_only = read_only
        self._conn: duckdb.DuckDBPyConnection | None = None

    @property
    def connected(self) -> bool:
        return self._conn is not None

    async def connect(self) -> None:
        if self._conn is None:
            self._conn = duckdb.connect(self.database, read_only=self.read_only)
            logger.debug(f"Connected to DuckDB: {self.database}")

    async def disconnect(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    async def execute(self, query: str, params: Any = None) -> None:
        if not self._conn:
            await self.connect()
        self._conn.execute(query, params or [])

    async def extract(self, query: str, params: Any = None, **kwargs) -> list[dict]:
        if not self._conn:
            await self.connect()
        result = self._conn.execute(query, params or [])
        if result.description is None:
            return []
        columns = [desc[0] for desc in result.description]
        return [dict(zip(columns, row)) for row in result.fetchall()]


def duckdb_local(database: str = ":memory:") -> DuckDBConnector:
    """Create a local DuckDB connector."""
    return DuckDBConnector(database=database)
