"""Table executor — runs one table's transformation for one window.

The transformation runs in the external SQL engine. Its rows are staged in a
temp table and then reconciled into the table's storage:

- upsert constraints set: staged rows are reduced to one per key, then rows
  whose key matches a staged row are replaced (delete + insert), so neither a
  re-run nor repeated keys in one window duplicate a key
- no constraints: staged rows are appended
- first run: the table is created from the staged rows

Engine failures and timeouts come back as a failed TableRunResult; they are
never raised past this boundary.
"""

from __future__ import annotations
import asyncio
import logging
import re
from datetime import datetime, timezone

from sluice.connectors.base import SQLEngine
from sluice.errors import ExecutionError
from sluice.execution.results import TableRunResult, TableStatus
from sluice.execution.sql import quote_identifier, quote_part, render_window_query
from sluice.models.table import FunctionType, Table
from sluice.models.window import ExecutionWindow

logger = logging.getLogger("sluice.executor")


class TableExecutor:
    """Executes tables against a SQL engine and reconciles their output."""

    def __init__(
        self,
        engine: SQLEngine,
        timeout_seconds: float | None = None,
        dialect: str = "duckdb",
    ):
        """
        Args:
            engine: Connector implementing execute() and extract()
            timeout_seconds: Per-table limit; None or 0 disables it
            dialect: SQL dialect used to inspect definitions
        """
        self.engine = engine
        self.timeout_seconds = timeout_seconds or None
        self.dialect = dialect
        self._transaction_lock = asyncio.Lock()

    async def execute(self, table: Table, window: ExecutionWindow) -> TableRunResult:
        """Execute `table` for `window`. Returns a result, never raises engine errors."""
        result = TableRunResult(table=table.name, window=window, status=TableStatus.RUNNING)
        result.started_at = datetime.now(tz=timezone.utc)

        try:
            await asyncio.wait_for(self._run(table, window, result), timeout=self.timeout_seconds)
            result.status = TableStatus.SUCCESS
        except asyncio.TimeoutError:
            result.status = TableStatus.TIMEOUT
            result.error = str(ExecutionError(table.name, f"timed out after {self.timeout_seconds}s"))
            logger.error(f"Table {table.name} timed out for window {window}")
        except ExecutionError as e:
            result.status = TableStatus.FAILED
            result.error = str(e)
            logger.error(f"Table {table.name} failed for window {window}: {e.message}")
        except Exception as e:
            result.status = TableStatus.FAILED
            result.error = str(ExecutionError(table.name, f"{type(e).__name__}: {e}"))
            logger.error(f"Table {table.name} failed for window {window}: {type(e).__name__}: {e}")
        finally:
            result.finished_at = datetime.now(tz=timezone.utc)
            result.duration_ms = int(
                (result.finished_at - result.started_at).total_seconds() * 1000
            )

        return result

    async def _run(self, table: Table, window: ExecutionWindow, result: TableRunResult) -> None:
        if table.function_type != FunctionType.SQL:
            raise ExecutionError(
                table.name, f"function type '{table.function_type.value}' is not executable"
            )

        query = render_window_query(table, window, dialect=self.dialect)
        result.window_injected = query.injected
        target = quote_identifier(table.name)
        staging = staging_name(table)

        # One transaction at a time per connection, even when siblings run concurrently
        async with self._transaction_lock:
            # Checked outside the transaction: a failed lookup would abort it
            exists = await self._table_exists(target)

            await self.engine.execute("BEGIN TRANSACTION")
            try:
                await self.engine.execute(f"CREATE OR REPLACE TEMP TABLE {staging} AS {query.sql}")
                columns = await self._columns(staging)

                if table.upsert_constraints:
                    keys = _resolve_keys(table, columns)
                    await self._dedupe(staging, keys)

                count = await self._count(staging)
                if not exists:
                    await self.engine.execute(f"CREATE TABLE {target} AS SELECT * FROM {staging}")
                    result.strategy = "create"
                elif table.upsert_constraints:
                    if count:
                        await self._upsert(target, staging, columns, keys)
                    result.strategy = "upsert"
                else:
                    if count:
                        await self._insert(target, staging, columns)
                    result.strategy = "append"

                result.rows_written = count
                await self.engine.execute(f"DROP TABLE IF EXISTS {staging}")
                await self.engine.execute("COMMIT")
            except BaseException:
                await self._rollback(table.name)
                raise

        logger.info(
            f"Table {table.name} window {window}: {result.rows_written} rows ({result.strategy})"
        )

    async def _columns(self, staging: str) -> list[str]:
        return [row["column_name"] for row in await self.engine.extract(f"DESCRIBE {staging}")]

    async def _count(self, staging: str) -> int:
        [row] = await self.engine.extract(f"SELECT count(*) AS n FROM {staging}")
        return int(row["n"])

    async def _dedupe(self, staging: str, keys: list[str]) -> None:
        """Keep the first staged row of each key, so one window writes each key once."""
        group = ", ".join(quote_part(k) for k in keys)
        await self.engine.execute(
            f"DELETE FROM {staging} WHERE rowid NOT IN "
            f"(SELECT min(rowid) FROM {staging} GROUP BY {group})"
        )

    async def _upsert(self, target: str, staging: str, columns: list[str], keys: list[str]) -> None:
        key_match = " AND ".join(
            f"{target}.{quote_part(k)} IS NOT DISTINCT FROM s.{quote_part(k)}" for k in keys
        )
        await self.engine.execute(
            f"DELETE FROM {target} WHERE EXISTS (SELECT 1 FROM {staging} s WHERE {key_match})"
        )
        await self._insert(target, staging, columns)

    async def _insert(self, target: str, staging: str, columns: list[str]) -> None:
        cols = ", ".join(quote_part(c) for c in columns)
        await self.engine.execute(f"INSERT INTO {target} ({cols}) SELECT {cols} FROM {staging}")

    async def _table_exists(self, target: str) -> bool:
        try:
            await self.engine.extract(f"SELECT 1 FROM {target} LIMIT 0")
            return True
        except Exception:
            return False

    async def _rollback(self, table_name: str) -> None:
        try:
            await self.engine.execute("ROLLBACK")
        except Exception as e:
            # The original failure is what the caller needs to see
            logger.warning(f"Rollback after failure of {table_name} also failed: {e}")


def _resolve_keys(table: Table, columns: list[str]) -> list[str]:
    """Map upsert constraints onto output columns; identifiers compare case-insensitively."""
    by_key = {c.casefold(): c for c in columns}
    missing = [k for k in table.upsert_constraints if k.casefold() not in by_key]
    if missing:
        raise ExecutionError(table.name, f"upsert constraint columns missing from output: {missing}")
    return [by_key[k.casefold()] for k in table.upsert_constraints]


def staging_name(table: Table) -> str:
    """Temp table for one table's staged rows; the id keeps similar names apart."""
    return "__stage_" + re.sub(r"\W", "_", table.name) + "__" + re.sub(r"\W", "_", table.id)
