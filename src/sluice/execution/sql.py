"""Window injection — bind a table's SQL to one execution window.

Rules, applied in order:

1. `$window_start` / `$window_end` in the definition are replaced with UTC
   timestamp literals. A definition that uses either placeholder owns its own
   window filtering and is never wrapped.
2. A table without a `time_column` is not filtered (full re-evaluation).
3. A definition whose outermost WHERE already bounds the time column with a
   range comparison is not wrapped either.
4. Otherwise the definition is wrapped once:
   SELECT * FROM (<definition>) AS __window
   WHERE <time_column> >= <start> AND <time_column> < <end>
"""

from __future__ import annotations
import logging
import re
from dataclasses import dataclass
from datetime import datetime

import sqlglot
from sqlglot import exp
from sqlglot.errors import SqlglotError

from sluice.models.table import Table
from sluice.models.window import ExecutionWindow, ensure_utc

logger = logging.getLogger("sluice.execution.sql")

WINDOW_ALIAS = "__window"
_PLACEHOLDER_RE = re.compile(r"\$window_(start|end)\b", re.IGNORECASE)
_RANGE_PREDICATES = (exp.GT, exp.GTE, exp.LT, exp.LTE, exp.Between)


@dataclass(frozen=True)
class WindowQuery:
    sql: str
    injected: bool  # True when the window filter was added by Sluice


def quote_part(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def quote_identifier(name: str) -> str:
    """Quote a possibly schema-qualified name: analytics.orders -> "analytics"."orders"."""
    return ".".join(quote_part(p) for p in name.split("."))


def timestamp_literal(moment: datetime) -> str:
    """UTC timestamp literal without zone: TIMESTAMP '2024-01-01 00:00:00'."""
    naive = ensure_utc(moment).replace(tzinfo=None)
    return f"TIMESTAMP '{naive.isoformat(sep=' ')}'"


def uses_window_placeholders(sql: str) -> bool:
    return _PLACEHOLDER_RE.search(sql) is not None


def substitute_placeholders(sql: str, window: ExecutionWindow) -> str:
    bounds = {"start": timestamp_literal(window.start), "end": timestamp_literal(window.end)}
    return _PLACEHOLDER_RE.sub(lambda m: bounds[m.group(1).lower()], sql)


def restricts_column(sql: str, column: str, dialect: str = "duckdb") -> bool:
    """True when the outermost WHERE bounds `column` with a range comparison.

    Only `>`, `>=`, `<`, `<=` and BETWEEN count. Null checks, equality and
    predicates inside subqueries leave the window filter to Sluice.
    """
    try:
        statements = [s for s in sqlglot.parse(sql, read=dialect) if s is not None]
    except SqlglotError as e:
        logger.debug(f"Could not parse definition, assuming no time filter: {e}")
        return False

    target = column.casefold()
    for statement in statements:
        if not isinstance(statement, exp.Select):
            continue
        where = statement.args.get("where")
        if where is None:
            continue
        for predicate in where.find_all(*_RANGE_PREDICATES):
            if predicate.find_ancestor(exp.Select) is not statement:
                continue
            for col in predicate.find_all(exp.Column):
                if col.name.casefold() == target and col.find_ancestor(exp.Select) is statement:
                    return True
    return False


def strip_terminator(sql: str) -> str:
    return sql.strip().rstrip(";").rstrip()


def render_window_query(table: Table, window: ExecutionWindow, dialect: str = "duckdb") -> WindowQuery:
    """Produce the SQL sent to the engine for `table` over `window`."""
    definition = strip_terminator(table.definition)

    if uses_window_placeholders(definition):
        return WindowQuery(substitute_placeholders(definition, window), injected=False)

    if not table.time_column or restricts_column(definition, table.time_column, dialect):
        return WindowQuery(definition, injected=False)

    col = quote_part(table.time_column)
    sql = (
        f"SELECT * FROM (\n{definition}\n) AS {WINDOW_ALIAS}\n"
        f"WHERE {WINDOW_ALIAS}.{col} >= {timestamp_literal(window.start)} "
        f"AND {WINDOW_ALIAS}.{col} < {timestamp_literal(window.end)}"
    )
    return WindowQuery(sql, injected=True)
