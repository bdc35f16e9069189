"""Connectors — the external SQL engine behind table execution."""

from sluice.connectors.base import Connector, SQLEngine


# Lazy import so duckdb only loads when a connector is actually built
def duckdb_local(*args, **kwargs):
    from sluice.connectors.duckdb import duckdb_local as _duckdb_local
    return _duckdb_local(*args, **kwargs)


__all__ = ["Connector", "SQLEngine", "duckdb_local"]
