"""Base connector interface for the external SQL engine."""

from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Any, Protocol


class SQLEngine(Protocol):
    """Anything that can run SQL and return rows."""
    async def execute(self, query: str, params: Any = None) -> Any: ...
    async def extract(self, query: str, params: Any = None, **kwargs) -> list[dict]: ...


class Connector(ABC):
    """Base class for Sluice engine connectors."""

    dialect: str = "duckdb"

    @abstractmethod
    async def connect(self) -> None:
        """Establish connection."""
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        """Close connection."""
        ...

    @abstractmethod
    async def execute(self, query: str, params: Any = None) -> None:
        """Run a statement that returns no rows."""
        ...

    @abstractmethod
    async def extract(self, query: str, params: Any = None, **kwargs) -> list[dict]:
        """Run a query and return rows as dicts."""
        ...

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, *args):
        await self.disconnect()
