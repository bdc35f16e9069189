"""Table definitions — the unit of materialization."""

from __future__ import annotations
import dataclasses
import enum
import uuid
from dataclasses import dataclass, field


class FunctionType(str, enum.Enum):
    SQL = "sql"
    SCRIPT = "script"  # reserved, not executable


@dataclass(frozen=True)
class Table:
    """A named, SQL-defined derived dataset inside a workflow.

    Instances are immutable snapshots; edits produce a new Table via `replace`.
    """
    name: str
    definition: str
    time_column: str | None = None
    upsert_constraints: tuple[str, ...] = ()
    function_type: FunctionType = FunctionType.SQL
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self):
        if not self.name or not self.name.strip():
            raise ValueError("Table name must not be empty")
        object.__setattr__(self, "function_type", FunctionType(self.function_type))
        object.__setattr__(self, "upsert_constraints", tuple(self.upsert_constraints or ()))
        if self.time_column == "":
            object.__setattr__(self, "time_column", None)

    @property
    def key(self) -> str:
        """Case-insensitive identity used for reference matching."""
        return self.name.casefold()

    @property
    def is_windowed(self) -> bool:
        return self.time_column is not None

    @property
    def is_append_only(self) -> bool:
        return not self.upsert_constraints

    def replace(self, **changes) -> "Table":
        return dataclasses.replace(self, **changes)
