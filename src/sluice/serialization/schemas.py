"""Pydantic schemas for exported workflow documents."""

from typing import Literal

from pydantic import BaseModel, Field

from sluice.models.table import FunctionType

DOCUMENT_VERSION = 1


class TableDocument(BaseModel):
    id: str | None = None
    name: str = Field(min_length=1)
    function_type: FunctionType = FunctionType.SQL
    definition: str
    time_column: str | None = None
    upsert_constraints: list[str] = Field(default_factory=list)
    depends_on: list[str] | None = None  # informational, recomputed on import

    model_config = {"extra": "forbid"}


class WindowDocument(BaseModel):
    type: Literal["tumbling"] = "tumbling"
    size: str | int | float | None = None

    model_config = {"extra": "forbid"}


class WorkflowDocument(BaseModel):
    id: str | None = None
    name: str = Field(min_length=1)
    window: WindowDocument = Field(default_factory=WindowDocument)
    tables: list[TableDocument] = Field(default_factory=list)

    model_config = {"extra": "forbid"}


class ExportDocument(BaseModel):
    version: Literal[1] = DOCUMENT_VERSION
    workflows: list[WorkflowDocument] = Field(default_factory=list)

    model_config = {"extra": "forbid"}
