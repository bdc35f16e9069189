"""YAML export/import for workflows.

Documents use a fixed key order and write multi-line SQL as literal blocks so
that two versions of a workflow diff cleanly. Import re-runs graph building
and validation, so a cyclic document fails with the same CyclicDependency as
a local edit.
"""

from __future__ import annotations
import logging
from datetime import timedelta
from typing import Any, Iterable

import yaml
from pydantic import ValidationError

from sluice.errors import WorkflowValidationError
from sluice.models.table import Table
from sluice.models.window import DEFAULT_WINDOW_SIZE, WindowConfig, format_duration, parse_duration
from sluice.models.workflow import Workflow
from sluice.serialization.schemas import (
    DOCUMENT_VERSION,
    ExportDocument,
    TableDocument,
    WorkflowDocument,
)

logger = logging.getLogger("sluice.serialization")


class _Dumper(yaml.SafeDumper):
    pass


def _represent_str(dumper: yaml.SafeDumper, data: str) -> yaml.Node:
    if "\n" in data:
        return dumper.represent_scalar("tag:yaml.org,2002:str", data, style="|")
    return dumper.represent_str(data)


_Dumper.add_representer(str, _represent_str)


# ─── Export ───

def workflow_to_dict(workflow: Workflow) -> dict[str, Any]:
    graph = workflow.graph()
    return {
        "id": workflow.id,
        "name": workflow.name,
        "window": {
            "type": workflow.window.type,
            "size": format_duration(workflow.window.size),
        },
        "tables": [
            {
                "id": table.id,
                "name": table.name,
                "function_type": table.function_type.value,
                "definition": table.definition,
                "time_column": table.time_column,
                "upsert_constraints": list(table.upsert_constraints),
                "depends_on": graph.direct_upstream(table.name),
            }
            for table in workflow.tables
        ],
    }


def export_workflows(workflows: Iterable[Workflow]) -> str:
    document = {
        "version": DOCUMENT_VERSION,
        "workflows": [workflow_to_dict(w) for w in workflows],
    }
    return yaml.dump(
        document,
        Dumper=_Dumper,
        default_flow_style=False,
        sort_keys=False,
        allow_unicode=True,
    )


def export_workflow(workflow: Workflow) -> str:
    return export_workflows([workflow])


# ─── Import ───

def _load_document(text: str) -> ExportDocument:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise WorkflowValidationError(f"Invalid YAML: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise WorkflowValidationError("Workflow document must be a mapping")

    # A bare workflow mapping is accepted as a one-workflow document
    if "workflows" not in data and "name" in data:
        data = {"version": DOCUMENT_VERSION, "workflows": [data]}

    try:
        return ExportDocument.model_validate(data)
    except ValidationError as e:
        raise WorkflowValidationError(f"Invalid workflow document: {e}") from e


def _table_from_document(doc: TableDocument) -> Table:
    fields: dict[str, Any] = {
        "name": doc.name,
        "definition": doc.definition,
        "time_column": doc.time_column,
        "upsert_constraints": tuple(doc.upsert_constraints),
        "function_type": doc.function_type,
    }
    if doc.id is not None:
        fields["id"] = doc.id
    return Table(**fields)


def workflow_from_document(doc: WorkflowDocument, default_window_size: timedelta = DEFAULT_WINDOW_SIZE) -> Workflow:
    try:
        size = parse_duration(doc.window.size) if doc.window.size is not None else default_window_size
        window = WindowConfig(type=doc.window.type, size=size)
        tables = [_table_from_document(t) for t in doc.tables]
    except ValueError as e:
        raise WorkflowValidationError(f"Workflow '{doc.name}': {e}") from e

    fields: dict[str, Any] = {"name": doc.name, "tables": tables, "window": window}
    if doc.id is not None:
        fields["id"] = doc.id
    # Building the workflow validates its graph (duplicates, cycles)
    workflow = Workflow(**fields)

    graph = workflow.graph()
    for table_doc in doc.tables:
        if table_doc.depends_on is None:
            continue
        derived = graph.direct_upstream(table_doc.name)
        if sorted(table_doc.depends_on, key=str.casefold) != sorted(derived, key=str.casefold):
            logger.warning(
                f"[{doc.name}] {table_doc.name}: declared depends_on {table_doc.depends_on} "
                f"differs from derived {derived}; using derived"
            )
    return workflow


def import_workflows(text: str, default_window_size: timedelta = DEFAULT_WINDOW_SIZE) -> list[Workflow]:
    document = _load_document(text)
    seen: set[str] = set()
    workflows = []
    for doc in document.workflows:
        if doc.name in seen:
            raise WorkflowValidationError(f"Duplicate workflow name: '{doc.name}'")
        seen.add(doc.name)
        workflows.append(workflow_from_document(doc, default_window_size))
    return workflows


def import_workflow(text: str, default_window_size: timedelta = DEFAULT_WINDOW_SIZE) -> Workflow:
    workflows = import_workflows(text, default_window_size)
    if len(workflows) != 1:
        raise WorkflowValidationError(f"Expected exactly one workflow, found {len(workflows)}")
    return workflows[0]
