"""Workflow export/import (YAML)."""

from sluice.serialization.codec import (
    export_workflow,
    export_workflows,
    import_workflow,
    import_workflows,
)

__all__ = ["export_workflow", "export_workflows", "import_workflow", "import_workflows"]
