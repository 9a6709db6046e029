"""
expense_config -- settings and workflow definitions.

``get_settings()`` is the single runtime entry point for engine settings.
The kernel never imports from this package; the orchestrator receives
``EngineSettings`` from its caller.
"""

from expense_config.loader import (
    WorkflowDefinition,
    compute_checksum,
    load_workflow_definition,
    load_workflow_file,
)
from expense_config.settings import EngineSettings, get_settings

__all__ = [
    "EngineSettings",
    "WorkflowDefinition",
    "compute_checksum",
    "get_settings",
    "load_workflow_definition",
    "load_workflow_file",
]
