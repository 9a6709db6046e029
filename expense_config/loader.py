"""
Workflow definition loader (``expense_config.loader``).

Loads an approval workflow from YAML into the typed ``WorkflowConfig``
union.  The file holds either the configuration mapping itself or a
``workflow:`` key wrapping it, optionally beside ``name`` and
``priority``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid workflow  -> ``WorkflowConfigurationError``.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from expense_kernel.domain.workflow import (
    WorkflowConfig,
    parse_workflow_config,
    workflow_config_to_dict,
)
from expense_kernel.utils.hashing import hash_payload


@dataclass(frozen=True)
class WorkflowDefinition:
    """A named workflow read from a file."""

    name: str
    priority: int
    config: WorkflowConfig
    checksum: str


def load_yaml_file(path: Path) -> Any:
    with open(path) as f:
        return yaml.safe_load(f)


def load_workflow_file(path: str | Path) -> WorkflowConfig:
    """Parse a workflow YAML file into a typed configuration."""
    return load_workflow_definition(path).config


def load_workflow_definition(path: str | Path) -> WorkflowDefinition:
    """Parse a workflow YAML file, keeping its name, priority and checksum.

    The checksum covers the normalized configuration, so reformatting the
    YAML does not change it.
    """
    path = Path(path)
    data = load_yaml_file(path)

    name = path.stem
    priority = 0
    raw = data
    if isinstance(data, dict) and "workflow" in data:
        raw = data["workflow"]
        name = str(data.get("name", name))
        priority = int(data.get("priority", 0))

    config = parse_workflow_config(raw)
    return WorkflowDefinition(
        name=name,
        priority=priority,
        config=config,
        checksum=compute_checksum(config),
    )


def compute_checksum(config: WorkflowConfig) -> str:
    """Deterministic identity of a parsed configuration."""
    return hash_payload(workflow_config_to_dict(config))
