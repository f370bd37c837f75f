"""Catalogue of built-in workflow definitions."""

from __future__ import annotations

from typing import Dict

from ..definition import WorkflowDefinition
from ..errors import ConfigurationError
from . import dispatcher, pm_copilot, task_execution

_BUILDERS = {
    pm_copilot.WORKFLOW_TYPE: pm_copilot.build_definition,
    dispatcher.WORKFLOW_TYPE: dispatcher.build_definition,
    task_execution.WORKFLOW_TYPE: task_execution.build_definition,
}


def default_definitions() -> Dict[str, WorkflowDefinition]:
    """Build every catalogued definition, keyed by workflow type."""
    return {name: build() for name, build in _BUILDERS.items()}


def get_definition(workflow_type: str) -> WorkflowDefinition:
    build = _BUILDERS.get(workflow_type)
    if build is None:
        raise ConfigurationError(f"Unknown workflow type: {workflow_type}")
    return build()


__all__ = ["default_definitions", "get_definition"]
