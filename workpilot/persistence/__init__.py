"""Persistence layer for workpilot workflow states."""

from __future__ import annotations

import os
from typing import Optional

from ..config import WorkpilotConfig, load_config
from .inmemory import InMemoryWorkflowStateRepository
from .models import WorkflowState, WorkflowStateData
from .postgres import PostgresWorkflowStateRepository
from .repository import WorkflowStateRepository
from .sqlite import SQLiteWorkflowStateRepository

_repository_instance: WorkflowStateRepository | None = None


def get_repository(
    database_url: Optional[str] = None, config: Optional[WorkpilotConfig] = None
) -> WorkflowStateRepository:
    """Factory function to obtain a workflow state repository.

    The backend is selected from ``database_url``, given explicitly, via
    ``WORKPILOT_DATABASE_URL`` / ``DATABASE_URL``, or from the loaded
    configuration. Without a database an in-memory repository is returned.
    """

    global _repository_instance
    if _repository_instance is not None and database_url is None and config is None:
        return _repository_instance

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("WORKPILOT_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or config.database_url
    )

    if not database_url:
        _repository_instance = InMemoryWorkflowStateRepository()
        return _repository_instance

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        _repository_instance = SQLiteWorkflowStateRepository(path)
    elif database_url.startswith("postgres://") or database_url.startswith(
        "postgresql://"
    ):
        _repository_instance = PostgresWorkflowStateRepository(database_url)
    else:
        raise ValueError(f"Unsupported database backend: {database_url}")

    return _repository_instance


def reset_repository() -> None:
    """Forget the cached repository (tests, CLI reconfiguration)."""
    global _repository_instance
    _repository_instance = None


__all__ = [
    "WorkflowState",
    "WorkflowStateData",
    "WorkflowStateRepository",
    "InMemoryWorkflowStateRepository",
    "SQLiteWorkflowStateRepository",
    "PostgresWorkflowStateRepository",
    "get_repository",
    "reset_repository",
]
