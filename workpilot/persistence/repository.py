"""Repository abstraction for workflow state persistence."""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol

from ..contracts import WorkflowStatus
from .models import WorkflowState


class WorkflowStateRepository(Protocol):
    """Protocol for workflow state persistence backends."""

    async def create(self, state: WorkflowState) -> WorkflowState:
        """Persist a new state and return the stored copy."""

    async def get(self, state_id: str) -> WorkflowState | None:
        """Retrieve the workflow state by id."""

    async def save(self, state: WorkflowState) -> WorkflowState:
        """Compare-and-swap on ``state.version``.

        Returns the stored copy with the version incremented; raises
        ``ConcurrencyConflictError`` when the stored version differs and
        ``WorkflowNotFoundError`` when the state was never created.
        """

    async def list_workflows(
        self, status: Optional[WorkflowStatus] = None, team_id: Optional[str] = None
    ) -> list[WorkflowState]:
        """Return persisted workflows, oldest first."""

    async def list_paused(
        self,
        older_than: datetime,
        pause_reason: Optional[str] = None,
        team_id: Optional[str] = None,
    ) -> list[WorkflowState]:
        """Return paused workflows whose ``paused_at`` is before ``older_than``."""
