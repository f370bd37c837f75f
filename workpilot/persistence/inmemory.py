"""In-memory implementation of the workflow state repository."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from ..contracts import WorkflowStatus, utcnow
from ..errors import ConcurrencyConflictError, WorkflowNotFoundError
from .models import WorkflowState
from .repository import WorkflowStateRepository


class InMemoryWorkflowStateRepository(WorkflowStateRepository):
    """Store workflow states in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Copies go in and out so callers never
    share an instance with the store.
    """

    def __init__(self) -> None:
        self._states: Dict[str, WorkflowState] = {}

    async def create(self, state: WorkflowState) -> WorkflowState:
        if state.id in self._states:
            raise ValueError(f"Workflow state {state.id} already exists")
        stored = state.model_copy(deep=True, update={"version": 1, "updated_at": utcnow()})
        self._states[state.id] = stored
        return stored.model_copy(deep=True)

    async def get(self, state_id: str) -> WorkflowState | None:
        state = self._states.get(state_id)
        return state.model_copy(deep=True) if state is not None else None

    async def save(self, state: WorkflowState) -> WorkflowState:
        current = self._states.get(state.id)
        if current is None:
            raise WorkflowNotFoundError(f"Workflow state {state.id} not found")
        if current.version != state.version:
            raise ConcurrencyConflictError(state.id, state.version)
        stored = state.model_copy(
            deep=True, update={"version": state.version + 1, "updated_at": utcnow()}
        )
        self._states[state.id] = stored
        return stored.model_copy(deep=True)

    async def list_workflows(
        self, status: Optional[WorkflowStatus] = None, team_id: Optional[str] = None
    ) -> List[WorkflowState]:
        return [
            s.model_copy(deep=True)
            for s in sorted(self._states.values(), key=lambda s: s.created_at)
            if (status is None or s.status == status)
            and (team_id is None or s.team_id == team_id)
        ]

    async def list_paused(
        self,
        older_than: datetime,
        pause_reason: Optional[str] = None,
        team_id: Optional[str] = None,
    ) -> List[WorkflowState]:
        paused = await self.list_workflows(WorkflowStatus.PAUSED, team_id)
        return [
            s
            for s in paused
            if s.paused_at is not None
            and s.paused_at < older_than
            and (pause_reason is None or s.state_data.pause_reason == pause_reason)
        ]
