"""Data models for persisted workflow state."""

from __future__ import annotations

import json
import uuid
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, Field

from ..context import ChainContext
from ..contracts import ApprovalPayload, ExecutionMode, WorkflowStatus, utcnow
from ..errors import InvalidTransitionError

# Keys owned by ``WorkflowStateData``; anything else at the top level of the
# stored map is a business result key.
_RESERVED_KEYS = frozenset(
    {
        "input",
        "mode",
        "chain_context",
        "outputs",
        "approval_data",
        "pause_reason",
        "resume_data",
        "approval_request_id",
        "rejected",
        "error",
        "failed_node",
        "final_result",
    }
)


class WorkflowStateData(BaseModel):
    """Typed view of a run's ``state_data``.

    ``results`` holds business result keys such as
    ``deliverable_alternatives``; they are stored at the top level of the
    JSON map rather than nested.
    """

    input: Dict[str, Any] = Field(default_factory=dict)
    mode: ExecutionMode = ExecutionMode.STAGED
    chain_context: ChainContext = Field(default_factory=ChainContext)
    outputs: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    results: Dict[str, Any] = Field(default_factory=dict)
    approval_data: Optional[Dict[str, Any]] = None
    pause_reason: Optional[str] = None
    resume_data: Optional[Dict[str, Any]] = None
    approval_request_id: Optional[str] = None
    rejected: bool = False
    error: Optional[str] = None
    failed_node: Optional[str] = None
    final_result: Optional[Dict[str, Any]] = None

    def to_storage(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {k: v for k, v in self.results.items() if k not in _RESERVED_KEYS}
        data.update(
            {
                "input": self.input,
                "mode": self.mode.value,
                "chain_context": self.chain_context.to_dict(),
                "outputs": self.outputs,
                "rejected": self.rejected,
            }
        )
        for key in (
            "approval_data",
            "pause_reason",
            "resume_data",
            "approval_request_id",
            "error",
            "failed_node",
            "final_result",
        ):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        # Normalises int step keys and datetimes to their JSON form.
        return json.loads(json.dumps(data, default=str))

    @classmethod
    def from_storage(cls, data: Optional[Mapping[str, Any]]) -> "WorkflowStateData":
        data = dict(data or {})
        return cls(
            input=data.get("input") or {},
            mode=data.get("mode") or ExecutionMode.STAGED,
            chain_context=ChainContext.from_dict(data.get("chain_context")),
            outputs=data.get("outputs") or {},
            results={k: v for k, v in data.items() if k not in _RESERVED_KEYS},
            approval_data=data.get("approval_data"),
            pause_reason=data.get("pause_reason"),
            resume_data=data.get("resume_data"),
            approval_request_id=data.get("approval_request_id"),
            rejected=bool(data.get("rejected", False)),
            error=data.get("error"),
            failed_node=data.get("failed_node"),
            final_result=data.get("final_result"),
        )


class WorkflowState(BaseModel):
    """Persisted record of one workflow run.

    Transition helpers return new instances and refuse to leave a terminal
    status. ``version`` is managed by the repository on save.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    team_id: str
    workflow_type: str
    agent_id: Optional[str] = None
    current_node: str
    status: WorkflowStatus = WorkflowStatus.RUNNING
    state_data: WorkflowStateData = Field(default_factory=WorkflowStateData)
    paused_at: Optional[datetime] = None
    approval_required: bool = False
    version: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_active(self) -> bool:
        return not self.status.is_terminal

    def _ensure_active(self, action: str) -> None:
        if self.status.is_terminal:
            raise InvalidTransitionError(
                f"Cannot {action} workflow {self.id}: status is {self.status.value}"
            )

    def _update_data(self, **changes: Any) -> WorkflowStateData:
        return self.state_data.model_copy(update=changes)

    def advanced(self, node_id: str, **data_changes: Any) -> "WorkflowState":
        self._ensure_active("advance")
        return self.model_copy(
            update={"current_node": node_id, "state_data": self._update_data(**data_changes)}
        )

    def paused(self, reason: str, **data_changes: Any) -> "WorkflowState":
        self._ensure_active("pause")
        return self.model_copy(
            update={
                "status": WorkflowStatus.PAUSED,
                "paused_at": utcnow(),
                "approval_required": True,
                "state_data": self._update_data(pause_reason=reason, **data_changes),
            }
        )

    def resumed(self, payload: ApprovalPayload, node_id: str, **data_changes: Any) -> "WorkflowState":
        if self.status != WorkflowStatus.PAUSED:
            raise InvalidTransitionError(
                f"Cannot resume workflow {self.id}: status is {self.status.value}, expected paused"
            )
        return self.model_copy(
            update={
                "status": WorkflowStatus.RUNNING,
                "current_node": node_id,
                "paused_at": None,
                "approval_required": False,
                "state_data": self._update_data(
                    approval_data=payload.model_dump(mode="json"), **data_changes
                ),
            }
        )

    def completed(self, final_result: Optional[Dict[str, Any]] = None) -> "WorkflowState":
        self._ensure_active("complete")
        return self.model_copy(
            update={
                "status": WorkflowStatus.COMPLETED,
                "approval_required": False,
                "state_data": self._update_data(final_result=final_result or {}),
            }
        )

    def failed(self, error: str, node_id: Optional[str] = None) -> "WorkflowState":
        self._ensure_active("fail")
        return self.model_copy(
            update={
                "status": WorkflowStatus.FAILED,
                "approval_required": False,
                "state_data": self._update_data(error=error, failed_node=node_id),
            }
        )

    def to_record(self) -> Dict[str, Any]:
        """Flat column map used by the SQL backends."""
        return {
            "id": self.id,
            "team_id": self.team_id,
            "workflow_type": self.workflow_type,
            "agent_id": self.agent_id,
            "current_node": self.current_node,
            "status": self.status.value,
            "state_data": self.state_data.to_storage(),
            "paused_at": self.paused_at,
            "approval_required": self.approval_required,
            "version": self.version,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "WorkflowState":
        state_data = record["state_data"]
        if isinstance(state_data, str):
            state_data = json.loads(state_data)
        return cls(
            id=record["id"],
            team_id=record["team_id"],
            workflow_type=record["workflow_type"],
            agent_id=record["agent_id"],
            current_node=record["current_node"],
            status=record["status"],
            state_data=WorkflowStateData.from_storage(state_data),
            paused_at=record["paused_at"],
            approval_required=bool(record["approval_required"]),
            version=record["version"],
            created_at=record["created_at"],
            updated_at=record["updated_at"],
        )
