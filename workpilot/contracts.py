"""Value types exchanged between the engine and its collaborators."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from .constants import DEFAULT_AUTO_APPROVAL_THRESHOLD, WORKFLOW_STATE_APPROVABLE


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkflowStatus(str, Enum):
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (WorkflowStatus.COMPLETED, WorkflowStatus.FAILED)


class ExecutionMode(str, Enum):
    """How checkpoints behave for one invocation."""

    FULL = "full"  # never pause
    STAGED = "staged"  # pause unless auto-approved


class Confidence(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Urgency(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class AgentBudgetConfig(BaseModel):
    """Per-agent spend limits consulted by the budget guard."""

    agent_id: Optional[str] = None
    daily_limit: Optional[float] = None
    monthly_limit: Optional[float] = None


class AgentProfile(BaseModel):
    """The AI agent a workflow runs on behalf of."""

    id: str
    name: str
    enabled: bool = True
    budget: AgentBudgetConfig = Field(default_factory=AgentBudgetConfig)


class TriggerEntity(BaseModel):
    """The business entity whose change started a workflow.

    ``parameters`` become the run's ``input``; the three scoped maps seed the
    run's ``AgentContext``.
    """

    entity_type: str
    entity_id: str
    team_id: str
    parameters: Dict[str, Any] = Field(default_factory=dict)
    org_context: Dict[str, Any] = Field(default_factory=dict)
    client_context: Dict[str, Any] = Field(default_factory=dict)
    project_context: Dict[str, Any] = Field(default_factory=dict)


class AISettings(BaseModel):
    """Team AI settings, passed explicitly to policy and budget checks."""

    team_id: str
    auto_approval_threshold: float = Field(
        default=DEFAULT_AUTO_APPROVAL_THRESHOLD, ge=0.0, le=1.0
    )
    daily_budget: Optional[float] = None
    monthly_budget: Optional[float] = None

    def meets_auto_approval_threshold(self, confidence_score: float) -> bool:
        return confidence_score >= self.auto_approval_threshold


class Suggestion(BaseModel):
    """An AI-produced proposal that may be auto-approved at a checkpoint."""

    title: Optional[str] = None
    confidence: Confidence = Confidence.MEDIUM
    confidence_score: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    has_budget_impact: bool = False
    budget_cost: Optional[float] = None

    @field_validator("confidence", mode="before")
    @classmethod
    def _normalize_confidence(cls, v: Any) -> Any:
        return v.lower() if isinstance(v, str) else v


class ApprovalPayload(BaseModel):
    """Human decision delivered to ``resume``."""

    approved: bool
    approver_id: str
    approved_items: Optional[List[Any]] = None
    reason: Optional[str] = None
    approved_at: datetime = Field(default_factory=utcnow)


class CheckpointApprovalRequest(BaseModel):
    """Inbox entry asking a human to approve a paused workflow."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    approvable_type: str = WORKFLOW_STATE_APPROVABLE
    approvable_id: str
    team_id: str
    title: str
    content_preview: str
    full_content: str = ""
    confidence: Confidence = Confidence.MEDIUM
    urgency: Urgency = Urgency.NORMAL
    status: ApprovalStatus = ApprovalStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow)
    resolved_at: Optional[datetime] = None

    @property
    def is_pending(self) -> bool:
        return self.status == ApprovalStatus.PENDING


class ToolResult(BaseModel):
    """Outcome of a ``ToolGateway.execute`` call."""

    success: bool
    data: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
    status: str = "success"  # success, failure, denied

    @classmethod
    def ok(cls, data: Dict[str, Any]) -> "ToolResult":
        return cls(success=True, data=data)

    @classmethod
    def failure(cls, error: str) -> "ToolResult":
        return cls(success=False, error=error, status="failure")

    @classmethod
    def denied(cls, error: str) -> "ToolResult":
        return cls(success=False, error=error, status="denied")
