"""workpilot: resumable AI workflow orchestration with human checkpoints."""

from .approval import AutoApprovalPolicy
from .conditions import ConditionEvaluator
from .context import AgentContext, ChainContext
from .contracts import (
    AgentProfile,
    AISettings,
    ApprovalPayload,
    CheckpointApprovalRequest,
    ExecutionMode,
    Suggestion,
    TriggerEntity,
    WorkflowStatus,
)
from .definition import Branch, BranchAction, NodeSpec, StepContext, WorkflowDefinition
from .engine import WorkflowEngine, resume_state
from .persistence import WorkflowState, get_repository
from .routing import RoutingScorer

__version__ = "0.1.0"
__all__ = [
    "AgentContext",
    "AgentProfile",
    "AISettings",
    "ApprovalPayload",
    "AutoApprovalPolicy",
    "Branch",
    "BranchAction",
    "ChainContext",
    "CheckpointApprovalRequest",
    "ConditionEvaluator",
    "ExecutionMode",
    "NodeSpec",
    "RoutingScorer",
    "StepContext",
    "Suggestion",
    "TriggerEntity",
    "WorkflowDefinition",
    "WorkflowEngine",
    "WorkflowState",
    "WorkflowStatus",
    "get_repository",
    "resume_state",
]
