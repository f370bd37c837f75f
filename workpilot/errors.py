"""Exception hierarchy for workflow orchestration."""

from __future__ import annotations

from typing import Any, Dict, Optional


class WorkpilotError(Exception):
    """Base class for all workpilot errors."""


class ConfigurationError(WorkpilotError):
    """Raised when a run cannot be attempted (disabled agent, missing settings)."""


class BudgetExceeded(WorkpilotError):
    """Raised when the budget guard refuses a spending step."""

    def __init__(self, message: str, estimated_cost: float = 0.0) -> None:
        super().__init__(message)
        self.estimated_cost = estimated_cost


class StepExecutionError(WorkpilotError):
    """Infrastructure failure inside a workflow node."""

    def __init__(self, node_id: str, cause: BaseException) -> None:
        super().__init__(f"Step '{node_id}' failed: {cause}")
        self.node_id = node_id
        self.cause = cause


class DegradedDataError(WorkpilotError):
    """Signals that optional input was missing.

    Not a failure: the engine folds ``fallback_output`` into the chain at low
    confidence and keeps going.
    """

    def __init__(
        self, message: str, fallback_output: Optional[Dict[str, Any]] = None
    ) -> None:
        super().__init__(message)
        self.fallback_output = dict(fallback_output or {})


class InvalidTransitionError(WorkpilotError):
    """Raised for a lifecycle transition the current status does not allow."""


class ConditionParseError(WorkpilotError):
    """Raised when a branching condition cannot be parsed unambiguously."""

    def __init__(self, condition: str, reason: str) -> None:
        super().__init__(f"Cannot parse condition {condition!r}: {reason}")
        self.condition = condition
        self.reason = reason


class ConcurrencyConflictError(WorkpilotError):
    """Raised when a save loses an optimistic-concurrency race."""

    def __init__(self, state_id: str, expected_version: int) -> None:
        super().__init__(
            f"Workflow {state_id} was modified concurrently "
            f"(expected version {expected_version})"
        )
        self.state_id = state_id
        self.expected_version = expected_version


class WorkflowNotFoundError(WorkpilotError):
    """Raised when a workflow state id is unknown to the repository."""
