"""Executor loop driving workflow states through their definitions."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from pydantic import ValidationError

from .approval import AutoApprovalPolicy
from .budget import BudgetGuard, InMemoryBudgetGuard
from .conditions import ConditionEvaluator
from .constants import DEFAULT_STALE_AFTER_HOURS, TERMINAL_NODE
from .context import AgentContext
from .contracts import (
    AgentBudgetConfig,
    AgentProfile,
    AISettings,
    ApprovalPayload,
    CheckpointApprovalRequest,
    Confidence,
    ExecutionMode,
    TriggerEntity,
    WorkflowStatus,
    utcnow,
)
from .definition import NodeSpec, StepContext, WorkflowDefinition
from .errors import (
    BudgetExceeded,
    ConfigurationError,
    DegradedDataError,
    InvalidTransitionError,
    StepExecutionError,
    WorkflowNotFoundError,
)
from .gateway import ToolGateway, ToolRegistryGateway
from .inbox import ApprovalInbox, InMemoryApprovalInbox
from .persistence.models import WorkflowState, WorkflowStateData
from .persistence.repository import WorkflowStateRepository
from .providers import TextGenerationProvider

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 200


def _coerce_payload(payload: Union[ApprovalPayload, Mapping[str, Any]]) -> ApprovalPayload:
    if isinstance(payload, ApprovalPayload):
        return payload
    try:
        return ApprovalPayload.model_validate(payload)
    except ValidationError as exc:
        raise InvalidTransitionError(f"Malformed approval payload: {exc}") from exc


def resume_state(
    prior: WorkflowState,
    payload: Union[ApprovalPayload, Mapping[str, Any]],
    definition: WorkflowDefinition,
    evaluator: Optional[ConditionEvaluator] = None,
) -> WorkflowState:
    """Return the state that follows ``prior`` once a human has decided.

    The checkpoint is not executed again: an approval takes its normal next
    transition, a rejection takes ``on_reject``. Raises
    ``InvalidTransitionError`` unless ``prior`` is paused at a checkpoint.
    ``prior`` is never modified.
    """
    payload = _coerce_payload(payload)
    if prior.status != WorkflowStatus.PAUSED:
        raise InvalidTransitionError(
            f"Cannot resume workflow {prior.id}: status is {prior.status.value}, expected paused"
        )
    node = definition.get_node(prior.current_node)
    if node is None or not node.checkpoint:
        raise InvalidTransitionError(
            f"Workflow {prior.id} is paused at {prior.current_node!r}, which is not a checkpoint"
        )

    resume_data = {
        "checkpoint": node.id,
        "approved": payload.approved,
        "approver_id": payload.approver_id,
        "resumed_at": utcnow().isoformat(),
    }
    if payload.reason:
        resume_data["reason"] = payload.reason
    chain = prior.state_data.chain_context.with_resume_data(resume_data)

    if payload.approved:
        next_node = definition.next_node(node, chain, evaluator or ConditionEvaluator())
    else:
        next_node = node.on_reject

    resumed = prior.resumed(
        payload,
        next_node,
        chain_context=chain,
        resume_data=resume_data,
        pause_reason=None,
        rejected=not payload.approved,
    )
    if next_node == TERMINAL_NODE:
        resumed = resumed.completed(dict(resumed.state_data.results))
    return resumed


class WorkflowEngine:
    """Run, pause and resume workflow states.

    Nodes run one at a time; each completed node is persisted with a single
    compare-and-swap save before the next starts.
    """

    def __init__(
        self,
        repository: WorkflowStateRepository,
        definitions: Union[Mapping[str, WorkflowDefinition], Iterable[WorkflowDefinition]],
        settings: Iterable[AISettings] = (),
        inbox: Optional[ApprovalInbox] = None,
        budget_guard: Optional[BudgetGuard] = None,
        provider: Optional[TextGenerationProvider] = None,
        gateway: Optional[ToolGateway] = None,
        policy: Optional[AutoApprovalPolicy] = None,
        evaluator: Optional[ConditionEvaluator] = None,
        agents: Iterable[AgentProfile] = (),
        stale_after_hours: int = DEFAULT_STALE_AFTER_HOURS,
    ) -> None:
        self.repository = repository
        if isinstance(definitions, Mapping):
            self._definitions = dict(definitions)
        else:
            self._definitions = {d.workflow_type: d for d in definitions}
        self._settings: Dict[str, AISettings] = {s.team_id: s for s in settings}
        self._agents: Dict[str, AgentProfile] = {a.id: a for a in agents}
        self.inbox = inbox or InMemoryApprovalInbox()
        self.budget_guard = budget_guard or InMemoryBudgetGuard()
        self.provider = provider
        self.gateway = gateway or ToolRegistryGateway()
        self.policy = policy or AutoApprovalPolicy()
        self.evaluator = evaluator or ConditionEvaluator()
        self.stale_after_hours = stale_after_hours

    # ------------------------------------------------------------------
    # Registration
    def register_definition(self, definition: WorkflowDefinition) -> None:
        self._definitions[definition.workflow_type] = definition

    def register_settings(self, settings: AISettings) -> None:
        self._settings[settings.team_id] = settings

    def register_agent(self, agent: AgentProfile) -> None:
        self._agents[agent.id] = agent

    def definition_for(self, workflow_type: str) -> WorkflowDefinition:
        definition = self._definitions.get(workflow_type)
        if definition is None:
            raise ConfigurationError(f"Unknown workflow type: {workflow_type}")
        return definition

    def _settings_for(self, team_id: str) -> AISettings:
        settings = self._settings.get(team_id)
        if settings is None:
            raise ConfigurationError(f"No AI settings configured for team {team_id}")
        return settings

    def _budget_for(self, state: WorkflowState) -> AgentBudgetConfig:
        agent = self._agents.get(state.agent_id) if state.agent_id else None
        if agent is None:
            return AgentBudgetConfig(agent_id=state.agent_id)
        if agent.budget.agent_id is None:
            return agent.budget.model_copy(update={"agent_id": agent.id})
        return agent.budget

    # ------------------------------------------------------------------
    # Public API
    async def invoke(
        self,
        workflow_type: str,
        trigger: TriggerEntity,
        agent: AgentProfile,
        mode: ExecutionMode = ExecutionMode.STAGED,
        start: bool = False,
    ) -> WorkflowState:
        """Create and persist a new run; optionally drive it right away."""
        definition = self.definition_for(workflow_type)
        if not agent.enabled:
            raise ConfigurationError(f"Agent {agent.id} is disabled")
        self._settings_for(trigger.team_id)
        self.register_agent(agent)

        mode = ExecutionMode(mode)
        agent_context = AgentContext(
            org_context=trigger.org_context,
            client_context=trigger.client_context,
            project_context=trigger.project_context,
        )
        state_input = {
            **trigger.parameters,
            "entity_type": trigger.entity_type,
            "entity_id": trigger.entity_id,
            "team_id": trigger.team_id,
            "mode": mode.value,
            "agent_context": agent_context.model_dump(),
        }
        state = WorkflowState(
            team_id=trigger.team_id,
            workflow_type=workflow_type,
            agent_id=agent.id,
            current_node=definition.start_node,
            state_data=WorkflowStateData(input=state_input, mode=mode),
        )
        state = await self.repository.create(state)
        logger.info(
            f"Workflow {state.id} ({workflow_type}) started for "
            f"{trigger.entity_type} {trigger.entity_id} in {mode.value} mode"
        )
        if start:
            state = await self.run(state)
        return state

    async def get(self, state_id: str) -> WorkflowState:
        state = await self.repository.get(state_id)
        if state is None:
            raise WorkflowNotFoundError(f"Workflow state {state_id} not found")
        return state

    async def run(self, state: Union[WorkflowState, str]) -> WorkflowState:
        """Execute nodes until the run pauses, completes or fails."""
        if isinstance(state, str):
            state = await self.get(state)
        if state.status != WorkflowStatus.RUNNING:
            logger.debug(f"Workflow {state.id} is {state.status.value}; nothing to run")
            return state

        definition = self.definition_for(state.workflow_type)
        settings = self._settings_for(state.team_id)

        while state.status == WorkflowStatus.RUNNING:
            node = definition.get_node(state.current_node)
            if node is None:
                logger.error(f"Workflow {state.id} has unknown node {state.current_node!r}")
                return await self.repository.save(
                    state.failed(f"Unknown node {state.current_node!r}", state.current_node)
                )

            budget = self._budget_for(state)
            if node.estimated_cost > 0:
                await self._check_budget(state, node, budget, settings)

            try:
                output = await node.handler(self._step_context(state, settings))
            except DegradedDataError as exc:
                logger.warning(f"Workflow {state.id} step {node.id} degraded: {exc}")
                output = {**exc.fallback_output, "confidence": Confidence.LOW.value, "degraded": True}
            except Exception as exc:
                error = StepExecutionError(node.id, exc)
                logger.exception(f"Workflow {state.id}: {error}")
                return await self.repository.save(state.failed(str(error), node.id))

            if node.estimated_cost > 0:
                await self.budget_guard.record_spend(budget, node.estimated_cost, state.team_id)

            state = self._fold_output(state, definition, node, output or {})

            if node.checkpoint and await self._requires_approval(state, node, output or {}, settings):
                return await self._pause(state, node, output or {})

            next_node = definition.next_node(node, state.state_data.chain_context, self.evaluator)
            if next_node == TERMINAL_NODE:
                state = await self.repository.save(
                    state.completed(dict(state.state_data.results))
                )
                logger.info(f"Workflow {state.id} completed")
            else:
                state = await self.repository.save(state.advanced(next_node))
        return state

    async def resume(
        self,
        state: Union[WorkflowState, str],
        payload: Union[ApprovalPayload, Mapping[str, Any]],
    ) -> WorkflowState:
        """Apply a human decision and persist it; call ``run`` to continue.

        Two resumes of the same snapshot cannot both win: the second save
        fails with ``ConcurrencyConflictError``.
        """
        if isinstance(state, str):
            state = await self.get(state)
        definition = self.definition_for(state.workflow_type)
        payload = _coerce_payload(payload)
        resumed = resume_state(state, payload, definition, self.evaluator)
        saved = await self.repository.save(resumed)

        ticket_id = state.state_data.approval_request_id
        if ticket_id and await self.inbox.get(ticket_id) is not None:
            await self.inbox.resolve(ticket_id, payload)
        logger.info(
            f"Workflow {saved.id} resumed by {payload.approver_id} "
            f"({'approved' if payload.approved else 'rejected'}), next node {saved.current_node}"
        )
        return saved

    async def list_stale_paused(
        self,
        older_than: Union[datetime, timedelta, None] = None,
        pause_reason: Optional[str] = None,
        team_id: Optional[str] = None,
    ) -> List[WorkflowState]:
        """Paused runs whose pause predates ``older_than`` (an age or a cutoff)."""
        if older_than is None:
            older_than = timedelta(hours=self.stale_after_hours)
        cutoff = utcnow() - older_than if isinstance(older_than, timedelta) else older_than
        return await self.repository.list_paused(cutoff, pause_reason, team_id)

    async def pending_approvals(self, team_id: str) -> List[CheckpointApprovalRequest]:
        pending: List[CheckpointApprovalRequest] = []
        for state in await self.repository.list_workflows(WorkflowStatus.PAUSED, team_id):
            pending.extend(await self.inbox.pending_for(state.id))
        return pending

    # ------------------------------------------------------------------
    # Internals
    def _step_context(self, state: WorkflowState, settings: AISettings) -> StepContext:
        raw_context = state.state_data.input.get("agent_context") or {}
        return StepContext(
            state=state,
            chain=state.state_data.chain_context,
            agent_context=AgentContext.model_validate(raw_context),
            settings=settings,
            agent=self._agents.get(state.agent_id) if state.agent_id else None,
            provider=self.provider,
            gateway=self.gateway,
            inbox=self.inbox,
            budget_guard=self.budget_guard,
        )

    async def _check_budget(
        self,
        state: WorkflowState,
        node: NodeSpec,
        budget: AgentBudgetConfig,
        settings: AISettings,
    ) -> None:
        if await self.budget_guard.can_run(budget, node.estimated_cost, settings):
            return
        message = f"Budget exceeded before step {node.id} (estimated cost {node.estimated_cost})"
        logger.error(f"Workflow {state.id}: {message}")
        await self.repository.save(state.failed(message, node.id))
        raise BudgetExceeded(message, node.estimated_cost)

    def _fold_output(
        self,
        state: WorkflowState,
        definition: WorkflowDefinition,
        node: NodeSpec,
        output: Dict[str, Any],
    ) -> WorkflowState:
        data = state.state_data
        chain = data.chain_context.with_step_output(
            definition.step_index(node.id), output, node.producer_id or state.agent_id or node.id
        )
        results = dict(data.results)
        for key in node.result_keys:
            if key in output:
                results[key] = output[key]
        return state.model_copy(
            update={
                "state_data": data.model_copy(
                    update={
                        "chain_context": chain,
                        "outputs": {**data.outputs, node.id: output},
                        "results": results,
                    }
                )
            }
        )

    async def _requires_approval(
        self,
        state: WorkflowState,
        node: NodeSpec,
        output: Dict[str, Any],
        settings: AISettings,
    ) -> bool:
        if state.state_data.mode == ExecutionMode.FULL:
            logger.info(f"Workflow {state.id} passes checkpoint {node.id} in full mode")
            return False
        if output.get("requires_review"):
            logger.info(f"Workflow {state.id} checkpoint {node.id} requires review")
            return True
        suggestions = list(node.suggestions(output)) if node.suggestions else []
        if self.policy.approves_all(suggestions, settings):
            logger.info(
                f"Workflow {state.id} checkpoint {node.id} auto-approved "
                f"({len(suggestions)} suggestion(s))"
            )
            return False
        return True

    async def _pause(
        self, state: WorkflowState, node: NodeSpec, output: Dict[str, Any]
    ) -> WorkflowState:
        reason = node.pause_reason or f"Approval required at {node.id}"
        request = CheckpointApprovalRequest(
            approvable_id=state.id,
            team_id=state.team_id,
            title=node.approval_title or reason,
            content_preview=_preview(node, output),
            full_content=json.dumps(output, indent=4, default=str),
            confidence=_confidence_of(output),
        )
        chain = state.state_data.chain_context.with_pause_reason(reason)
        paused = state.paused(reason, approval_request_id=request.id, chain_context=chain)
        # A conflicting save raises before any ticket reaches the inbox.
        paused = await self.repository.save(paused)
        await self.inbox.create(request)
        logger.info(f"Workflow {paused.id} paused at {node.id}: {reason}")
        return paused


def _preview(node: NodeSpec, output: Mapping[str, Any]) -> str:
    summary = output.get("summary")
    if isinstance(summary, str) and summary:
        return summary[:PREVIEW_LENGTH]
    if node.suggestions is not None:
        count = len(list(node.suggestions(output)))
        return f"{count} suggestion(s) awaiting review"
    return json.dumps(output, default=str)[:PREVIEW_LENGTH]


def _confidence_of(output: Mapping[str, Any]) -> Confidence:
    try:
        return Confidence(str(output.get("confidence", "medium")).lower())
    except ValueError:
        return Confidence.MEDIUM
