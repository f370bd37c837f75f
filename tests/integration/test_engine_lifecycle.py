"""Engine failure handling, concurrency and stale-run listing."""

from datetime import timedelta

import pytest

from workpilot.contracts import (
    AgentBudgetConfig,
    AgentProfile,
    ApprovalPayload,
    ExecutionMode,
    TriggerEntity,
    WorkflowStatus,
    utcnow,
)
from workpilot.errors import (
    BudgetExceeded,
    ConcurrencyConflictError,
    ConfigurationError,
    InvalidTransitionError,
)
from workpilot.persistence import InMemoryWorkflowStateRepository


class ExplodingProvider:
    async def generate(self, prompt: str) -> str:
        raise ConnectionError("model endpoint unreachable")


@pytest.mark.asyncio
async def test_invoke_rejects_bad_configuration(make_engine, agent, work_order_trigger):
    engine = make_engine()

    with pytest.raises(ConfigurationError):
        await engine.invoke("unknown", work_order_trigger, agent)
    with pytest.raises(ConfigurationError):
        await engine.invoke(
            "pm-copilot", work_order_trigger, AgentProfile(id="a2", name="Off", enabled=False)
        )
    other_team = work_order_trigger.model_copy(update={"team_id": "team-x"})
    with pytest.raises(ConfigurationError):
        await engine.invoke("pm-copilot", other_team, agent)
    assert await engine.repository.list_workflows() == []


@pytest.mark.asyncio
async def test_budget_refusal_fails_run_and_raises(make_engine, work_order_trigger):
    engine = make_engine()
    thrifty = AgentProfile(
        id="agent-9", name="Thrifty", budget=AgentBudgetConfig(daily_limit=0.01)
    )
    state = await engine.invoke("pm-copilot", work_order_trigger, thrifty)

    with pytest.raises(BudgetExceeded) as exc_info:
        await engine.run(state)

    assert exc_info.value.estimated_cost > 0
    stored = await engine.get(state.id)
    assert stored.status == WorkflowStatus.FAILED
    assert stored.state_data.failed_node == "generate_deliverables"
    assert "Budget exceeded" in stored.state_data.error


@pytest.mark.asyncio
async def test_spend_is_recorded_for_generation_steps(make_engine, agent, work_order_trigger):
    engine = make_engine()
    await engine.invoke("pm-copilot", work_order_trigger, agent, ExecutionMode.FULL, start=True)

    daily, _ = engine.budget_guard.spent("agent-1")
    assert daily == pytest.approx(0.15)


@pytest.mark.asyncio
async def test_handler_failure_marks_run_failed(make_engine, agent, work_order_trigger):
    engine = make_engine(provider=ExplodingProvider())
    state = await engine.invoke("pm-copilot", work_order_trigger, agent, start=True)

    assert state.status == WorkflowStatus.FAILED
    assert state.state_data.failed_node == "generate_deliverables"
    assert "model endpoint unreachable" in state.state_data.error
    assert (await engine.get(state.id)).status == WorkflowStatus.FAILED
    assert await engine.run(state) == state


@pytest.mark.asyncio
async def test_missing_work_order_degrades_instead_of_failing(make_engine, agent):
    engine = make_engine()
    trigger = TriggerEntity(entity_type="work_order", entity_id="wo-0", team_id="team-1")

    state = await engine.invoke("pm-copilot", trigger, agent, ExecutionMode.FULL, start=True)

    assert state.status == WorkflowStatus.COMPLETED
    gathered = state.state_data.outputs["gather_context"]
    assert gathered["degraded"] is True
    assert gathered["confidence"] == "low"
    alternatives = state.state_data.results["deliverable_alternatives"]
    assert alternatives[0]["deliverables"][0]["title"] == "Primary Deliverable for Untitled Work Order"


@pytest.mark.asyncio
async def test_double_resume_of_same_snapshot_conflicts(make_engine, agent, work_order_trigger):
    engine = make_engine()
    paused = await engine.invoke("pm-copilot", work_order_trigger, agent, start=True)
    payload = ApprovalPayload(approved=True, approver_id="user-7")

    await engine.resume(paused, payload)
    with pytest.raises(ConcurrencyConflictError):
        await engine.resume(paused, payload)
    with pytest.raises(InvalidTransitionError):
        await engine.resume(paused.id, payload)


@pytest.mark.asyncio
async def test_resume_of_running_state_leaves_it_unchanged(make_engine, agent, work_order_trigger):
    engine = make_engine()
    state = await engine.invoke("pm-copilot", work_order_trigger, agent)
    before = (await engine.get(state.id)).model_dump()

    with pytest.raises(InvalidTransitionError):
        await engine.resume(state, {"approved": True, "approver_id": "user-7"})
    assert (await engine.get(state.id)).model_dump() == before


@pytest.mark.asyncio
async def test_stale_paused_runs_are_listed_by_age_and_reason(make_engine, agent, work_order_trigger):
    engine = make_engine()
    old = await engine.invoke("pm-copilot", work_order_trigger, agent, start=True)
    fresh = await engine.invoke("pm-copilot", work_order_trigger, agent, start=True)
    await engine.repository.save(
        old.model_copy(update={"paused_at": utcnow() - timedelta(hours=80)})
    )

    stale = await engine.list_stale_paused()
    assert [s.id for s in stale] == [old.id]
    assert fresh.status == WorkflowStatus.PAUSED
    assert await engine.list_stale_paused(timedelta(hours=72), pause_reason="other") == []
    by_reason = await engine.list_stale_paused(
        timedelta(hours=1), pause_reason="Deliverable review required"
    )
    assert [s.id for s in by_reason] == [old.id]


class ConflictOnPauseRepository(InMemoryWorkflowStateRepository):
    async def save(self, state):
        if state.status == WorkflowStatus.PAUSED:
            raise ConcurrencyConflictError(state.id, state.version)
        return await super().save(state)


@pytest.mark.asyncio
async def test_conflicting_pause_leaves_no_approval_request(make_engine, agent, work_order_trigger):
    engine = make_engine(repository=ConflictOnPauseRepository())

    with pytest.raises(ConcurrencyConflictError):
        await engine.invoke("pm-copilot", work_order_trigger, agent, start=True)

    assert await engine.inbox.list_items() == []


@pytest.mark.asyncio
async def test_pause_ticket_matches_stored_request_id(make_engine, agent, work_order_trigger):
    engine = make_engine()

    paused = await engine.invoke("pm-copilot", work_order_trigger, agent, start=True)

    ticket = await engine.inbox.get(paused.state_data.approval_request_id)
    assert ticket is not None and ticket.approvable_id == paused.id
