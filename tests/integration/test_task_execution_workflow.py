"""Task execution runs: human review of agent output, then status update."""

import pytest

from workpilot.contracts import ApprovalPayload, ExecutionMode, TriggerEntity, WorkflowStatus
from workpilot.gateway import ToolRegistryGateway


@pytest.fixture
def updates():
    return []


@pytest.fixture
def gateway(updates):
    def get_task(params):
        return {
            "task": {"id": params["task_id"], "title": "Draft release notes", "description": "For v2.1"},
            "work_order": {"title": "Release 2.1"},
        }

    def update_task_status(params):
        updates.append(params)
        return {"updated": True}

    return ToolRegistryGateway({"get_task": get_task, "update_task_status": update_task_status})


@pytest.fixture
def task_trigger():
    return TriggerEntity(entity_type="task", entity_id="t-7", team_id="team-1")


@pytest.mark.asyncio
async def test_execution_always_pauses_for_review(
    make_engine, agent, gateway, updates, task_trigger, fake_provider
):
    engine = make_engine(gateway=gateway, provider=fake_provider(["Release notes drafted."]))

    paused = await engine.invoke("task-execution", task_trigger, agent, start=True)

    assert paused.status == WorkflowStatus.PAUSED
    assert paused.current_node == "present_results"
    assert paused.state_data.results["execution_result"]["output"] == "Release notes drafted."
    ticket = await engine.inbox.get(paused.state_data.approval_request_id)
    assert ticket.content_preview == "AI agent completed task: Draft release notes"

    resumed = await engine.resume(paused, ApprovalPayload(approved=True, approver_id="lead"))
    done = await engine.run(resumed)

    assert done.status == WorkflowStatus.COMPLETED
    assert done.state_data.final_result["outcome"] == "approved"
    assert updates == [{"task_id": "t-7", "status": "done"}]


@pytest.mark.asyncio
async def test_rejection_requests_revision(make_engine, agent, gateway, updates, task_trigger):
    engine = make_engine(gateway=gateway)
    paused = await engine.invoke("task-execution", task_trigger, agent, start=True)

    resumed = await engine.resume(
        paused, ApprovalPayload(approved=False, approver_id="lead", reason="Missing changelog")
    )
    assert resumed.current_node == "apply_results"
    done = await engine.run(resumed)

    assert done.status == WorkflowStatus.COMPLETED
    assert done.state_data.rejected
    assert done.state_data.results["outcome"] == "rejected"
    assert updates == [{"task_id": "t-7", "status": "revision_requested"}]


@pytest.mark.asyncio
async def test_unknown_task_degrades_and_full_mode_completes(make_engine, agent, task_trigger):
    engine = make_engine()

    state = await engine.invoke("task-execution", task_trigger, agent, ExecutionMode.FULL, start=True)

    assert state.status == WorkflowStatus.COMPLETED
    assert state.state_data.outputs["analyze_task"]["degraded"] is True
    assert state.state_data.results["execution_result"]["summary"] == "Executed task: Unknown"
    apply = state.state_data.outputs["apply_results"]
    assert apply["outcome"] == "approved"
    assert "not found" in apply["status_error"]
