import asyncio
from datetime import timedelta

import pytest
from typer.testing import CliRunner

import workpilot.persistence as persistence
from workpilot.cli import app
from workpilot.contracts import AgentProfile, AISettings, WorkflowStatus, utcnow
from workpilot.engine import WorkflowEngine
from workpilot.persistence import InMemoryWorkflowStateRepository, SQLiteWorkflowStateRepository
from workpilot.workflows import default_definitions


@pytest.fixture
def repo(monkeypatch, tmp_path):
    monkeypatch.setenv("WORKPILOT_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.delenv("WORKPILOT_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    repository = InMemoryWorkflowStateRepository()
    persistence._repository_instance = repository
    return repository


def _paused_run(repo, work_order_trigger):
    engine = WorkflowEngine(
        repository=repo,
        definitions=default_definitions(),
        settings=[AISettings(team_id=work_order_trigger.team_id)],
    )
    agent = AgentProfile(id="agent-1", name="PM Copilot")
    return asyncio.run(engine.invoke("pm-copilot", work_order_trigger, agent, start=True))


def test_workflow_list_shows_runs_and_filters(repo, work_order_trigger):
    paused = _paused_run(repo, work_order_trigger)

    runner = CliRunner()
    result = runner.invoke(app, ["workflow", "list"])
    assert result.exit_code == 0, result.stdout
    assert paused.id in result.stdout
    assert "checkpoint_deliverables" in result.stdout

    result = runner.invoke(app, ["workflow", "list", "--status", "completed"])
    assert result.exit_code == 0
    assert "No workflows found" in result.stdout


def test_workflow_show_details_and_missing(repo, work_order_trigger):
    paused = _paused_run(repo, work_order_trigger)

    runner = CliRunner()
    result = runner.invoke(app, ["workflow", "show", paused.id])
    assert result.exit_code == 0, result.stdout
    assert f"Workflow {paused.id}: paused" in result.stdout
    assert "Deliverable review required" in result.stdout
    assert "step 1" in result.stdout

    missing = runner.invoke(app, ["workflow", "show", "missing-id"])
    assert missing.exit_code == 1
    assert "Workflow not found" in missing.stdout


def test_workflow_stale_lists_old_pauses(repo, work_order_trigger):
    paused = _paused_run(repo, work_order_trigger)
    runner = CliRunner()

    result = runner.invoke(app, ["workflow", "stale"])
    assert "No stale workflows found" in result.stdout

    asyncio.run(repo.save(paused.model_copy(update={"paused_at": utcnow() - timedelta(hours=5)})))
    result = runner.invoke(app, ["workflow", "stale", "--hours", "4"])
    assert result.exit_code == 0, result.stdout
    assert paused.id in result.stdout


def test_workflow_approve_continues_run(repo, work_order_trigger):
    paused = _paused_run(repo, work_order_trigger)

    result = CliRunner().invoke(
        app, ["workflow", "approve", paused.id, "--approver", "user-7", "--item", "2"]
    )

    assert result.exit_code == 0, result.stdout
    assert "completed" in result.stdout
    stored = asyncio.run(repo.get(paused.id))
    assert stored.status == WorkflowStatus.COMPLETED
    assert stored.state_data.approval_data["approved_items"] == [2]


def test_workflow_reject_and_repeat_decision(repo, work_order_trigger):
    paused = _paused_run(repo, work_order_trigger)
    runner = CliRunner()

    result = runner.invoke(
        app, ["workflow", "reject", paused.id, "--approver", "user-7", "--reason", "Too broad"]
    )
    assert result.exit_code == 0, result.stdout
    assert "Rejected at checkpoint" in result.stdout

    again = runner.invoke(app, ["workflow", "approve", paused.id, "--approver", "user-7"])
    assert again.exit_code == 1
    assert "expected paused" in again.stdout


def test_workflow_approve_missing_run(repo):
    result = CliRunner().invoke(app, ["workflow", "approve", "nope", "--approver", "user-7"])

    assert result.exit_code == 1
    assert "Workflow not found" in result.stdout


def test_config_option_selects_database_and_stale_age(repo, work_order_trigger, tmp_path):
    db_path = tmp_path / "runs.db"
    config_path = tmp_path / "workpilot.yaml"
    config_path.write_text(
        f"database_url: sqlite://{db_path}\nstale_after_hours: 1\n"
    )
    sqlite_repo = SQLiteWorkflowStateRepository(db_path)
    paused = _paused_run(sqlite_repo, work_order_trigger)
    asyncio.run(
        sqlite_repo.save(paused.model_copy(update={"paused_at": utcnow() - timedelta(hours=2)}))
    )
    sqlite_repo.close()
    runner = CliRunner()

    result = runner.invoke(app, ["--config", str(config_path), "workflow", "list"])
    assert result.exit_code == 0, result.stdout
    assert paused.id in result.stdout

    result = runner.invoke(app, ["--config", str(config_path), "workflow", "stale"])
    assert paused.id in result.stdout

    result = runner.invoke(
        app, ["--config", str(config_path), "workflow", "approve", paused.id, "--approver", "user-7"]
    )
    assert result.exit_code == 0, result.stdout
    assert _stored_status(db_path, paused.id) == WorkflowStatus.COMPLETED
    assert asyncio.run(repo.get(paused.id)) is None


def _stored_status(db_path, state_id):
    sqlite_repo = SQLiteWorkflowStateRepository(db_path)
    try:
        return asyncio.run(sqlite_repo.get(state_id)).status
    finally:
        sqlite_repo.close()
