"""Command line interface for inspecting and approving workflow runs."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import timedelta
from typing import List, Optional

import typer

from .config import WorkpilotConfig, load_config
from .contracts import AISettings, ApprovalPayload, WorkflowStatus
from .engine import WorkflowEngine
from .errors import WorkpilotError, WorkflowNotFoundError
from .persistence import WorkflowState, get_repository, reset_repository
from .workflows import default_definitions

app = typer.Typer(help="CLI for workpilot workflow runs")

workflow_app = typer.Typer(help="Commands for managing workflow runs")
app.add_typer(workflow_app, name="workflow")


@app.callback()
def main(
    ctx: typer.Context,
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to config YAML"),
) -> None:
    """workpilot CLI entry point."""
    config = load_config(config_path)
    logging.basicConfig(level=config.log_level.upper())
    if config_path is not None:
        reset_repository()
        get_repository(config=config)
    ctx.obj = config


def _config(ctx: typer.Context) -> WorkpilotConfig:
    return ctx.obj if isinstance(ctx.obj, WorkpilotConfig) else load_config()


def _build_engine(config: WorkpilotConfig) -> WorkflowEngine:
    return WorkflowEngine(
        repository=get_repository(),
        definitions=default_definitions(),
        stale_after_hours=config.stale_after_hours,
    )


def _team_settings(config: WorkpilotConfig, team_id: str) -> AISettings:
    return AISettings(team_id=team_id, **config.ai.model_dump())


def _print_state(state: WorkflowState) -> None:
    typer.echo(f"Workflow {state.id}: {state.status.value}")
    typer.echo(f"Type: {state.workflow_type}  Team: {state.team_id}  Node: {state.current_node}")
    data = state.state_data
    if data.pause_reason:
        typer.echo(f"Paused: {data.pause_reason} (since {state.paused_at})")
    if data.error:
        typer.echo(f"Error at {data.failed_node}: {data.error}")
    if data.rejected:
        typer.echo("Rejected at checkpoint")
    for index, step in data.chain_context.step_outputs.items():
        typer.echo(f"- step {index}: {', '.join(step.output) or '(empty)'} ({step.completed_at})")
    if data.results:
        typer.echo(f"Results: {', '.join(sorted(data.results))}")


@workflow_app.command("list")
def workflow_list(
    status: Optional[WorkflowStatus] = typer.Option(None, help="Only runs with this status"),
) -> None:
    """
    List workflow runs with their current status.

    Example:
        workpilot workflow list --status paused
    """
    repo = get_repository()
    states = asyncio.run(repo.list_workflows(status=status))
    if not states:
        typer.echo("No workflows found")
        return
    for state in states:
        typer.echo(f"{state.id}\t{state.workflow_type}\t{state.status.value}\t{state.current_node}")


@workflow_app.command("show")
def workflow_show(state_id: str) -> None:
    """Show status, pause details and step outputs for one run."""
    repo = get_repository()
    state = asyncio.run(repo.get(state_id))
    if state is None:
        typer.echo("Workflow not found")
        raise typer.Exit(code=1)
    _print_state(state)


@workflow_app.command("stale")
def workflow_stale(
    ctx: typer.Context,
    hours: Optional[int] = typer.Option(None, help="Minimum pause age in hours"),
    reason: Optional[str] = typer.Option(None, help="Only runs paused for this reason"),
) -> None:
    """
    List paused runs waiting longer than ``--hours`` (default from config).

    Example:
        workpilot workflow stale --hours 24 --reason "Deliverable review required"
    """
    config = _config(ctx)
    engine = _build_engine(config)
    age = timedelta(hours=hours if hours is not None else config.stale_after_hours)
    states = asyncio.run(engine.list_stale_paused(age, pause_reason=reason))
    if not states:
        typer.echo("No stale workflows found")
        return
    for state in states:
        typer.echo(f"{state.id}\t{state.state_data.pause_reason}\t{state.paused_at.isoformat()}")


async def _decide(config: WorkpilotConfig, state_id: str, payload: ApprovalPayload) -> WorkflowState:
    engine = _build_engine(config)
    state = await engine.get(state_id)
    engine.register_settings(_team_settings(config, state.team_id))
    resumed = await engine.resume(state, payload)
    return await engine.run(resumed)


def _run_decision(ctx: typer.Context, state_id: str, payload: ApprovalPayload) -> None:
    try:
        state = asyncio.run(_decide(_config(ctx), state_id, payload))
    except WorkflowNotFoundError:
        typer.echo("Workflow not found")
        raise typer.Exit(code=1)
    except WorkpilotError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    _print_state(state)


@workflow_app.command("approve")
def workflow_approve(
    ctx: typer.Context,
    state_id: str,
    approver: str = typer.Option(..., help="Id of the approving user"),
    item: Optional[List[str]] = typer.Option(None, help="Approved item (JSON or plain text), repeatable"),
) -> None:
    """Approve a paused run and continue it."""
    items = [_parse_item(i) for i in item] if item else None
    _run_decision(ctx, state_id, ApprovalPayload(approved=True, approver_id=approver, approved_items=items))


@workflow_app.command("reject")
def workflow_reject(
    ctx: typer.Context,
    state_id: str,
    approver: str = typer.Option(..., help="Id of the rejecting user"),
    reason: str = typer.Option(..., help="Why the checkpoint was rejected"),
) -> None:
    """Reject a paused run; it takes the checkpoint's rejection path."""
    _run_decision(ctx, state_id, ApprovalPayload(approved=False, approver_id=approver, reason=reason))


def _parse_item(raw: str):
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


if __name__ == "__main__":  # pragma: no cover
    app()
