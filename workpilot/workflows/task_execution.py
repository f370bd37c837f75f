"""Task execution: run a task assigned to an agent and have a human review it."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Mapping, Optional

from ..contracts import Confidence, utcnow
from ..definition import NodeSpec, StepContext, WorkflowDefinition
from ..errors import DegradedDataError
from ._common import GENERATION_COST

logger = logging.getLogger(__name__)

WORKFLOW_TYPE = "task-execution"
PRODUCER_ID = "task-execution"
TASK_TOOL = "get_task"
STATUS_TOOL = "update_task_status"

STATUS_DONE = "done"
STATUS_REVISION_REQUESTED = "revision_requested"


def _task_id(ctx: StepContext) -> Optional[Any]:
    return ctx.input.get("task_id") or ctx.input.get("entity_id")


def _task_title(ctx: StepContext) -> str:
    analysis = ctx.results.get("task_analysis") or {}
    return (analysis.get("task") or {}).get("title") or "Unknown"


async def analyze_task(ctx: StepContext) -> Dict[str, Any]:
    task: Dict[str, Any] = dict(ctx.input.get("task") or {})
    work_order: Dict[str, Any] = dict(ctx.input.get("work_order") or {})
    project: Dict[str, Any] = dict(ctx.agent_context.project_context)

    task_id = _task_id(ctx)
    if task_id is not None and ctx.gateway is not None:
        result = await ctx.gateway.execute(TASK_TOOL, {"task_id": task_id})
        if result.success:
            task = {**task, **(result.data.get("task") or {})}
            work_order = {**work_order, **(result.data.get("work_order") or {})}
            project = {**project, **(result.data.get("project") or {})}

    analysis = {
        "analyzed_at": utcnow().isoformat(),
        "task": task or None,
        "work_order": work_order or None,
        "project": project or None,
    }
    if not task:
        raise DegradedDataError(f"Task {task_id} could not be loaded", {"task_analysis": analysis})
    return {"task_analysis": analysis}


def _execution_prompt(ctx: StepContext, analysis: Mapping[str, Any]) -> str:
    return "\n\n".join(
        part
        for part in (
            "Carry out the task below and report what you produced.",
            ctx.agent_context.to_prompt_string(),
            "## Task\n" + json.dumps(analysis.get("task") or {}, indent=4, default=str),
            "## Work Order\n" + json.dumps(analysis.get("work_order"), indent=4, default=str)
            if analysis.get("work_order")
            else "",
        )
        if part
    )


async def execute_task(ctx: StepContext) -> Dict[str, Any]:
    analysis = ctx.results.get("task_analysis") or {}
    output = await ctx.generate(_execution_prompt(ctx, analysis))
    execution = {
        "executed_at": utcnow().isoformat(),
        "agent_id": ctx.state.agent_id,
        "task_id": _task_id(ctx),
        "summary": f"Executed task: {_task_title(ctx)}",
        "work_order_context": (analysis.get("work_order") or {}).get("title"),
        "output": output,
        "status": "completed",
    }
    return {
        "execution_result": execution,
        "confidence": Confidence.MEDIUM.value if output else Confidence.LOW.value,
    }


def execution_markdown(title: str, description: Optional[str], execution: Mapping[str, Any]) -> str:
    lines: List[str] = [f"## Task: {title}", ""]
    if description:
        lines += [f"**Description:** {description}", ""]
    lines += [
        "### Execution Result",
        "",
        f"**Status:** {execution.get('status', 'unknown')}",
        f"**Summary:** {execution.get('summary') or 'No summary available'}",
        "",
    ]
    if execution.get("output"):
        lines += ["### Output", "", str(execution["output"])]
    return "\n".join(lines)


async def present_results(ctx: StepContext) -> Dict[str, Any]:
    analysis = ctx.results.get("task_analysis") or {}
    execution = ctx.results.get("execution_result") or {}
    title = _task_title(ctx)
    return {
        # Every execution is reviewed by a human in staged mode.
        "requires_review": True,
        "summary": f"AI agent completed task: {title}",
        "confidence": Confidence.MEDIUM.value,
        "review_content": execution_markdown(
            title, (analysis.get("task") or {}).get("description"), execution
        ),
    }


async def apply_results(ctx: StepContext) -> Dict[str, Any]:
    approved = not ctx.state.state_data.rejected
    task_id = _task_id(ctx)
    status = STATUS_DONE if approved else STATUS_REVISION_REQUESTED

    status_error = None
    if task_id is not None and ctx.gateway is not None:
        result = await ctx.gateway.execute(STATUS_TOOL, {"task_id": task_id, "status": status})
        if not result.success:
            status_error = result.error
            logger.warning(f"Workflow {ctx.state.id}: task {task_id} status not updated: {result.error}")

    output = {
        "task_id": task_id,
        "outcome": "approved" if approved else "rejected",
        "task_status": status,
        "completed_at": utcnow().isoformat(),
    }
    if status_error:
        output["status_error"] = status_error
    return output


def build_definition() -> WorkflowDefinition:
    return WorkflowDefinition(
        workflow_type=WORKFLOW_TYPE,
        description="Analyzes and executes a task assigned to an AI agent, then presents results for human review.",
        nodes=[
            NodeSpec(
                id="analyze_task",
                handler=analyze_task,
                next="execute_task",
                result_keys=("task_analysis",),
                producer_id=PRODUCER_ID,
            ),
            NodeSpec(
                id="execute_task",
                handler=execute_task,
                next="present_results",
                estimated_cost=GENERATION_COST,
                result_keys=("execution_result",),
                producer_id=PRODUCER_ID,
            ),
            NodeSpec(
                id="present_results",
                handler=present_results,
                next="apply_results",
                checkpoint=True,
                pause_reason="Task execution review required",
                approval_title="Review the AI agent execution results for this task",
                on_reject="apply_results",
                producer_id=PRODUCER_ID,
            ),
            NodeSpec(
                id="apply_results",
                handler=apply_results,
                result_keys=("task_id", "outcome"),
                producer_id=PRODUCER_ID,
            ),
        ],
    )
