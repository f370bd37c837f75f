"""PM copilot: plan deliverables, tasks and insights for a work order."""

from __future__ import annotations

import json
import logging
from datetime import date, datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence

from ..contracts import CheckpointApprovalRequest, Confidence, Urgency, utcnow
from ..definition import NodeSpec, StepContext, WorkflowDefinition
from ..errors import DegradedDataError
from ..providers import extract_json
from ._common import GENERATION_COST, normalize_confidence, normalize_score, output_suggestions

logger = logging.getLogger(__name__)

WORKFLOW_TYPE = "pm-copilot"
PRODUCER_ID = "pm-copilot"


# ----------------------------------------------------------------------
# Heuristic builders used when no provider output is usable
def determine_confidence(
    description: str, acceptance_criteria: Sequence[Any], playbooks: Sequence[Any]
) -> str:
    if description and acceptance_criteria and playbooks:
        return Confidence.HIGH.value
    if description and (acceptance_criteria or playbooks):
        return Confidence.MEDIUM.value
    return Confidence.LOW.value


def build_deliverable_alternatives(
    work_order: Mapping[str, Any], playbooks: Sequence[Mapping[str, Any]]
) -> List[Dict[str, Any]]:
    title = work_order.get("title") or "Untitled Work Order"
    description = work_order.get("description") or ""
    criteria = list(work_order.get("acceptance_criteria") or [])

    alternatives = [
        {
            "alternative_id": 1,
            "name": "Standard Approach",
            "deliverables": [
                {
                    "title": f"Primary Deliverable for {title}",
                    "description": f"Main deliverable based on work order requirements: {description}",
                    "type": "document",
                    "acceptance_criteria": criteria,
                    "confidence": determine_confidence(description, criteria, playbooks),
                }
            ],
            "confidence": Confidence.MEDIUM.value,
            "reasoning": "Standard single-deliverable approach based on work order description.",
        }
    ]
    if description:
        alternatives.append(
            {
                "alternative_id": 2,
                "name": "Multi-Phase Approach",
                "deliverables": [
                    {
                        "title": f"Phase 1: Planning for {title}",
                        "description": "Initial planning and requirements gathering phase.",
                        "type": "document",
                        "acceptance_criteria": ["Requirements documented", "Plan approved"],
                        "confidence": Confidence.MEDIUM.value,
                    },
                    {
                        "title": f"Phase 2: Implementation for {title}",
                        "description": "Core implementation and delivery phase.",
                        "type": "deliverable",
                        "acceptance_criteria": criteria,
                        "confidence": Confidence.MEDIUM.value,
                    },
                ],
                "confidence": Confidence.MEDIUM.value,
                "reasoning": "Phased approach allowing for iterative review and approval.",
            }
        )
    if playbooks:
        playbook = playbooks[0]
        name = playbook.get("name", "playbook")
        alternatives.append(
            {
                "alternative_id": 3,
                "name": "Template-Based Approach",
                "deliverables": [
                    {
                        "title": f"Deliverable based on {name}",
                        "description": f"Following template: {playbook.get('description', '')}",
                        "type": playbook.get("type") or "document",
                        "acceptance_criteria": criteria,
                        "confidence": Confidence.HIGH.value,
                    }
                ],
                "confidence": Confidence.HIGH.value,
                "reasoning": f"Based on existing playbook: {name}",
            }
        )
    return alternatives


def _checklist_from_playbooks(playbooks: Sequence[Mapping[str, Any]]) -> List[str]:
    if not playbooks:
        return ["Complete task requirements", "Verify output quality"]
    content = playbooks[0].get("content")
    if isinstance(content, Mapping) and isinstance(content.get("checklist"), list):
        return list(content["checklist"])[:5]
    return ["Follow playbook guidelines", "Complete all requirements", "Verify against criteria"]


def build_task_breakdown(
    deliverables: Sequence[Mapping[str, Any]], playbooks: Sequence[Mapping[str, Any]]
) -> List[Dict[str, Any]]:
    breakdown = []
    position = 1
    for deliverable in deliverables:
        title = deliverable.get("title") or "Untitled Deliverable"
        tasks = [
            {
                "title": f"Plan: {title}",
                "description": "Initial planning and requirements analysis.",
                "estimated_hours": 2.0,
                "position_in_work_order": position,
                "checklist_items": ["Review requirements", "Define approach", "Estimate effort"],
                "dependencies": [],
                "confidence": Confidence.MEDIUM.value,
            },
            {
                "title": f"Execute: {title}",
                "description": "Main execution of deliverable requirements.",
                "estimated_hours": 8.0,
                "position_in_work_order": position + 1,
                "checklist_items": _checklist_from_playbooks(playbooks),
                "dependencies": [position],
                "confidence": Confidence.MEDIUM.value,
            },
            {
                "title": f"Review: {title}",
                "description": "Quality review and acceptance testing.",
                "estimated_hours": 2.0,
                "position_in_work_order": position + 2,
                "checklist_items": ["Quality check", "Test against criteria", "Document findings"],
                "dependencies": [position + 1],
                "confidence": Confidence.HIGH.value,
            },
        ]
        position += 3
        breakdown.append(
            {
                "deliverable_title": title,
                "tasks": tasks,
                "total_estimated_hours": sum(t["estimated_hours"] for t in tasks),
                "confidence": Confidence.MEDIUM.value,
            }
        )
    return breakdown


def _parse_date(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            return None
    return None


def _is_before(value: Any, today: date) -> bool:
    due = _parse_date(value)
    return due is not None and due < today


def build_project_insights(
    project_context: Mapping[str, Any], today: Optional[date] = None
) -> List[Dict[str, Any]]:
    today = today or utcnow().date()
    pending = [t for t in project_context.get("pending_tasks") or [] if isinstance(t, Mapping)]
    insights = []

    overdue = [t for t in pending if _is_before(t.get("due_date"), today)]
    if overdue:
        insights.append(
            {
                "type": "overdue",
                "severity": "high",
                "title": "Overdue Tasks Detected",
                "description": f"{len(overdue)} task(s) are past their due date.",
                "affected_items": [t.get("id") for t in overdue],
                "suggestion": "Review and reprioritize overdue tasks or update due dates.",
                "confidence": Confidence.HIGH.value,
            }
        )

    blocked = [t for t in pending if t.get("is_blocked") is True]
    if blocked:
        insights.append(
            {
                "type": "bottleneck",
                "severity": "medium",
                "title": "Blocked Tasks Identified",
                "description": f"{len(blocked)} task(s) are currently blocked.",
                "affected_items": [t.get("id") for t in blocked],
                "suggestion": "Review blockers and resolve dependencies to unblock work.",
                "confidence": Confidence.HIGH.value,
            }
        )

    budget_hours = project_context.get("budget_hours") or 0
    actual_hours = project_context.get("actual_hours") or 0
    if budget_hours > 0 and actual_hours > budget_hours * 0.8:
        percent = round(actual_hours / budget_hours * 100)
        insights.append(
            {
                "type": "scope_creep",
                "severity": "high" if percent >= 100 else "medium",
                "title": "Budget Hours Warning",
                "description": f"Project has used {percent}% of budgeted hours.",
                "affected_items": [],
                "suggestion": "Review scope and consider adjusting budget or timeline.",
                "confidence": Confidence.HIGH.value,
            }
        )
    return insights


def approved_deliverables(
    approval_data: Optional[Mapping[str, Any]], alternatives: Sequence[Mapping[str, Any]]
) -> List[Dict[str, Any]]:
    """Deliverables picked by the approver, else the first alternative's.

    ``approved_items`` may hold alternative ids, whole alternatives, or
    individual deliverables.
    """
    items = (approval_data or {}).get("approved_items") or []
    selected: List[Dict[str, Any]] = []
    for item in items:
        if isinstance(item, Mapping) and "deliverables" in item:
            selected.extend(item["deliverables"])
        elif isinstance(item, Mapping):
            selected.append(dict(item))
        else:
            for alternative in alternatives:
                if alternative.get("alternative_id") == item:
                    selected.extend(alternative.get("deliverables") or [])
    if selected:
        return selected
    if alternatives:
        return list(alternatives[0].get("deliverables") or [])
    return []


# ----------------------------------------------------------------------
# Prompts
def _deliverables_prompt(ctx: StepContext, work_order: Mapping[str, Any], playbooks: list) -> str:
    return "\n\n".join(
        part
        for part in (
            "You are a project manager. Propose 2-3 alternative deliverable structures "
            "for the work order below.",
            ctx.agent_context.to_prompt_string(),
            "## Work Order\n" + json.dumps(work_order, indent=4, default=str),
            "## Playbooks\n" + json.dumps(playbooks, indent=4, default=str) if playbooks else "",
            'Respond with a ```json block of the form {"alternatives": [{"alternative_id": 1, '
            '"name": "...", "deliverables": [...], "confidence": "high|medium|low", '
            '"reasoning": "..."}]}',
        )
        if part
    )


def _task_breakdown_prompt(ctx: StepContext, deliverables: list, playbooks: list) -> str:
    history = ctx.chain.filter(exclude=["context"]).to_prompt_string()
    return "\n\n".join(
        part
        for part in (
            "Break the approved deliverables into actionable tasks with hour estimates "
            "and dependencies.",
            history,
            "## Deliverables\n" + json.dumps(deliverables, indent=4, default=str),
            "## Playbooks\n" + json.dumps(playbooks, indent=4, default=str) if playbooks else "",
            'Respond with a ```json block of the form {"task_breakdown": [{"deliverable_title": '
            '"...", "tasks": [...], "total_estimated_hours": 0, "confidence": "..."}]}',
        )
        if part
    )


def _insights_prompt(ctx: StepContext, context: Mapping[str, Any]) -> str:
    return "\n\n".join(
        part
        for part in (
            "Identify bottlenecks, overdue items, resource issues and scope creep risks "
            "for this project.",
            ctx.agent_context.to_prompt_string(),
            "## Gathered Context\n" + json.dumps(context, indent=4, default=str),
            'Respond with a ```json block of the form {"insights": [{"type": "...", '
            '"severity": "...", "title": "...", "description": "...", "suggestion": "..."}]}',
        )
        if part
    )


async def _generate_list(ctx: StepContext, prompt: str, key: str) -> Optional[List[Any]]:
    parsed = extract_json(await ctx.generate(prompt))
    if parsed is not None and isinstance(parsed.get(key), list):
        return parsed[key]
    if ctx.provider is not None:
        logger.info(f"Workflow {ctx.state.id}: no usable '{key}' from provider, using heuristics")
    return None


# ----------------------------------------------------------------------
# Steps
async def gather_context(ctx: StepContext) -> Dict[str, Any]:
    work_order: Dict[str, Any] = dict(ctx.input.get("work_order") or {})
    work_order_id = ctx.input.get("work_order_id")
    if work_order_id is not None and ctx.gateway is not None:
        result = await ctx.gateway.execute(
            "get_work_order",
            {"work_order_id": work_order_id, "include_task_summary": True, "include_deliverables": True},
        )
        if result.success:
            work_order = {**work_order, **(result.data.get("work_order") or {})}

    playbooks: List[Any] = list(ctx.input.get("playbooks") or [])
    if ctx.gateway is not None:
        result = await ctx.gateway.execute(
            "get_playbooks",
            {"team_id": ctx.state.team_id, "search": work_order.get("title", ""), "limit": 5},
        )
        if result.success:
            playbooks = list(result.data.get("playbooks") or playbooks)

    context = {
        "gathered_at": utcnow().isoformat(),
        "work_order": work_order,
        "playbooks": playbooks,
        "project_context": dict(ctx.agent_context.project_context),
        "client_context": dict(ctx.agent_context.client_context),
        "org_context": dict(ctx.agent_context.org_context),
    }
    if not work_order:
        raise DegradedDataError("No work order details available", {"context": context})
    return {"context": context}


async def generate_deliverables(ctx: StepContext) -> Dict[str, Any]:
    context = ctx.results.get("context") or {}
    work_order = context.get("work_order") or {}
    playbooks = context.get("playbooks") or []

    alternatives = await _generate_list(
        ctx, _deliverables_prompt(ctx, work_order, playbooks), "alternatives"
    )
    if alternatives is None:
        alternatives = build_deliverable_alternatives(work_order, playbooks)
    return {
        "deliverable_alternatives": alternatives,
        "deliverables_generated_at": utcnow().isoformat(),
        "confidence": normalize_confidence(alternatives[0].get("confidence") if alternatives else None),
    }


async def checkpoint_deliverables(ctx: StepContext) -> Dict[str, Any]:
    alternatives = ctx.results.get("deliverable_alternatives") or []
    suggestions = [
        {
            "title": alt.get("name"),
            "confidence": normalize_confidence(alt.get("confidence")),
            "confidence_score": normalize_score(alt.get("confidence_score")),
            "has_budget_impact": bool(alt.get("has_budget_impact", False)),
            "budget_cost": alt.get("budget_cost"),
        }
        for alt in alternatives
        if isinstance(alt, Mapping)
    ]
    return {
        "summary": f"Review {len(alternatives)} deliverable alternative(s) before task breakdown",
        "suggestions": suggestions,
        "confidence": suggestions[0]["confidence"] if suggestions else Confidence.LOW.value,
    }


async def generate_task_breakdown(ctx: StepContext) -> Dict[str, Any]:
    context = ctx.results.get("context") or {}
    playbooks = context.get("playbooks") or []
    deliverables = approved_deliverables(
        ctx.approval_data, ctx.results.get("deliverable_alternatives") or []
    )

    breakdown = await _generate_list(
        ctx, _task_breakdown_prompt(ctx, deliverables, playbooks), "task_breakdown"
    )
    if breakdown is None:
        breakdown = build_task_breakdown(deliverables, playbooks)
    return {
        "task_breakdown": breakdown,
        "approved_deliverables": deliverables,
        "tasks_generated_at": utcnow().isoformat(),
    }


async def generate_insights(ctx: StepContext) -> Dict[str, Any]:
    context = ctx.results.get("context") or {}
    insights = await _generate_list(ctx, _insights_prompt(ctx, context), "insights")
    if insights is None:
        project_context = {
            **(context.get("project_context") or {}),
            **ctx.agent_context.project_context,
        }
        insights = build_project_insights(project_context)
    return {"insights": insights, "insights_generated_at": utcnow().isoformat()}


def content_preview(alternatives: Sequence[Mapping[str, Any]], breakdown: Sequence[Mapping[str, Any]]) -> str:
    deliverable_count = sum(len(a.get("deliverables") or []) for a in alternatives)
    task_count = sum(len(b.get("tasks") or []) for b in breakdown)
    return (
        f"{len(alternatives)} alternative(s) with {deliverable_count} deliverable(s) "
        f"and {task_count} task(s) suggested"
    )


def plan_markdown(alternatives: Sequence[Mapping[str, Any]], breakdown: Sequence[Mapping[str, Any]]) -> str:
    by_title = {b.get("deliverable_title"): b for b in breakdown}
    lines: List[str] = []
    for number, alt in enumerate(alternatives, start=1):
        name = alt.get("name") or f"Alternative {number}"
        lines += [f"## Alternative {number}: {name} ({alt.get('confidence', 'unknown')} confidence)", ""]
        deliverables = alt.get("deliverables") or []
        if deliverables:
            lines.append("### Deliverables")
            lines += [f"- {d.get('title')} ({d.get('type', 'deliverable')})" for d in deliverables]
            lines.append("")
        for deliverable in deliverables:
            tasks = by_title.get(deliverable.get("title"))
            if tasks:
                lines.append("### Tasks")
                lines += [f"- {t.get('title')}: {t.get('estimated_hours', 0)}h" for t in tasks.get("tasks") or []]
                lines.append("")
        lines += ["---", ""]
    return "\n".join(lines)


async def present_results(ctx: StepContext) -> Dict[str, Any]:
    alternatives = ctx.results.get("deliverable_alternatives") or []
    breakdown = ctx.results.get("task_breakdown") or []
    results = {
        "deliverable_alternatives": alternatives,
        "task_breakdown": breakdown,
        "insights": ctx.results.get("insights") or [],
        "generated_at": utcnow().isoformat(),
    }

    request_id = None
    if ctx.inbox is not None:
        work_order = (ctx.results.get("context") or {}).get("work_order") or {}
        title = work_order.get("title") or ctx.input.get("entity_id", "work order")
        request_id = await ctx.inbox.create(
            CheckpointApprovalRequest(
                approvable_id=ctx.state.id,
                team_id=ctx.state.team_id,
                title=f"PM Copilot: Plan generated for {title}",
                content_preview=content_preview(alternatives, breakdown),
                full_content=plan_markdown(alternatives, breakdown),
                confidence=normalize_confidence(alternatives[0].get("confidence") if alternatives else None),
                urgency=Urgency.NORMAL,
            )
        )
    return {"results": results, "summary_request_id": request_id}


def build_definition() -> WorkflowDefinition:
    return WorkflowDefinition(
        workflow_type=WORKFLOW_TYPE,
        description="Generates deliverable alternatives, a task breakdown and project insights for a work order.",
        nodes=[
            NodeSpec(
                id="gather_context",
                handler=gather_context,
                next="generate_deliverables",
                result_keys=("context",),
                producer_id=PRODUCER_ID,
            ),
            NodeSpec(
                id="generate_deliverables",
                handler=generate_deliverables,
                next="checkpoint_deliverables",
                estimated_cost=GENERATION_COST,
                result_keys=("deliverable_alternatives",),
                producer_id=PRODUCER_ID,
            ),
            NodeSpec(
                id="checkpoint_deliverables",
                handler=checkpoint_deliverables,
                next="generate_task_breakdown",
                checkpoint=True,
                pause_reason="Deliverable review required",
                approval_title="Review and approve the generated deliverable alternatives",
                suggestions=output_suggestions,
                producer_id=PRODUCER_ID,
            ),
            NodeSpec(
                id="generate_task_breakdown",
                handler=generate_task_breakdown,
                next="generate_insights",
                estimated_cost=GENERATION_COST,
                result_keys=("task_breakdown",),
                producer_id=PRODUCER_ID,
            ),
            NodeSpec(
                id="generate_insights",
                handler=generate_insights,
                next="present_results",
                estimated_cost=GENERATION_COST,
                result_keys=("insights",),
                producer_id=PRODUCER_ID,
            ),
            NodeSpec(
                id="present_results",
                handler=present_results,
                result_keys=("summary_request_id",),
                producer_id=PRODUCER_ID,
            ),
        ],
    )
