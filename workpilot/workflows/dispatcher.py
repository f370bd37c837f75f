"""Dispatcher: turn a message thread into a routed draft work order."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Mapping, Sequence

from ..contracts import Confidence, utcnow
from ..definition import NodeSpec, StepContext, WorkflowDefinition
from ..errors import DegradedDataError
from ..providers import extract_json
from ..routing import RoutingScorer, TeamMember
from ._common import GENERATION_COST, normalize_score, output_suggestions

logger = logging.getLogger(__name__)

WORKFLOW_TYPE = "dispatcher"
PRODUCER_ID = "dispatcher"
DRAFT_TOOL = "create_draft_work_order"
DEFAULT_ESTIMATED_HOURS = 8.0


def _messages(ctx: StepContext) -> List[Mapping[str, Any]]:
    return [m for m in ctx.input.get("messages") or [] if isinstance(m, Mapping)]


def _known_skills(members: Sequence[TeamMember]) -> List[str]:
    seen: Dict[str, str] = {}
    for member in members:
        for skill in member.skills:
            seen.setdefault(skill.name.lower(), skill.name)
    return list(seen.values())


def _team(ctx: StepContext) -> List[TeamMember]:
    return [TeamMember.model_validate(m) for m in ctx.input.get("team_members") or []]


async def analyze_thread(ctx: StepContext) -> Dict[str, Any]:
    messages = _messages(ctx)
    participants = sorted({str(m["author"]) for m in messages if m.get("author")})
    analysis = {
        "thread_id": ctx.input.get("thread_id"),
        "message_count": len(messages) or ctx.input.get("message_count", 0),
        "participants": participants,
        "analyzed_at": utcnow().isoformat(),
    }
    return {"thread_analysis": analysis}


def extract_requirements_heuristically(
    subject: str, messages: Sequence[Mapping[str, Any]], known_skills: Sequence[str]
) -> Dict[str, Any]:
    bodies = [str(m.get("body") or "") for m in messages]
    text = "\n".join(bodies)
    lowered = f"{subject}\n{text}".lower()
    title = subject or next((b.strip().splitlines()[0] for b in bodies if b.strip()), "")
    return {
        "title": title[:120] or None,
        "description": text or None,
        "scope": None,
        "success_criteria": [],
        "required_skills": [s for s in known_skills if s.lower() in lowered],
        "estimated_hours": None,
        "priority": None,
        "deadline": None,
    }


async def extract_requirements(ctx: StepContext) -> Dict[str, Any]:
    messages = _messages(ctx)
    subject = str(ctx.input.get("subject") or "")
    known_skills = _known_skills(_team(ctx))

    requirements = None
    if messages or subject:
        prompt = "\n\n".join(
            [
                "Extract the work request from this message thread.",
                ctx.agent_context.to_prompt_string(),
                f"## Subject\n{subject}",
                "## Messages\n" + json.dumps(messages, indent=4, default=str),
                f"## Known Skills\n{', '.join(known_skills)}",
                'Respond with a ```json block: {"requirements": {"title": "...", "description": "...", '
                '"scope": "...", "success_criteria": [], "required_skills": [], "estimated_hours": 0, '
                '"priority": "...", "deadline": null}}',
            ]
        )
        parsed = extract_json(await ctx.generate(prompt))
        if parsed is not None and isinstance(parsed.get("requirements"), Mapping):
            requirements = dict(parsed["requirements"])

    if requirements is None:
        requirements = extract_requirements_heuristically(subject, messages, known_skills)
    if ctx.input.get("required_skills"):
        requirements["required_skills"] = list(ctx.input["required_skills"])
    requirements.setdefault("required_skills", [])
    if ctx.input.get("estimated_hours") is not None:
        requirements["estimated_hours"] = ctx.input["estimated_hours"]
    requirements["extracted_at"] = utcnow().isoformat()

    if not messages and not subject:
        raise DegradedDataError("Thread has no messages to extract from", {"requirements": requirements})
    return {"requirements": requirements}


async def route_work(ctx: StepContext) -> Dict[str, Any]:
    requirements = ctx.results.get("requirements") or {}
    hours = requirements.get("estimated_hours") or DEFAULT_ESTIMATED_HOURS
    decision = RoutingScorer().route(
        _team(ctx), list(requirements.get("required_skills") or []), float(hours)
    )
    top = decision.top_candidates
    return {
        "routing_candidates": [c.model_dump(mode="json") for c in top],
        "top_score": decision.top_score,
        "top_confidence": top[0].confidence.value if top else Confidence.LOW.value,
        "recommendation_summary": decision.recommendation_summary,
        "routed_at": utcnow().isoformat(),
    }


async def checkpoint_routing(ctx: StepContext) -> Dict[str, Any]:
    candidates = ctx.results.get("routing_candidates") or []
    routing = ctx.output_of("route_work")
    return {
        "requires_review": bool(ctx.input.get("require_approval_for_routing", False)),
        "summary": routing.get("recommendation_summary", "Review routing recommendation"),
        "confidence": routing.get("top_confidence", Confidence.LOW.value),
        "suggestions": [
            {
                "title": c.get("user_name") or str(c.get("user_id")),
                "confidence": c.get("confidence", Confidence.LOW.value),
                "confidence_score": normalize_score((c.get("combined_score") or 0) / 100),
            }
            for c in candidates
        ],
    }


async def create_draft(ctx: StepContext) -> Dict[str, Any]:
    requirements = ctx.results.get("requirements") or {}
    candidates = ctx.results.get("routing_candidates") or []
    approved_items = (ctx.approval_data or {}).get("approved_items") or []
    if approved_items:
        assignee = approved_items[0]
    elif candidates:
        assignee = candidates[0]["user_id"]
    else:
        assignee = None

    params = {
        "team_id": ctx.state.team_id,
        "title": requirements.get("title") or "Untitled request",
        "description": requirements.get("description"),
        "estimated_hours": requirements.get("estimated_hours"),
        "assignee_id": assignee,
        "source_thread_id": ctx.input.get("thread_id"),
    }
    draft_id = None
    draft_error = None
    if ctx.gateway is not None:
        result = await ctx.gateway.execute(DRAFT_TOOL, params)
        if result.success:
            draft_id = result.data.get("id")
        else:
            draft_error = result.error
            logger.warning(f"Workflow {ctx.state.id}: draft work order not created: {result.error}")
    output = {
        "draft_work_order_id": draft_id,
        "assignee_id": assignee,
        "completed_at": utcnow().isoformat(),
    }
    if draft_error:
        output["draft_error"] = draft_error
    return output


def build_definition() -> WorkflowDefinition:
    return WorkflowDefinition(
        workflow_type=WORKFLOW_TYPE,
        description="Extracts work requirements from a thread and routes them to the best-suited team members.",
        nodes=[
            NodeSpec(
                id="analyze_thread",
                handler=analyze_thread,
                next="extract_requirements",
                result_keys=("thread_analysis",),
                producer_id=PRODUCER_ID,
            ),
            NodeSpec(
                id="extract_requirements",
                handler=extract_requirements,
                next="route_work",
                estimated_cost=GENERATION_COST,
                result_keys=("requirements",),
                producer_id=PRODUCER_ID,
            ),
            NodeSpec(
                id="route_work",
                handler=route_work,
                next="checkpoint_routing",
                result_keys=("routing_candidates",),
                producer_id=PRODUCER_ID,
            ),
            NodeSpec(
                id="checkpoint_routing",
                handler=checkpoint_routing,
                next="create_draft",
                checkpoint=True,
                pause_reason="Routing decision requires approval",
                approval_title="Review and approve work routing recommendations",
                suggestions=output_suggestions,
                producer_id=PRODUCER_ID,
            ),
            NodeSpec(
                id="create_draft",
                handler=create_draft,
                result_keys=("draft_work_order_id",),
                producer_id=PRODUCER_ID,
            ),
        ],
    )
