"""Skill and capacity based routing of incoming work to team members."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Sequence

from pydantic import BaseModel, Field

from .contracts import Confidence

logger = logging.getLogger(__name__)

SKILL_WEIGHT = 0.50
CAPACITY_WEIGHT = 0.50
# Candidates scoring within 10% of the best are presented together.
TOP_CANDIDATE_BAND = 0.10
MIN_CANDIDATES = 3

PROFICIENCY_WEIGHTS = {1: 0.33, 2: 0.66, 3: 1.0}
LOW_CAPACITY_THRESHOLD = 0.20
LOW_CAPACITY_PENALTY = 0.50
BASELINE_WEEKLY_HOURS = 40


class MemberSkill(BaseModel):
    name: str
    proficiency: int = Field(default=1, ge=1, le=3)


class TeamMember(BaseModel):
    id: int
    name: str
    skills: List[MemberSkill] = Field(default_factory=list)
    capacity_hours_per_week: float = BASELINE_WEEKLY_HOURS
    current_workload_hours: float = 0.0

    @property
    def available_capacity(self) -> float:
        return max(self.capacity_hours_per_week - self.current_workload_hours, 0.0)


class SkillScore(BaseModel):
    score: float
    matched_skills: List[str] = Field(default_factory=list)
    missing_skills: List[str] = Field(default_factory=list)


class CapacityScore(BaseModel):
    score: float
    available_capacity: float
    capacity_percentage: float
    penalty_applied: bool
    can_fit_work: bool


class RoutingCandidate(BaseModel):
    user_id: int
    user_name: str = ""
    skill_score: float
    capacity_score: float
    combined_score: float
    confidence: Confidence = Confidence.LOW
    is_top_candidate: bool = False
    rationale: str = ""


class RoutingDecision(BaseModel):
    candidates: List[RoutingCandidate] = Field(default_factory=list)
    top_score: float = 0.0
    threshold_score: float = 0.0
    recommendation_summary: str = ""

    @property
    def top_candidates(self) -> List[RoutingCandidate]:
        return [c for c in self.candidates if c.is_top_candidate]


def combined_score(skill_score: float, capacity_score: float) -> float:
    return round(skill_score * SKILL_WEIGHT + capacity_score * CAPACITY_WEIGHT, 2)


def score_skills(member: TeamMember, required_skills: Sequence[str]) -> SkillScore:
    """Weighted share of required skills the member has (0-100).

    An exact case-insensitive name match is preferred over a substring match.
    """
    if not required_skills:
        return SkillScore(score=0.0)

    matched: List[str] = []
    missing: List[str] = []
    total_weight = 0.0
    for required in required_skills:
        wanted = required.strip().lower()
        match = next((s for s in member.skills if s.name.lower() == wanted), None)
        if match is None:
            match = next(
                (
                    s
                    for s in member.skills
                    if wanted in s.name.lower() or s.name.lower() in wanted
                ),
                None,
            )
        if match is None:
            missing.append(required)
            continue
        total_weight += PROFICIENCY_WEIGHTS.get(match.proficiency, PROFICIENCY_WEIGHTS[1])
        matched.append(match.name)

    score = total_weight / len(required_skills) * 100
    return SkillScore(score=round(score, 2), matched_skills=matched, missing_skills=missing)


def _base_capacity_score(available: float, estimated_hours: float) -> float:
    if available <= 0:
        return 0.0
    if estimated_hours <= 0:
        return min(available / BASELINE_WEEKLY_HOURS * 100, 100.0)

    ratio = available / estimated_hours
    if ratio >= 2.0:
        return 100.0
    if ratio >= 1.5:
        return 90.0 + (ratio - 1.5) / 0.5 * 10
    if ratio >= 1.0:
        return 70.0 + (ratio - 1.0) / 0.5 * 20
    return max(ratio * 70, 0.0)


def score_capacity(member: TeamMember, estimated_hours: float) -> CapacityScore:
    """Score how well ``estimated_hours`` fits the member's free hours.

    Members with under 20% of their weekly hours free get half the score.
    """
    available = member.available_capacity
    weekly = member.capacity_hours_per_week
    percentage = available / weekly if weekly > 0 else 0.0
    penalty = percentage < LOW_CAPACITY_THRESHOLD
    score = _base_capacity_score(available, estimated_hours)
    if penalty:
        score *= LOW_CAPACITY_PENALTY
    return CapacityScore(
        score=round(score, 2),
        available_capacity=available,
        capacity_percentage=round(percentage * 100, 2),
        penalty_applied=penalty,
        can_fit_work=available >= estimated_hours,
    )


def determine_confidence(
    score: float, matched_skill_count: int, available: float, required_hours: float
) -> Confidence:
    if score >= 80 and matched_skill_count >= 2 and available >= required_hours:
        return Confidence.HIGH
    if score >= 50 and matched_skill_count >= 1 and available > 0:
        return Confidence.MEDIUM
    return Confidence.LOW


def select_top_candidates(candidates: Iterable[RoutingCandidate]) -> RoutingDecision:
    """Rank candidates and mark the ones to present.

    Every candidate within 10% of the best combined score is marked, with no
    upper limit. When that band holds fewer than three, the next-ranked
    candidates are added until three are marked or none remain. Equal scores
    rank by ascending user id.
    """
    ranked = sorted(candidates, key=lambda c: (-c.combined_score, c.user_id))
    top_score = ranked[0].combined_score if ranked else 0.0
    threshold = top_score * (1 - TOP_CANDIDATE_BAND)

    marked = [c.model_copy(update={"is_top_candidate": c.combined_score >= threshold}) for c in ranked]
    shortfall = MIN_CANDIDATES - sum(1 for c in marked if c.is_top_candidate)
    for i, candidate in enumerate(marked):
        if shortfall <= 0:
            break
        if not candidate.is_top_candidate:
            marked[i] = candidate.model_copy(update={"is_top_candidate": True})
            shortfall -= 1

    return RoutingDecision(
        candidates=marked,
        top_score=round(top_score, 2),
        threshold_score=round(threshold, 2),
        recommendation_summary=_summary(marked, top_score),
    )


def _summary(candidates: Sequence[RoutingCandidate], top_score: float) -> str:
    if not candidates:
        return "No candidates available for routing."
    top = [c for c in candidates if c.is_top_candidate]
    if not top:
        return "No suitable candidates found."
    names = ", ".join(c.user_name or str(c.user_id) for c in top[:3])
    if len(top) == 1:
        return f"Recommended: {names} with score {round(top_score, 2)}"
    return f"{len(top)} candidates within 10% of top score ({round(top_score, 2)}): {names}"


def _rationale(confidence: Confidence, skill: SkillScore, capacity: CapacityScore) -> str:
    parts = []
    if not skill.matched_skills:
        parts.append("No matching skills found")
    elif not skill.missing_skills:
        parts.append(f"All {len(skill.matched_skills)} required skills matched")
    else:
        parts.append(
            f"{len(skill.matched_skills)} skills matched, {len(skill.missing_skills)} missing"
        )
    parts.append(
        "sufficient capacity available" if capacity.can_fit_work else "limited capacity for this work"
    )
    if capacity.penalty_applied:
        parts.append("score penalized due to low availability (<20%)")
    return f"{confidence.value.capitalize()} confidence: {'; '.join(parts)}"


class RoutingScorer:
    """Combine skill and capacity scores into a routing recommendation."""

    def score_member(
        self, member: TeamMember, required_skills: Sequence[str], estimated_hours: float
    ) -> RoutingCandidate:
        skill = score_skills(member, required_skills)
        capacity = score_capacity(member, estimated_hours)
        combined = combined_score(skill.score, capacity.score)
        confidence = determine_confidence(
            combined, len(skill.matched_skills), capacity.available_capacity, estimated_hours
        )
        return RoutingCandidate(
            user_id=member.id,
            user_name=member.name,
            skill_score=skill.score,
            capacity_score=capacity.score,
            combined_score=combined,
            confidence=confidence,
            rationale=_rationale(confidence, skill, capacity),
        )

    def route(
        self,
        members: Iterable[TeamMember],
        required_skills: Sequence[str],
        estimated_hours: float,
    ) -> RoutingDecision:
        candidates = [
            self.score_member(member, required_skills, estimated_hours) for member in members
        ]
        decision = select_top_candidates(candidates)
        logger.info(decision.recommendation_summary)
        return decision

    def from_scores(
        self, scores: Dict[int, float], names: Optional[Dict[int, str]] = None
    ) -> RoutingDecision:
        """Build a decision from precomputed combined scores keyed by user id."""
        names = names or {}
        candidates = [
            RoutingCandidate(
                user_id=user_id,
                user_name=names.get(user_id, ""),
                skill_score=score,
                capacity_score=score,
                combined_score=score,
            )
            for user_id, score in scores.items()
        ]
        return select_top_candidates(candidates)
