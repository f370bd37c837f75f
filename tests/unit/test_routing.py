from workpilot.contracts import Confidence
from workpilot.routing import (
    MemberSkill,
    RoutingScorer,
    TeamMember,
    combined_score,
    score_capacity,
    score_skills,
)


def test_combined_score_weights_skill_and_capacity_equally():
    assert combined_score(90, 60) == 75.0


def test_candidate_band_is_filled_up_to_three():
    decision = RoutingScorer().from_scores({101: 95, 102: 90, 103: 50, 104: 40})

    assert decision.top_score == 95
    assert decision.threshold_score == 85.5
    assert [c.user_id for c in decision.top_candidates] == [101, 102, 103]
    assert [c.user_id for c in decision.candidates] == [101, 102, 103, 104]


def test_every_candidate_within_band_is_kept():
    decision = RoutingScorer().from_scores({1: 90, 2: 89, 3: 88, 4: 87, 5: 86})
    assert [c.user_id for c in decision.top_candidates] == [1, 2, 3, 4, 5]


def test_equal_scores_rank_by_user_id():
    decision = RoutingScorer().from_scores({7: 50, 3: 50, 5: 50, 1: 10})
    assert [c.user_id for c in decision.candidates] == [3, 5, 7, 1]


def test_no_candidates():
    decision = RoutingScorer().from_scores({})
    assert decision.candidates == []
    assert decision.recommendation_summary == "No candidates available for routing."


def test_skill_score_uses_proficiency_and_substring_matches():
    member = TeamMember(
        id=1,
        name="Ana",
        skills=[MemberSkill(name="Python", proficiency=3), MemberSkill(name="React Native", proficiency=2)],
    )
    score = score_skills(member, ["python", "react", "go"])

    assert score.matched_skills == ["Python", "React Native"]
    assert score.missing_skills == ["go"]
    assert score.score == round((1.0 + 0.66) / 3 * 100, 2)


def test_capacity_score_bands_and_low_capacity_penalty():
    roomy = TeamMember(id=1, name="A", capacity_hours_per_week=40, current_workload_hours=0)
    busy = TeamMember(id=2, name="B", capacity_hours_per_week=40, current_workload_hours=36)

    assert score_capacity(roomy, 10).score == 100.0
    assert score_capacity(roomy, 40).score == 70.0
    penalized = score_capacity(busy, 2)
    assert penalized.penalty_applied
    assert penalized.score == 50.0


def test_route_scores_members_and_bands_confidence():
    members = [
        TeamMember(
            id=10,
            name="Ana",
            skills=[MemberSkill(name="python", proficiency=3), MemberSkill(name="sql", proficiency=3)],
        ),
        TeamMember(id=11, name="Ben", skills=[MemberSkill(name="python", proficiency=1)]),
    ]
    decision = RoutingScorer().route(members, ["python", "sql"], 8)

    top = decision.candidates[0]
    assert top.user_id == 10
    assert top.combined_score == 100.0
    assert top.confidence == Confidence.HIGH
    assert "All 2 required skills matched" in top.rationale
    assert decision.candidates[1].confidence == Confidence.MEDIUM
