import itertools

import pytest

from workpilot.approval import AutoApprovalPolicy
from workpilot.contracts import AISettings, Suggestion


@pytest.fixture
def policy():
    return AutoApprovalPolicy()


def test_high_confidence_above_threshold_is_approved(policy, settings):
    suggestion = Suggestion(confidence="high", confidence_score=0.85)
    assert policy.should_auto_approve(suggestion, settings)


@pytest.mark.parametrize(
    "confidence, score",
    [("medium", 0.95), ("low", 1.0), ("high", 0.79)],
)
def test_other_combinations_need_review(policy, settings, confidence, score):
    suggestion = Suggestion(confidence=confidence, confidence_score=score)
    assert not policy.should_auto_approve(suggestion, settings)


def test_budget_impact_always_blocks_auto_approval(policy):
    for confidence, score, threshold in itertools.product(
        ["low", "medium", "high"], [0.0, 0.5, 0.8, 1.0], [0.0, 0.5, 1.0]
    ):
        settings = AISettings(team_id="t", auto_approval_threshold=threshold)
        flagged = Suggestion(confidence=confidence, confidence_score=score, has_budget_impact=True)
        costly = Suggestion(confidence=confidence, confidence_score=score, budget_cost=120.0)
        assert not policy.should_auto_approve(flagged, settings)
        assert not policy.should_auto_approve(costly, settings)


def test_missing_score_falls_back_to_band(policy, settings):
    assert policy.confidence_score(Suggestion(confidence="high")) == 0.9
    assert policy.should_auto_approve({"confidence": "HIGH"}, settings)
    strict = AISettings(team_id="team-1", auto_approval_threshold=0.95)
    assert not policy.should_auto_approve({"confidence": "high"}, strict)


def test_approves_all_requires_non_empty_batch(policy, settings):
    good = {"confidence": "high", "confidence_score": 0.9, "title": "A"}
    weak = {"confidence": "medium", "confidence_score": 0.9, "title": "B"}

    assert policy.evaluate_suggestions([good, weak], settings) == [True, False]
    assert policy.approves_all([good, good], settings)
    assert not policy.approves_all([good, weak], settings)
    assert not policy.approves_all([], settings)


@pytest.mark.parametrize(
    "suggestion",
    [
        {"confidence": "high", "confidence_score": 92},
        {"confidence": "high", "confidence_score": "very sure"},
        {"confidence": "certain", "confidence_score": 0.95},
        "approve everything",
    ],
)
def test_malformed_suggestions_go_to_review(policy, settings, suggestion):
    assert not policy.should_auto_approve(suggestion, settings)
    assert not policy.approves_all([suggestion], settings)
