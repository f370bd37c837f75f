"""Auto-approval rules for workflow checkpoints."""

from __future__ import annotations

import logging
from typing import Any, Iterable, List, Mapping, Optional, Union

from pydantic import ValidationError

from .constants import CONFIDENCE_SCORES
from .contracts import AISettings, Confidence, Suggestion

logger = logging.getLogger(__name__)

SuggestionLike = Union[Suggestion, Mapping[str, Any]]


def _coerce(suggestion: SuggestionLike) -> Optional[Suggestion]:
    if isinstance(suggestion, Suggestion):
        return suggestion
    if not isinstance(suggestion, Mapping):
        logger.warning(f"Unsupported suggestion {suggestion!r}, sending to review")
        return None
    try:
        return Suggestion.model_validate(
            {k: v for k, v in suggestion.items() if k in Suggestion.model_fields}
        )
    except ValidationError as exc:
        logger.warning(f"Suggestion {suggestion.get('title')!r} is malformed, sending to review: {exc}")
        return None


class AutoApprovalPolicy:
    """Decide whether a suggestion may skip human review.

    A suggestion is approved automatically only when its confidence band is
    ``high``, its score meets the team threshold, and it has no budget
    impact. Anything else goes to a human.
    """

    def confidence_score(self, suggestion: Suggestion) -> float:
        """Explicit score, else the default score for the confidence band."""
        if suggestion.confidence_score is not None:
            return float(suggestion.confidence_score)
        return CONFIDENCE_SCORES.get(
            suggestion.confidence.value, CONFIDENCE_SCORES["medium"]
        )

    def has_budget_impact(self, suggestion: Suggestion) -> bool:
        if suggestion.has_budget_impact:
            return True
        return suggestion.budget_cost is not None and suggestion.budget_cost > 0

    def should_auto_approve(self, suggestion: SuggestionLike, settings: AISettings) -> bool:
        suggestion = _coerce(suggestion)
        if suggestion is None:
            return False
        if self.has_budget_impact(suggestion):
            return False
        if suggestion.confidence != Confidence.HIGH:
            return False
        return settings.meets_auto_approval_threshold(self.confidence_score(suggestion))

    def evaluate_suggestions(
        self, suggestions: Iterable[SuggestionLike], settings: AISettings
    ) -> List[bool]:
        return [self.should_auto_approve(s, settings) for s in suggestions]

    def approves_all(self, suggestions: Iterable[SuggestionLike], settings: AISettings) -> bool:
        """``True`` only for a non-empty batch where every suggestion passes."""
        decisions = self.evaluate_suggestions(suggestions, settings)
        approved = bool(decisions) and all(decisions)
        logger.debug(f"Auto-approval decisions {decisions} -> {approved}")
        return approved
