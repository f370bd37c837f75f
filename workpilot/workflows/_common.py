from __future__ import annotations

from typing import Any, List, Mapping, Optional

from ..contracts import Confidence

# Estimated spend of one generation call, checked against the budget guard.
GENERATION_COST = 0.05


def normalize_confidence(value: Any) -> str:
    """Map free-form confidence text onto a known band (``low`` otherwise)."""
    text = str(value or "").strip().lower()
    return text if text in {c.value for c in Confidence} else Confidence.LOW.value


def normalize_score(value: Any) -> Optional[float]:
    """Coerce a confidence score into ``[0, 1]``.

    Percentages (``92``) are scaled down; anything non-numeric yields ``None``.
    """
    if isinstance(value, bool):
        return None
    try:
        score = float(value)
    except (TypeError, ValueError):
        return None
    if score != score:
        return None
    if score > 1.0:
        score /= 100
    return min(max(score, 0.0), 1.0)


def output_suggestions(output: Mapping[str, Any]) -> List[Any]:
    return list(output.get("suggestions") or [])
