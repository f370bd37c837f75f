"""Shared constants for workpilot."""

TERMINAL_NODE = "__end__"

CHARS_PER_TOKEN = 4

DEFAULT_AUTO_APPROVAL_THRESHOLD = 0.8

# Default scores used when a suggestion only carries a confidence band.
CONFIDENCE_SCORES = {
    "high": 0.9,
    "medium": 0.7,
    "low": 0.5,
}

DEFAULT_STALE_AFTER_HOURS = 72

WORKFLOW_STATE_APPROVABLE = "workflow_state"
