"""Prompt-facing context value objects."""

from __future__ import annotations

from .agent import AgentContext
from .chain import ChainContext, StepOutput

__all__ = ["AgentContext", "ChainContext", "StepOutput"]
