"""Immutable business context rendered into agent prompts."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Mapping

from pydantic import BaseModel, ConfigDict, Field

from ._formatting import estimate_tokens, format_scalar, format_section, to_json


def _format_value(value: Any) -> str:
    if isinstance(value, dict):
        return to_json(value) if value else ""
    if isinstance(value, (list, tuple)):
        return ", ".join(
            format_scalar(item)
            if isinstance(item, (str, int, float, bool))
            else json.dumps(item, default=str)
            for item in value
        )
    return format_scalar(value)


class AgentContext(BaseModel):
    """Project, client and org scoped data for a single agent run."""

    model_config = ConfigDict(frozen=True)

    project_context: Dict[str, Any] = Field(default_factory=dict)
    client_context: Dict[str, Any] = Field(default_factory=dict)
    org_context: Dict[str, Any] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def to_prompt_string(self) -> str:
        """Render broadest scope first: organization, client, project, metadata."""
        parts: List[str] = []
        if self.org_context:
            parts.append(format_section("Organization Context", self.org_context, _format_value))
        if self.client_context:
            parts.append(format_section("Client Context", self.client_context, _format_value))
        if self.project_context:
            parts.append(format_section("Project Context", self.project_context, _format_value))
        if self.metadata:
            parts.append(format_section("Context Metadata", self.metadata, _format_value))
        return "\n\n".join(parts)

    def get_token_estimate(self) -> int:
        return estimate_tokens(self.to_prompt_string())

    def is_empty(self) -> bool:
        return not (
            self.project_context or self.client_context or self.org_context or self.metadata
        )

    def with_project_context(self, additional: Mapping[str, Any]) -> "AgentContext":
        return self.model_copy(
            update={"project_context": {**self.project_context, **additional}}
        )

    def with_client_context(self, additional: Mapping[str, Any]) -> "AgentContext":
        return self.model_copy(
            update={"client_context": {**self.client_context, **additional}}
        )

    def with_org_context(self, additional: Mapping[str, Any]) -> "AgentContext":
        return self.model_copy(update={"org_context": {**self.org_context, **additional}})

    def with_metadata(self, additional: Mapping[str, Any]) -> "AgentContext":
        return self.model_copy(update={"metadata": {**self.metadata, **additional}})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "project_context": dict(self.project_context),
            "client_context": dict(self.client_context),
            "org_context": dict(self.org_context),
            "metadata": dict(self.metadata),
            "token_estimate": self.get_token_estimate(),
        }
