"""Immutable accumulated context for one workflow run."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..contracts import utcnow
from ._formatting import estimate_tokens, format_key, format_scalar, format_section, to_json


class StepOutput(BaseModel):
    """Output recorded for one executed step."""

    model_config = ConfigDict(frozen=True)

    output: Dict[str, Any] = Field(default_factory=dict)
    producer_id: Optional[str] = None
    completed_at: Optional[str] = None


def _format_value(value: Any) -> str:
    if isinstance(value, (list, tuple, dict)):
        return to_json(value)
    return format_scalar(value)


def _filter_keys(data: Mapping[str, Any], keys: Iterable[str], include: bool) -> Dict[str, Any]:
    keys = set(keys)
    if include:
        return {k: v for k, v in data.items() if k in keys}
    return {k: v for k, v in data.items() if k not in keys}


class ChainContext(BaseModel):
    """Step outputs, merged context and metadata for one run.

    Every ``with_*`` and ``filter`` call returns a new instance; nothing is
    modified in place. Step outputs keep insertion order, and re-recording an
    index keeps its original position.
    """

    model_config = ConfigDict(frozen=True)

    step_outputs: Dict[int, StepOutput] = Field(default_factory=dict)
    accumulated_context: Dict[str, Any] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "ChainContext":
        """Rebuild a context from its storage form (see ``to_dict``)."""
        data = data or {}
        steps = {}
        for index, step in (data.get("steps") or {}).items():
            step = step or {}
            steps[int(index)] = StepOutput(
                output=step.get("output") or {},
                producer_id=step.get("producer_id"),
                completed_at=step.get("completed_at"),
            )
        return cls(
            step_outputs=steps,
            accumulated_context=dict(data.get("accumulated_context") or {}),
            metadata=dict(data.get("metadata") or {}),
        )

    def with_step_output(
        self, index: int, output: Mapping[str, Any], producer_id: Optional[str] = None
    ) -> "ChainContext":
        steps = dict(self.step_outputs)
        steps[index] = StepOutput(
            output=dict(output),
            producer_id=producer_id,
            completed_at=utcnow().isoformat(),
        )
        accumulated = {**self.accumulated_context, f"step_{index}": dict(output)}
        return ChainContext(
            step_outputs=steps,
            accumulated_context=accumulated,
            metadata=dict(self.metadata),
        )

    def filter(
        self, include: Iterable[str] = (), exclude: Iterable[str] = ()
    ) -> "ChainContext":
        """Narrow what each step shows; ``accumulated_context`` is retained as is."""
        include = list(include)
        exclude = list(exclude)
        steps = {}
        for index, step in self.step_outputs.items():
            output = step.output
            if include:
                output = _filter_keys(output, include, True)
            if exclude:
                output = _filter_keys(output, exclude, False)
            steps[index] = StepOutput(
                output=output,
                producer_id=step.producer_id,
                completed_at=step.completed_at,
            )
        return ChainContext(
            step_outputs=steps,
            accumulated_context=dict(self.accumulated_context),
            metadata={**self.metadata, "filtered": True},
        )

    def with_metadata(self, additional: Mapping[str, Any]) -> "ChainContext":
        return ChainContext(
            step_outputs=dict(self.step_outputs),
            accumulated_context=dict(self.accumulated_context),
            metadata={**self.metadata, **additional},
        )

    def with_pause_reason(self, reason: str) -> "ChainContext":
        return self.with_metadata({"pause_reason": reason})

    def with_resume_data(self, resume_data: Mapping[str, Any]) -> "ChainContext":
        return self.with_metadata({"resume_data": dict(resume_data)})

    def get_output_for_step(self, index: int) -> Optional[Dict[str, Any]]:
        step = self.step_outputs.get(index)
        return step.output if step is not None else None

    def get_all_outputs(self) -> Dict[int, Dict[str, Any]]:
        return {index: step.output for index, step in self.step_outputs.items()}

    def is_empty(self) -> bool:
        return not self.step_outputs and not self.accumulated_context

    @property
    def completed_step_count(self) -> int:
        return len(self.step_outputs)

    def to_dict(self) -> Dict[str, Any]:
        """Storage form; ``pause_reason``/``resume_data`` are mirrored at top level."""
        result: Dict[str, Any] = {
            "steps": {
                index: step.model_dump() for index, step in self.step_outputs.items()
            },
            "accumulated_context": dict(self.accumulated_context),
            "metadata": dict(self.metadata),
        }
        if "pause_reason" in self.metadata:
            result["pause_reason"] = self.metadata["pause_reason"]
        if "resume_data" in self.metadata:
            result["resume_data"] = self.metadata["resume_data"]
        return result

    def to_prompt_string(self) -> str:
        parts: List[str] = []
        if self.step_outputs:
            parts.append(self._format_step_outputs())
        if self.accumulated_context:
            parts.append(
                format_section("Accumulated Context", self.accumulated_context, _format_value)
            )
        if self.metadata:
            parts.append(format_section("Chain Metadata", self.metadata, _format_value))
        return "\n\n".join(parts)

    def get_token_estimate(self) -> int:
        return estimate_tokens(self.to_prompt_string())

    def _format_step_outputs(self) -> str:
        lines = ["## Previous Step Outputs"]
        for index, step in self.step_outputs.items():
            lines.append(f"### Step {index}")
            for key, value in step.output.items():
                lines.append(f"- **{format_key(key)}**: {_format_value(value)}")
        return "\n".join(lines)
