"""Markdown rendering shared by the prompt-facing context objects."""

from __future__ import annotations

import json
import math
from typing import Any, Callable, Mapping

from ..constants import CHARS_PER_TOKEN


def format_key(key: Any) -> str:
    """``snake_case`` to ``Title Case`` without lowering the remaining letters."""
    words = str(key).replace("_", " ").split(" ")
    return " ".join(word[:1].upper() + word[1:] for word in words)


def to_json(value: Any) -> str:
    return json.dumps(value, indent=4, default=str)


def format_scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if value is None:
        return "Not specified"
    return str(value)


def format_section(
    title: str, data: Mapping[str, Any], format_value: Callable[[Any], str]
) -> str:
    lines = [f"## {title}"]
    for key, value in data.items():
        lines.append(f"- **{format_key(key)}**: {format_value(value)}")
    return "\n".join(lines)


def estimate_tokens(text: str) -> int:
    """Rough character-based token count, not a real tokenizer."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)
