"""Text generation providers used inside workflow steps."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Optional, Protocol, Union

from pydantic_ai import Agent

logger = logging.getLogger(__name__)

_FENCED_JSON_RE = re.compile(r"```json\s*([\s\S]*?)\s*```")


class TextGenerationProvider(Protocol):
    """Protocol for an opaque prompt -> completion call."""

    async def generate(self, prompt: str) -> str:
        """Return the completion text for ``prompt``."""


class PydanticAIProvider(TextGenerationProvider):
    """Run prompts through a ``pydantic_ai.Agent``.

    Accepts either a configured agent or a model name such as
    ``"openai:gpt-4o"``. Errors from the model propagate to the caller; the
    engine treats them as step failures.
    """

    def __init__(
        self, agent: Union[Agent, str], system_prompt: Optional[str] = None
    ) -> None:
        if isinstance(agent, str):
            agent = Agent(agent, system_prompt=system_prompt or ())
        self.agent = agent

    async def generate(self, prompt: str) -> str:
        result = await self.agent.run(prompt)
        output = result.output if hasattr(result, "output") else result
        return output if isinstance(output, str) else str(output)


def extract_json(response: Optional[str]) -> Optional[Dict[str, Any]]:
    """Pull a JSON object from a completion.

    A fenced ```json block wins; otherwise the whole response is parsed.
    Returns ``None`` when nothing decodes to an object.
    """
    if not response:
        return None

    match = _FENCED_JSON_RE.search(response)
    if match:
        try:
            decoded = json.loads(match.group(1).strip())
        except json.JSONDecodeError:
            decoded = None
        if isinstance(decoded, dict):
            return decoded

    try:
        decoded = json.loads(response.strip())
    except json.JSONDecodeError:
        logger.debug("Completion did not contain a JSON object")
        return None
    return decoded if isinstance(decoded, dict) else None
