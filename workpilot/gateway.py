"""Tool gateway used by workflow steps to reach business tools."""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Protocol, Union

from .contracts import ToolResult

logger = logging.getLogger(__name__)

ToolFunc = Callable[[Dict[str, Any]], Union[Dict[str, Any], Awaitable[Dict[str, Any]]]]


class ToolGateway(Protocol):
    """Protocol for executing a named tool."""

    async def execute(self, name: str, params: Dict[str, Any]) -> ToolResult:
        """Run tool ``name``; failures are reported in the result, not raised."""


class ToolRegistryGateway(ToolGateway):
    """Dispatch tool calls to registered callables.

    Tools may be plain or async functions taking the params mapping and
    returning a data mapping. Tools listed in ``denied`` are refused.
    """

    def __init__(
        self,
        tools: Optional[Dict[str, ToolFunc]] = None,
        denied: Iterable[str] = (),
    ) -> None:
        self._tools: Dict[str, ToolFunc] = dict(tools or {})
        self._denied = set(denied)

    def register(self, name: str, func: ToolFunc) -> None:
        self._tools[name] = func

    async def execute(self, name: str, params: Dict[str, Any]) -> ToolResult:
        tool = self._tools.get(name)
        if tool is None:
            return ToolResult.failure(f"Tool '{name}' not found")
        if name in self._denied:
            return ToolResult.denied(
                f"Permission denied: agent may not execute tool '{name}'"
            )
        try:
            data = tool(params)
            if inspect.isawaitable(data):
                data = await data
        except Exception as exc:
            logger.error(f"Tool execution failed for {name}: {exc}")
            return ToolResult.failure(str(exc))
        return ToolResult.ok(data or {})
