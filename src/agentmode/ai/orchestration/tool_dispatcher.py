"""Tool Dispatcher.

Routes a named tool call with parsed arguments to its implementation and
returns the observation text. Unknown names produce a literal ``"Unknown
tool: <name>"`` observation; :class:`ToolError` is rendered by the tool
itself; unexpected exceptions propagate so the runner can report them.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Any, Mapping

from ...services.vault import DocumentStore
from ..tools.base import BaseTool, SearchIndex, ToolContext
from ..tools.tool_registry import ToolRegistry
from ..tools.tool_wiring import build_default_registry
from .confirmation import ConfirmationGateway
from .types import ChatMode

LOGGER = logging.getLogger(__name__)


class ToolDispatcher:
    """Dispatches tool calls to registered implementations.

    Example:
        dispatcher = ToolDispatcher(vault=vault, gateway=ConfirmationGateway(vault))
        text = await dispatcher.execute("read_file", {"file_path": "A.md"})
    """

    def __init__(
        self,
        *,
        vault: DocumentStore,
        gateway: ConfirmationGateway | None = None,
        registry: ToolRegistry | None = None,
        index: SearchIndex | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            vault: Document store handed to every tool.
            gateway: Confirmation gateway for mutating tools (one is created if omitted).
            registry: Tool registry; defaults to the five vault tools.
            index: Optional semantic index for ``vault_search``.
        """
        self._registry = registry or build_default_registry()
        self._gateway = gateway or ConfirmationGateway(vault)
        self._context = ToolContext(vault=vault, gateway=self._gateway, index=index)

    @property
    def gateway(self) -> ConfirmationGateway:
        return self._gateway

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    def set_index(self, index: SearchIndex | None) -> None:
        self._context.index = index

    def tool_schemas(self) -> list[dict[str, Any]]:
        """Return the OpenAI function-calling definitions of all enabled tools."""
        return self._registry.to_openai_tools()

    def is_mutating(self, name: str) -> bool:
        tool = self._registry.get_tool(name)
        return bool(getattr(tool, "mutating", False))

    async def execute(
        self,
        name: str,
        arguments: Mapping[str, Any],
        *,
        call_id: str = "",
        mode: ChatMode = ChatMode.AGENT,
    ) -> str:
        """Execute tool ``name`` and return its observation text."""
        tool = self._registry.get_tool(name)
        if tool is None:
            LOGGER.warning("Model requested unknown tool %r", name)
            return f"Unknown tool: {name}"
        if not isinstance(tool, BaseTool):
            raise TypeError(f"Tool {name} is not a BaseTool")

        context = dataclasses.replace(self._context, mode=mode, call_id=call_id)
        LOGGER.debug("Dispatching %s (call_id=%s, mode=%s)", name, call_id, mode.value)
        return await tool.run(context, arguments)


__all__ = ["ToolDispatcher"]
