"""Tool wiring: register the default tool implementations with their schemas."""

from __future__ import annotations

import logging

from .create_file import CreateFileTool
from .edit_file import EditFileTool
from .list_vault import ListVaultTool
from .read_file import ReadFileTool
from .tool_registry import (
    CREATE_FILE_SCHEMA,
    EDIT_FILE_SCHEMA,
    LIST_VAULT_SCHEMA,
    READ_FILE_SCHEMA,
    VAULT_SEARCH_SCHEMA,
    ToolRegistry,
)
from .vault_search import VaultSearchTool

LOGGER = logging.getLogger(__name__)


def register_default_tools(registry: ToolRegistry) -> ToolRegistry:
    """Register the five vault tools on ``registry`` and return it."""

    registry.register(VaultSearchTool(), schema=VAULT_SEARCH_SCHEMA)
    registry.register(ReadFileTool(), schema=READ_FILE_SCHEMA)
    registry.register(EditFileTool(), schema=EDIT_FILE_SCHEMA)
    registry.register(CreateFileTool(), schema=CREATE_FILE_SCHEMA)
    registry.register(ListVaultTool(), schema=LIST_VAULT_SCHEMA)
    LOGGER.debug("Registered %d default tools", len(registry.list_tools()))
    return registry


def build_default_registry() -> ToolRegistry:
    return register_default_tools(ToolRegistry())


__all__ = ["build_default_registry", "register_default_tools"]
