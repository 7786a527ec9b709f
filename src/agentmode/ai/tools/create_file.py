"""Propose a new note."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, ClassVar

from ...services.vault import VaultError, normalize_vault_path
from ..orchestration.confirmation import PendingCreateConfirmation
from .base import ToolContext, WriteTool, require_str
from .errors import DocumentExistsError, InvalidParameterError

LOGGER = logging.getLogger(__name__)


@dataclass
class CreateFileTool(WriteTool):
    """Create a note after the user confirms; refuses up front if one already exists."""

    name: ClassVar[str] = "create_file"

    async def propose(self, context: ToolContext, params: dict[str, Any]) -> str:
        raw_path = require_str(params, "file_path")
        content = require_str(params, "content", allow_empty=True)
        explanation = params.get("explanation") or ""
        try:
            file_path = normalize_vault_path(raw_path)
        except VaultError as exc:
            raise InvalidParameterError(message=str(exc), parameter="file_path", value=raw_path) from exc
        if not file_path:
            raise InvalidParameterError(
                message="'file_path' must name a note, not the vault root",
                parameter="file_path",
                value=raw_path,
            )

        if await context.vault.exists(file_path):
            raise DocumentExistsError(
                message=f"Cannot create {file_path}: a note already exists at that path",
                file_path=file_path,
            )

        record = PendingCreateConfirmation(
            file_path=file_path,
            content=content,
            explanation=str(explanation),
        )
        LOGGER.debug("Proposing new note %s for call %s", file_path, context.call_id)
        return await context.gateway.request_create(record)
