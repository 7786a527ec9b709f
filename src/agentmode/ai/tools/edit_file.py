"""Propose line-based edits to an existing note."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, ClassVar

from ...editor.line_diff import compute_line_diff, count_changes
from ...editor.line_edits import (
    EditParseError,
    apply_edits,
    parse_edit_operations,
    split_lines,
    validate_edits,
)
from ...services.vault import NoteNotFoundError
from ..orchestration.confirmation import PendingEditConfirmation
from .base import ToolContext, WriteTool, require_str
from .errors import DocumentNotFoundError, InvalidParameterError

LOGGER = logging.getLogger(__name__)


@dataclass
class EditFileTool(WriteTool):
    """Validate edits, build a diff and wait for the user to accept it.

    Validation problems (bad ranges, overlaps, missing content) come back as
    the observation text and no confirmation is created. The note is only
    written when the user accepts.
    """

    name: ClassVar[str] = "edit_file"

    async def propose(self, context: ToolContext, params: dict[str, Any]) -> str:
        file_path = require_str(params, "file_path")
        instructions = require_str(params, "instructions", allow_empty=True)
        try:
            edits = parse_edit_operations(params.get("edits"))
        except EditParseError as exc:
            raise InvalidParameterError(message=str(exc), parameter="edits") from exc

        try:
            original = await context.vault.read(file_path)
        except NoteNotFoundError as exc:
            raise DocumentNotFoundError(
                message=f"Cannot edit {file_path}: note not found", file_path=file_path
            ) from exc

        lines = split_lines(original)
        validation = validate_edits(edits, len(lines))
        if not validation.ok:
            LOGGER.info("Rejected %d edit(s) to %s: %s", len(edits), file_path, validation.errors)
            return validation.message()

        modified = apply_edits(lines, edits)
        diff = compute_line_diff(lines, modified)
        deleted, inserted = count_changes(diff)
        if not deleted and not inserted:
            return f"The edits leave {file_path} unchanged; nothing to confirm."

        record = PendingEditConfirmation(
            file_path=file_path,
            instructions=instructions,
            edits=tuple(edits),
            original_text=original,
            diff=tuple(diff),
        )
        LOGGER.debug(
            "Proposing edit to %s (-%d/+%d lines) for call %s",
            file_path,
            deleted,
            inserted,
            context.call_id,
        )
        return await context.gateway.request_edit(record)
