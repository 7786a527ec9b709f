"""Read a note, or an inclusive 1-indexed slice of it."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, ClassVar

from ...editor.line_edits import split_lines
from ...services.vault import NoteNotFoundError
from .base import BaseTool, ToolContext, optional_bool, optional_int, require_str
from .errors import InvalidLineRangeError

LOGGER = logging.getLogger(__name__)


def number_lines(lines: list[str], first_line: int) -> str:
    """Prefix each line with its 1-indexed line number."""
    width = len(str(first_line + len(lines) - 1))
    return "\n".join(
        f"{number:>{width}} | {line}" for number, line in enumerate(lines, start=first_line)
    )


@dataclass
class ReadFileTool(BaseTool):
    """Return a note's text with line numbers.

    Parameters:
        file_path: Vault-relative note path (required).
        start_line: First line, 1-indexed, inclusive (default 1).
        end_line: Last line, inclusive (default: end of note, clamped).
        read_entire_note: Ignore the range and return everything.

    A missing note is reported as a "File not found" observation rather than
    an error so the model can go looking for the right path.
    """

    name: ClassVar[str] = "read_file"

    async def execute(self, context: ToolContext, params: dict[str, Any]) -> str:
        file_path = require_str(params, "file_path")
        try:
            text = await context.vault.read(file_path)
        except NoteNotFoundError:
            return f"File not found: {file_path}"

        lines = split_lines(text)
        total = len(lines)
        if optional_bool(params, "read_entire_note"):
            start, end = 1, total
        else:
            start = optional_int(params, "start_line")
            if start is None:
                start = 1
            requested_end = optional_int(params, "end_line")
            end = total if requested_end is None else min(requested_end, total)
            if start < 1 or start > total or end < start:
                raise InvalidLineRangeError(
                    message=f"Cannot read lines {start}-{requested_end or total} of {file_path} ({total} lines)",
                    start_line=start,
                    end_line=requested_end,
                    total_lines=total,
                )

        LOGGER.debug("read_file %s lines %d-%d of %d", file_path, start, end, total)
        if start == 1 and end == total:
            header = f"Content of {file_path} ({total} lines):"
        else:
            header = f"Content of {file_path} (lines {start}-{end} of {total}):"
        return f"{header}\n{number_lines(lines[start - 1 : end], start)}"
