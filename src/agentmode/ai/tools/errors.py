"""Expected tool failures.

Tool errors never abort an agent run. :meth:`BaseTool.run` renders them as an
observation (``"Error: [code] message"`` plus a suggestion line) that the
model reads on its next turn, so it can correct the call.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, ClassVar


class ErrorCode:
    """Machine-readable codes shown in brackets in error observations."""

    DOCUMENT_NOT_FOUND = "document_not_found"
    DOCUMENT_EXISTS = "document_exists"
    INVALID_LINE_RANGE = "invalid_line_range"
    CONFIRMATION_PENDING = "confirmation_pending"
    INVALID_PARAMETER = "invalid_parameter"
    MISSING_PARAMETER = "missing_parameter"


@dataclass
class ToolError(Exception):
    """Base class; subclasses pick ``code`` and a default suggestion.

    Extra dataclass fields declared by a subclass are context (paths, line
    numbers, parameter names) and appear in :meth:`to_dict` when set.
    """

    code: ClassVar[str] = "tool_error"
    default_suggestion: ClassVar[str] = ""

    message: str = ""
    suggestion: str | None = None

    def __post_init__(self) -> None:
        Exception.__init__(self, self.message)
        if self.suggestion is None:
            self.suggestion = self.default_suggestion

    @property
    def error_code(self) -> str:
        return self.code

    def context(self) -> dict[str, Any]:
        base = {item.name for item in fields(ToolError)}
        return {
            item.name: getattr(self, item.name)
            for item in fields(self)
            if item.name not in base and getattr(self, item.name) is not None
        }

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"error": self.code, "message": self.message}
        result.update(self.context())
        if self.suggestion:
            result["suggestion"] = self.suggestion
        return result

    def to_observation(self) -> str:
        """Render the error as the text the model observes."""
        text = f"Error: {self}"
        if self.suggestion:
            text = f"{text}\nSuggestion: {self.suggestion}"
        return text

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


@dataclass
class DocumentNotFoundError(ToolError):
    code: ClassVar[str] = ErrorCode.DOCUMENT_NOT_FOUND
    default_suggestion: ClassVar[str] = "Use list_vault or vault_search to find the correct path"

    file_path: str | None = None


@dataclass
class DocumentExistsError(ToolError):
    """Raised when ``create_file`` targets a path that already holds a note."""

    code: ClassVar[str] = ErrorCode.DOCUMENT_EXISTS
    default_suggestion: ClassVar[str] = "Use edit_file to change the existing note"

    file_path: str | None = None


@dataclass
class InvalidLineRangeError(ToolError):
    code: ClassVar[str] = ErrorCode.INVALID_LINE_RANGE
    default_suggestion: ClassVar[str] = "Line numbers are 1-indexed; read the note to check its length"

    start_line: int | None = None
    end_line: int | None = None
    total_lines: int | None = None


@dataclass
class ConfirmationBusyError(ToolError):
    """Raised when a change is proposed while another of the same kind awaits the user."""

    code: ClassVar[str] = ErrorCode.CONFIRMATION_PENDING
    default_suggestion: ClassVar[str] = "Wait for the user to accept or reject the pending change"

    kind: str | None = None


@dataclass
class InvalidParameterError(ToolError):
    code: ClassVar[str] = ErrorCode.INVALID_PARAMETER
    default_suggestion: ClassVar[str] = "Check the parameter requirements"

    parameter: str | None = None
    value: Any = field(default=None, repr=False)
    expected: str | None = None

    def context(self) -> dict[str, Any]:
        result = super().context()
        if "value" in result:
            result["value"] = repr(result["value"])
        return result


@dataclass
class MissingParameterError(ToolError):
    code: ClassVar[str] = ErrorCode.MISSING_PARAMETER
    default_suggestion: ClassVar[str] = "Provide the required parameter"

    parameter: str | None = None


__all__ = [
    "ErrorCode",
    "ToolError",
    "DocumentNotFoundError",
    "DocumentExistsError",
    "InvalidLineRangeError",
    "ConfirmationBusyError",
    "InvalidParameterError",
    "MissingParameterError",
]
