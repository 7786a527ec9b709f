"""Line-based edit operations: parsing, validation and application.

Line numbers are 1-indexed throughout. Documents are split on ``"\\n"`` so a
trailing newline shows up as a trailing empty line and round-trips exactly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Sequence

__all__ = [
    "EDIT_KINDS",
    "EditOperation",
    "EditParseError",
    "EditValidationResult",
    "affected_range",
    "apply_edits",
    "apply_edits_to_text",
    "join_lines",
    "parse_edit_operations",
    "split_lines",
    "validate_edits",
]

EDIT_KINDS: tuple[str, ...] = ("insert", "delete", "replace")


class EditParseError(ValueError):
    """Raised when a raw edit payload cannot be turned into an :class:`EditOperation`."""


@dataclass(slots=True, frozen=True)
class EditOperation:
    """One line-range edit requested by the model."""

    operation: str
    start_line: int
    end_line: int | None = None
    content: str | None = None
    description: str = ""

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any], *, position: int | None = None) -> "EditOperation":
        label = f"edits[{position}]" if position is not None else "edit"
        if not isinstance(payload, Mapping):
            raise EditParseError(f"{label} must be an object")
        operation = payload.get("operation", payload.get("type"))
        if not isinstance(operation, str) or not operation.strip():
            raise EditParseError(f"{label}.operation is required")
        start_line = _coerce_line(payload.get("start_line"), f"{label}.start_line", required=True)
        end_line = _coerce_line(payload.get("end_line"), f"{label}.end_line", required=False)
        content = payload.get("content")
        if content is not None and not isinstance(content, str):
            raise EditParseError(f"{label}.content must be a string")
        description = payload.get("description") or ""
        return cls(
            operation=operation.strip().lower(),
            start_line=start_line,  # type: ignore[arg-type]
            end_line=end_line,
            content=content,
            description=str(description),
        )

    def content_lines(self) -> list[str]:
        return split_lines(self.content or "")

    def label(self) -> str:
        first, last = affected_range(self)
        span = f"line {first}" if first == last else f"lines {first}-{last}"
        return f"{self.operation} ({span})"


@dataclass(slots=True)
class EditValidationResult:
    """Outcome of :func:`validate_edits`; ``errors`` is empty when ``ok``."""

    ok: bool
    errors: list[str] = field(default_factory=list)

    def message(self) -> str:
        if self.ok:
            return "Edits are valid."
        bullet_list = "\n".join(f"- {error}" for error in self.errors)
        return f"Edit validation failed:\n{bullet_list}"


def split_lines(text: str) -> list[str]:
    return text.split("\n")


def join_lines(lines: Sequence[str]) -> str:
    return "\n".join(lines)


def parse_edit_operations(raw: Any) -> list[EditOperation]:
    """Convert the model-supplied ``edits`` array into operations."""

    if not isinstance(raw, (list, tuple)):
        raise EditParseError("edits must be an array of edit objects")
    if not raw:
        raise EditParseError("edits must contain at least one edit")
    return [EditOperation.from_mapping(item, position=index) for index, item in enumerate(raw)]


def affected_range(edit: EditOperation) -> tuple[int, int]:
    """Return the inclusive line range an operation touches.

    An insert touches only the line immediately after ``start_line``.
    """

    if edit.operation == "insert":
        return edit.start_line + 1, edit.start_line + 1
    end_line = edit.end_line if edit.end_line is not None else edit.start_line
    return edit.start_line, end_line


def validate_edits(edits: Sequence[EditOperation], total_lines: int) -> EditValidationResult:
    """Check every operation against the document bounds and each other."""

    errors: list[str] = []
    well_formed: list[tuple[int, EditOperation]] = []
    for index, edit in enumerate(edits, start=1):
        problems = _operation_problems(edit, total_lines)
        if problems:
            errors.extend(f"Edit {index}: {problem}" for problem in problems)
        else:
            well_formed.append((index, edit))

    for position, (index_a, edit_a) in enumerate(well_formed):
        start_a, end_a = affected_range(edit_a)
        for index_b, edit_b in well_formed[position + 1 :]:
            start_b, end_b = affected_range(edit_b)
            if start_a <= end_b and start_b <= end_a:
                errors.append(
                    f"Edits {index_a} and {index_b} overlap: "
                    f"lines {start_a}-{end_a} conflict with lines {start_b}-{end_b}"
                )
    return EditValidationResult(ok=not errors, errors=errors)


def apply_edits(lines: Sequence[str], edits: Iterable[EditOperation]) -> list[str]:
    """Apply validated operations bottom-up and return the new line list."""

    result = list(lines)
    # An insert after line N must land before a delete/replace starting at N shifts it.
    ordered = sorted(edits, key=lambda item: (item.start_line, item.operation == "insert"), reverse=True)
    for edit in ordered:
        if edit.operation == "insert":
            result[edit.start_line : edit.start_line] = edit.content_lines()
        elif edit.operation == "delete":
            del result[edit.start_line - 1 : edit.end_line]
        elif edit.operation == "replace":
            result[edit.start_line - 1 : edit.end_line] = edit.content_lines()
        else:
            raise ValueError(f"Unsupported edit operation: {edit.operation}")
    return result


def apply_edits_to_text(text: str, edits: Iterable[EditOperation]) -> str:
    return join_lines(apply_edits(split_lines(text), edits))


def _operation_problems(edit: EditOperation, total_lines: int) -> list[str]:
    if edit.operation not in EDIT_KINDS:
        allowed = ", ".join(EDIT_KINDS)
        return [f"unknown operation '{edit.operation}' (expected one of: {allowed})"]

    problems: list[str] = []
    if edit.start_line < 1:
        problems.append(f"start_line must be >= 1 (got {edit.start_line})")

    if edit.operation in ("delete", "replace"):
        if edit.end_line is None:
            problems.append(f"end_line is required for {edit.operation}")
        else:
            if edit.end_line < edit.start_line:
                problems.append(
                    f"end_line ({edit.end_line}) must be >= start_line ({edit.start_line})"
                )
            if edit.end_line > total_lines:
                problems.append(
                    f"end_line ({edit.end_line}) exceeds document length ({total_lines} lines)"
                )

    if edit.operation in ("insert", "replace") and not edit.content:
        problems.append(f"content is required for {edit.operation}")

    if edit.operation == "insert" and edit.start_line > total_lines + 1:
        problems.append(
            f"start_line ({edit.start_line}) is past the end of the document "
            f"({total_lines} lines); the maximum for insert is {total_lines + 1}"
        )
    return problems


def _coerce_line(value: Any, label: str, *, required: bool) -> int | None:
    if value is None or value == "":
        if required:
            raise EditParseError(f"{label} is required")
        return None
    if isinstance(value, bool):
        raise EditParseError(f"{label} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise EditParseError(f"{label} must be an integer (got {value!r})")
