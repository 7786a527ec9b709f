"""Line-granularity diffs used for edit previews and confirmation output."""

from __future__ import annotations

from dataclasses import dataclass
from difflib import SequenceMatcher
from typing import Literal, Sequence

__all__ = [
    "DiffLine",
    "DiffApplyError",
    "apply_diff",
    "compute_line_diff",
    "count_changes",
    "format_diff",
]

DiffKind = Literal["unchanged", "deleted", "inserted"]

_PREFIXES: dict[str, str] = {"unchanged": "  ", "deleted": "- ", "inserted": "+ "}


class DiffApplyError(ValueError):
    """Raised when a diff does not describe the lines it is applied to."""


@dataclass(slots=True, frozen=True)
class DiffLine:
    """A single diff row.

    ``line_number`` is 1-indexed in the original document for unchanged and
    deleted rows, and in the modified document for inserted rows.
    """

    kind: DiffKind
    line_number: int
    content: str

    @property
    def changed(self) -> bool:
        return self.kind != "unchanged"


def compute_line_diff(original: Sequence[str] | str, modified: Sequence[str] | str) -> list[DiffLine]:
    """Return the ordered line diff between two documents (LCS based)."""

    old_lines = original.split("\n") if isinstance(original, str) else list(original)
    new_lines = modified.split("\n") if isinstance(modified, str) else list(modified)
    matcher = SequenceMatcher(None, old_lines, new_lines, autojunk=False)

    diff: list[DiffLine] = []
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            diff.extend(DiffLine("unchanged", i + 1, old_lines[i]) for i in range(i1, i2))
            continue
        if tag in ("delete", "replace"):
            diff.extend(DiffLine("deleted", i + 1, old_lines[i]) for i in range(i1, i2))
        if tag in ("insert", "replace"):
            diff.extend(DiffLine("inserted", j + 1, new_lines[j]) for j in range(j1, j2))
    return diff


def format_diff(diff: Sequence[DiffLine], *, context: int = 2) -> str:
    """Render changed rows with ``context`` surrounding rows on each side."""

    changed_indexes = [index for index, line in enumerate(diff) if line.changed]
    if not changed_indexes:
        return "(no changes)"

    visible: set[int] = set()
    for index in changed_indexes:
        visible.update(range(max(0, index - context), min(len(diff), index + context + 1)))

    rendered: list[str] = []
    previous: int | None = None
    for index in sorted(visible):
        if previous is not None and index != previous + 1:
            rendered.append("...")
        line = diff[index]
        rendered.append(f"{_PREFIXES[line.kind]}{line.content}")
        previous = index
    return "\n".join(rendered)


def apply_diff(original: Sequence[str], diff: Sequence[DiffLine]) -> list[str]:
    """Replay ``diff`` against ``original`` and return the modified lines.

    Unchanged and deleted rows must match ``original`` at their stated line
    numbers; inserted rows are emitted in order.
    """

    result: list[str] = []
    cursor = 0
    for line in diff:
        if line.kind == "inserted":
            if line.line_number != len(result) + 1:
                raise DiffApplyError(
                    f"Inserted line {line.line_number} is out of sequence (expected {len(result) + 1})"
                )
            result.append(line.content)
            continue
        expected_index = line.line_number - 1
        if expected_index != cursor or cursor >= len(original) or original[cursor] != line.content:
            raise DiffApplyError(f"Diff does not match original at line {line.line_number}")
        if line.kind == "unchanged":
            result.append(line.content)
        cursor += 1
    if cursor != len(original):
        raise DiffApplyError(f"Diff covers {cursor} of {len(original)} original lines")
    return result


def count_changes(diff: Sequence[DiffLine]) -> tuple[int, int]:
    """Return ``(deleted, inserted)`` row counts."""

    deleted = sum(1 for line in diff if line.kind == "deleted")
    inserted = sum(1 for line in diff if line.kind == "inserted")
    return deleted, inserted
