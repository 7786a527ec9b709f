"""Tests for line diffs."""

from __future__ import annotations

import pytest

from agentmode.editor.line_diff import (
    DiffApplyError,
    DiffLine,
    apply_diff,
    compute_line_diff,
    count_changes,
    format_diff,
)


def test_replace_scenario_diff() -> None:
    diff = compute_line_diff(["one", "two", "three"], ["one", "TWO", "three"])

    assert diff == [
        DiffLine("unchanged", 1, "one"),
        DiffLine("deleted", 2, "two"),
        DiffLine("inserted", 2, "TWO"),
        DiffLine("unchanged", 3, "three"),
    ]
    assert count_changes(diff) == (1, 1)


def test_accepts_text_input() -> None:
    diff = compute_line_diff("a\nb", "a\nb\nc")

    assert [line.kind for line in diff] == ["unchanged", "unchanged", "inserted"]
    assert diff[-1].line_number == 3


def test_duplicate_lines_align_by_longest_common_subsequence() -> None:
    diff = compute_line_diff(["x", "y", "x", "y"], ["x", "y", "z", "x", "y"])

    assert count_changes(diff) == (0, 1)
    assert [line.content for line in diff if line.changed] == ["z"]


def test_format_diff_uses_context_and_gap_markers() -> None:
    original = [f"l{number}" for number in range(1, 11)]
    modified = list(original)
    modified[0] = "L1"
    modified[9] = "L10"

    rendered = format_diff(compute_line_diff(original, modified), context=1)

    assert rendered.split("\n") == ["- l1", "+ L1", "  l2", "...", "  l9", "- l10", "+ L10"]


def test_format_diff_without_changes() -> None:
    assert format_diff(compute_line_diff(["a"], ["a"])) == "(no changes)"


def test_apply_diff_rebuilds_modified_lines() -> None:
    original = ["one", "two", "three"]
    modified = ["zero", "one", "three", "four"]

    assert apply_diff(original, compute_line_diff(original, modified)) == modified


def test_apply_diff_rejects_mismatched_original() -> None:
    diff = compute_line_diff(["one", "two"], ["one", "TWO"])

    with pytest.raises(DiffApplyError):
        apply_diff(["one", "changed"], diff)

    with pytest.raises(DiffApplyError):
        apply_diff(["one", "two", "extra"], diff)
