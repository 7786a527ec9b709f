"""Property-based tests for stream assembly and line edits."""

from __future__ import annotations

import random

from hypothesis import assume, given, settings
from hypothesis import strategies as st

from agentmode.ai.orchestration.stream_assembler import assemble
from agentmode.editor.line_diff import apply_diff, compute_line_diff, count_changes
from agentmode.editor.line_edits import EditOperation, apply_edits, validate_edits

_TEXT = st.text(alphabet=st.characters(exclude_categories=("Cs",)), min_size=1, max_size=40)
_LINE = st.text(alphabet="abc xyz", max_size=6)


def _split(text: str, cuts: list[int]) -> list[str]:
    points = sorted({cut for cut in cuts if 0 < cut < len(text)})
    bounds = [0, *points, len(text)]
    return [text[start:end] for start, end in zip(bounds, bounds[1:])]


@given(content=_TEXT, arguments=_TEXT, content_cuts=st.lists(st.integers(0, 40)), argument_cuts=st.lists(st.integers(0, 40)))
def test_chunk_boundaries_do_not_change_the_assembled_message(
    content: str, arguments: str, content_cuts: list[int], argument_cuts: list[int]
) -> None:
    fragments: list[dict] = [{"role": "assistant"}]
    fragments.extend({"content": piece} for piece in _split(content, content_cuts))
    argument_pieces = _split(arguments, argument_cuts)
    fragments.append(
        {
            "tool_calls": [
                {
                    "index": 0,
                    "id": "call_1",
                    "type": "function",
                    "function": {"name": "read_file", "arguments": argument_pieces[0]},
                }
            ]
        }
    )
    fragments.extend(
        {"tool_calls": [{"index": 0, "function": {"arguments": piece}}]} for piece in argument_pieces[1:]
    )

    assert assemble(fragments) == {
        "role": "assistant",
        "content": content,
        "tool_calls": [
            {"id": "call_1", "type": "function", "function": {"name": "read_file", "arguments": arguments}}
        ],
    }


@st.composite
def _edit(draw: st.DrawFn, line_count: int) -> EditOperation:
    kind = draw(st.sampled_from(["insert", "delete", "replace"]))
    if kind == "insert":
        start = draw(st.integers(1, line_count + 1))
        content = "\n".join(draw(st.lists(_LINE, min_size=1, max_size=3)))
        assume(content)
        return EditOperation("insert", start, content=content)
    start = draw(st.integers(1, line_count))
    end = draw(st.integers(start, line_count))
    if kind == "delete":
        return EditOperation("delete", start, end)
    content = "\n".join(draw(st.lists(_LINE, min_size=1, max_size=3)))
    assume(content)
    return EditOperation("replace", start, end, content)


@st.composite
def _document_and_edits(draw: st.DrawFn) -> tuple[list[str], list[EditOperation]]:
    lines = draw(st.lists(_LINE, min_size=1, max_size=12))
    edits = draw(st.lists(_edit(len(lines)), min_size=1, max_size=3))
    return lines, edits


@settings(max_examples=200)
@given(_document_and_edits())
def test_diff_of_applied_edits_rebuilds_the_result(case: tuple[list[str], list[EditOperation]]) -> None:
    lines, edits = case
    assume(validate_edits(edits, len(lines)).ok)

    modified = apply_edits(lines, edits)
    diff = compute_line_diff(lines, modified)

    assert apply_diff(lines, diff) == modified
    deleted, inserted = count_changes(diff)
    assert len(lines) - deleted + inserted == len(modified)
    assert [line.content for line in diff if line.kind != "inserted"] == lines


@given(st.lists(_LINE, max_size=15), st.lists(_LINE, max_size=15))
def test_diff_between_arbitrary_documents_round_trips(original: list[str], modified: list[str]) -> None:
    diff = compute_line_diff(original, modified)

    assert apply_diff(original, diff) == modified
    assert [line.content for line in diff if line.kind != "deleted"] == modified


@settings(max_examples=200)
@given(_document_and_edits(), st.randoms(use_true_random=False))
def test_edit_order_does_not_change_the_result(case: tuple[list[str], list[EditOperation]], rng: random.Random) -> None:
    lines, edits = case
    assume(validate_edits(edits, len(lines)).ok)
    shuffled = list(edits)
    rng.shuffle(shuffled)

    assert apply_edits(lines, shuffled) == apply_edits(lines, edits)
    assert apply_edits(lines, list(reversed(edits))) == apply_edits(lines, edits)
