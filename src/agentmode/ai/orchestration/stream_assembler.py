"""Fold streamed chat-completion deltas into one assistant message.

Each fragment is a partial message (``choices[0].delta`` as a plain dict). The
merge is a typed recursion over a closed set of shapes:

* strings concatenate (incremental text and incremental JSON arguments),
* numbers and booleans are replaced by the latest value,
* objects merge key by key,
* arrays carry objects tagged with an integer ``index``; each element merges
  into the accumulated element at that position, and a position may never be
  more than one past the current length.

Anything else is a :class:`StreamProtocolError`.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Iterable, Mapping

__all__ = [
    "StreamProtocolError",
    "StreamAssembler",
    "assemble",
    "merge_fragment",
]

LOGGER = logging.getLogger(__name__)

# Keys some OpenAI-compatible servers repeat verbatim on every chunk.
_REPEATED_KEYS = frozenset({"role", "type"})


class StreamProtocolError(RuntimeError):
    """Raised when a streamed fragment cannot be merged into the accumulator."""

    def __init__(self, message: str, *, path: str = "") -> None:
        super().__init__(f"{message} (at {path or '<root>'})")
        self.path = path


def merge_fragment(accumulator: dict[str, Any], fragment: Mapping[str, Any]) -> dict[str, Any]:
    """Merge ``fragment`` into ``accumulator`` in place and return it."""

    if not isinstance(fragment, Mapping):
        raise StreamProtocolError(f"Fragment must be an object, got {type(fragment).__name__}")
    _merge_object(accumulator, fragment, "")
    return accumulator


def _merge_object(target: dict[str, Any], fragment: Mapping[str, Any], path: str) -> None:
    for key, value in fragment.items():
        child_path = f"{path}.{key}" if path else str(key)
        if value is None:
            continue
        current = target.get(key)
        if current is None:
            target[key] = _merge_value(_empty_like(value, child_path), value, child_path)
        elif key in _REPEATED_KEYS and current == value:
            continue
        else:
            target[key] = _merge_value(current, value, child_path)


def _merge_value(current: Any, value: Any, path: str) -> Any:
    if current is None:
        return value
    if isinstance(current, str) and isinstance(value, str):
        return current + value
    if _is_number(current) and _is_number(value):
        return value
    if isinstance(current, dict) and isinstance(value, Mapping):
        _merge_object(current, value, path)
        return current
    if isinstance(current, list) and isinstance(value, list):
        _merge_array(current, value, path)
        return current
    raise StreamProtocolError(
        f"Cannot merge {type(value).__name__} into {type(current).__name__}", path=path
    )


def _merge_array(target: list[Any], fragment: list[Any], path: str) -> None:
    for element in fragment:
        if not isinstance(element, Mapping):
            raise StreamProtocolError("Array elements must be objects", path=path)
        position = element.get("index")
        if not isinstance(position, int) or isinstance(position, bool) or position < 0:
            raise StreamProtocolError(f"Array element has invalid index {position!r}", path=path)
        element_path = f"{path}[{position}]"
        if position > len(target):
            raise StreamProtocolError(
                f"Index {position} skips past current length {len(target)}", path=element_path
            )
        if position == len(target):
            target.append({})
        _merge_object(target[position], element, element_path)


def _empty_like(value: Any, path: str) -> Any:
    if isinstance(value, Mapping):
        return {}
    if isinstance(value, list):
        return []
    if isinstance(value, str) or _is_number(value):
        return None
    raise StreamProtocolError(f"Unsupported fragment value of type {type(value).__name__}", path=path)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class StreamAssembler:
    """Stateful wrapper around :func:`merge_fragment` used while a stream is live."""

    def __init__(self) -> None:
        self._accumulator: dict[str, Any] = {}
        self._fragments = 0
        self.finish_reason: str | None = None

    @property
    def fragment_count(self) -> int:
        return self._fragments

    def feed(self, fragment: Mapping[str, Any], *, finish_reason: str | None = None) -> None:
        merge_fragment(self._accumulator, fragment)
        self._fragments += 1
        if finish_reason:
            self.finish_reason = finish_reason

    def partial_tool_calls(self) -> list[dict[str, Any]]:
        """Tool calls accumulated so far, in position order (arguments may be incomplete)."""
        return list(self._accumulator.get("tool_calls") or [])

    def message(self) -> dict[str, Any]:
        """Return the finished message with positional indexes stripped from tool calls."""
        message = copy.deepcopy(self._accumulator)
        tool_calls = message.get("tool_calls")
        if tool_calls:
            for call in tool_calls:
                call.pop("index", None)
        LOGGER.debug(
            "Assembled message from %d fragments (tool_calls=%d, finish_reason=%s)",
            self._fragments,
            len(tool_calls or ()),
            self.finish_reason,
        )
        return message


def assemble(fragments: Iterable[Mapping[str, Any]]) -> dict[str, Any]:
    """Fold a complete fragment sequence into the final message."""

    assembler = StreamAssembler()
    for fragment in fragments:
        assembler.feed(fragment)
    return assembler.message()
