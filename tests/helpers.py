"""Shared test helpers and stub classes.

Import from here instead of duplicating these classes in individual test files.
"""

from __future__ import annotations

import copy
import json
from types import SimpleNamespace
from typing import Any, AsyncIterator, Mapping, Sequence

from agentmode.ai.memory.embeddings import SearchHit
from agentmode.services.vault import InMemoryVault

Fragment = dict[str, Any]


class FakeModelClient:
    """Scripted stand-in for :class:`agentmode.ai.client.AIClient`.

    Each entry of ``responses`` is either a list of delta fragments (one model
    turn) or an exception raised when that turn is requested.

    Example:
        client = FakeModelClient([text_response("Hello")])
    """

    def __init__(self, responses: Sequence[Sequence[Fragment] | BaseException]) -> None:
        self._responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    async def stream_chat(
        self,
        messages: Sequence[Mapping[str, Any]],
        *,
        tools: Sequence[Mapping[str, Any]] | None = None,
        temperature: float | None = None,
        **kwargs: Any,
    ) -> AsyncIterator[SimpleNamespace]:
        self.calls.append(
            {"messages": copy.deepcopy(list(messages)), "tools": tools, "temperature": temperature}
        )
        if not self._responses:
            raise AssertionError("FakeModelClient ran out of scripted responses")
        response = self._responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        for fragment in response:
            yield SimpleNamespace(type="message.delta", delta=fragment, finish_reason=None)


def text_response(*chunks: str) -> list[Fragment]:
    """Fragments for a plain assistant answer streamed in ``chunks``."""
    fragments: list[Fragment] = [{"role": "assistant", "content": chunks[0] if chunks else ""}]
    fragments.extend({"content": chunk} for chunk in chunks[1:])
    return fragments


def tool_call_response(*calls: tuple[str, str, Any], content: str = "") -> list[Fragment]:
    """Fragments for a turn requesting ``calls`` as ``(id, name, arguments)`` tuples.

    Arguments are JSON-encoded (unless already a string) and streamed in two
    halves to exercise incremental merging.
    """
    fragments: list[Fragment] = [{"role": "assistant", "content": content}]
    for index, (call_id, name, arguments) in enumerate(calls):
        raw = arguments if isinstance(arguments, str) else json.dumps(arguments)
        middle = len(raw) // 2
        fragments.append(
            {
                "tool_calls": [
                    {
                        "index": index,
                        "id": call_id,
                        "type": "function",
                        "function": {"name": name, "arguments": raw[:middle]},
                    }
                ]
            }
        )
        fragments.append({"tool_calls": [{"index": index, "function": {"arguments": raw[middle:]}}]})
    return fragments


class FakeSearchIndex:
    """Search index returning canned hits."""

    def __init__(self, hits: Sequence[SearchHit] = (), *, size: int | None = None) -> None:
        self._hits = list(hits)
        self._size = len(self._hits) if size is None else size
        self.queries: list[dict[str, Any]] = []

    def __len__(self) -> int:
        return self._size

    async def search(
        self,
        query: str,
        *,
        limit: int = 5,
        target_subpaths: Sequence[str] | None = None,
    ) -> list[SearchHit]:
        self.queries.append({"query": query, "limit": limit, "target_subpaths": target_subpaths})
        return self._hits[:limit]


class KeywordEmbeddingProvider:
    """Deterministic embeddings: one dimension per keyword, counting occurrences."""

    name = "keywords"
    max_batch_size = 8

    def __init__(self, keywords: Sequence[str]) -> None:
        self._keywords = [keyword.lower() for keyword in keywords]
        self.document_calls = 0
        self.query_calls = 0

    def _vector(self, text: str) -> list[float]:
        lowered = text.lower()
        return [float(lowered.count(keyword)) for keyword in self._keywords]

    async def embed_documents(self, texts: Sequence[str]) -> list[list[float]]:
        self.document_calls += 1
        return [self._vector(text) for text in texts]

    async def embed_query(self, text: str) -> list[float]:
        self.query_calls += 1
        return self._vector(text)


class RecordingVault(InMemoryVault):
    """In-memory vault that records mutating calls."""

    def __post_init__(self) -> None:
        super().__post_init__()
        self.writes: list[tuple[str, str]] = []
        self.creates: list[tuple[str, str]] = []

    async def write(self, path: str, text: str) -> None:
        await super().write(path, text)
        self.writes.append((path, text))

    async def create(self, path: str, text: str) -> None:
        await super().create(path, text)
        self.creates.append((path, text))


def make_vault(notes: Mapping[str, str] | None = None) -> RecordingVault:
    return RecordingVault(notes=dict(notes if notes is not None else {"A.md": "one\ntwo\nthree"}))
