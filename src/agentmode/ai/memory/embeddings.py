"""Note embedding index, JSON persistence and the OpenAI provider adapter.

One record per note. Records are kept in memory and, when an index directory
is configured, mirrored to one JSON file per note. Search is a linear cosine
similarity scan.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
import posixpath
import re
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Mapping, Protocol, Sequence

from ...services.vault import DocumentStore, iter_markdown_files, normalize_vault_path
from ...utils.file_io import read_text, write_text

if TYPE_CHECKING:  # pragma: no cover
    from ..client import AIClient

LOGGER = logging.getLogger(__name__)

_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9]")


class EmbeddingProvider(Protocol):
    """Protocol implemented by embedding backends."""

    name: str
    max_batch_size: int

    async def embed_documents(self, texts: Sequence[str]) -> Sequence[Sequence[float]]:
        """Return embeddings for note texts."""

    async def embed_query(self, text: str) -> Sequence[float]:
        """Return embedding vector for a query string."""


class OpenAIEmbeddingProvider:
    """Embedding provider that wraps :meth:`AIClient.embed`."""

    def __init__(
        self,
        *,
        client: "AIClient",
        model: str | None = None,
        name: str | None = None,
        max_batch_size: int = 16,
    ) -> None:
        self._client = client
        self._model = model or client.settings.embedding_model
        self.name = name or f"openai:{self._model}"
        self.max_batch_size = max(1, int(max_batch_size))

    async def embed_documents(self, texts: Sequence[str]) -> Sequence[Sequence[float]]:
        return await self._client.embed(texts, model=self._model)

    async def embed_query(self, text: str) -> Sequence[float]:
        vectors = await self.embed_documents([text])
        return vectors[0]


@dataclass(slots=True)
class EmbeddingRecord:
    """Persisted embedding of one note."""

    id: str
    vector: list[float]
    content: str
    file_path: str
    file_name: str
    last_modified: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "EmbeddingRecord":
        vector = payload.get("vector")
        if not isinstance(vector, list) or not all(isinstance(v, (int, float)) for v in vector):
            raise ValueError("record vector must be a list of numbers")
        file_path = str(payload["file_path"])
        return cls(
            id=str(payload.get("id") or file_path),
            vector=[float(v) for v in vector],
            content=str(payload.get("content", "")),
            file_path=file_path,
            file_name=str(payload.get("file_name") or posixpath.basename(file_path)),
            last_modified=str(payload.get("last_modified", "")),
        )


@dataclass(slots=True, frozen=True)
class SearchHit:
    """One ranked search result."""

    file_path: str
    file_name: str
    score: float
    content: str


def record_file_name(file_path: str) -> str:
    """Return the JSON file name used to persist the record for ``file_path``."""

    return _UNSAFE_FILENAME_CHARS.sub("_", file_path) + ".json"


def embedding_text(file_name: str, file_path: str, content: str) -> str:
    """Return the text that is embedded for a note (metadata header plus body)."""

    return f"File: {file_name}\nPath: {file_path}\nContent:\n{content}"


class VaultEmbeddingIndex:
    """In-memory note index with optional one-file-per-note JSON persistence."""

    def __init__(self, provider: EmbeddingProvider, *, index_dir: Path | str | None = None) -> None:
        self._provider = provider
        self._index_dir = Path(index_dir).expanduser() if index_dir else None
        self._records: dict[str, EmbeddingRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    @property
    def index_dir(self) -> Path | None:
        return self._index_dir

    def records(self) -> list[EmbeddingRecord]:
        return list(self._records.values())

    def get(self, file_path: str) -> EmbeddingRecord | None:
        return self._records.get(file_path)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def load(self) -> int:
        """Load every record file from the index directory; returns the count loaded."""
        if self._index_dir is None or not self._index_dir.is_dir():
            return 0
        records = await asyncio.to_thread(self._load_blocking, self._index_dir)
        for record in records:
            self._records[record.file_path] = record
        LOGGER.debug("Loaded %d embedding record(s) from %s", len(records), self._index_dir)
        return len(records)

    @staticmethod
    def _load_blocking(index_dir: Path) -> list[EmbeddingRecord]:
        loaded: list[EmbeddingRecord] = []
        for path in sorted(index_dir.glob("*.json")):
            try:
                loaded.append(EmbeddingRecord.from_dict(json.loads(read_text(path))))
            except (OSError, ValueError, KeyError, TypeError) as exc:
                LOGGER.warning("Skipping unreadable embedding record %s: %s", path, exc)
        return loaded

    async def add(self, record: EmbeddingRecord) -> None:
        self._records[record.file_path] = record
        if self._index_dir is not None:
            target = self._index_dir / record_file_name(record.file_path)
            payload = json.dumps(record.to_dict(), indent=2)
            await asyncio.to_thread(write_text, target, payload)

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------

    async def index_note(self, vault: DocumentStore, file_path: str) -> EmbeddingRecord:
        """Embed ``file_path`` from ``vault`` and store its record."""
        path = normalize_vault_path(file_path)
        content = await vault.read(path)
        file_name = posixpath.basename(path)
        vector = (await self._provider.embed_documents([embedding_text(file_name, path, content)]))[0]
        record = EmbeddingRecord(
            id=path,
            vector=[float(v) for v in vector],
            content=content,
            file_path=path,
            file_name=file_name,
            last_modified=datetime.now(timezone.utc).isoformat(),
        )
        await self.add(record)
        return record

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def search(
        self,
        query: str,
        *,
        limit: int = 5,
        target_subpaths: Sequence[str] | None = None,
    ) -> list[SearchHit]:
        """Return the ``limit`` records most similar to ``query``."""
        candidates = [
            record for record in self._records.values() if _within_subpaths(record.file_path, target_subpaths)
        ]
        if not candidates:
            return []
        query_vector = await self._provider.embed_query(query)
        scored: list[SearchHit] = []
        for record in candidates:
            score = _cosine_similarity(query_vector, record.vector)
            if math.isnan(score):
                continue
            scored.append(SearchHit(record.file_path, record.file_name, score, record.content))
        scored.sort(key=lambda hit: hit.score, reverse=True)
        return scored[: max(1, limit)]


async def index_vault(vault: DocumentStore, index: VaultEmbeddingIndex, folder: str = "") -> int:
    """Embed every markdown note in ``vault`` below ``folder``; returns the number indexed."""

    count = 0
    async for file_path in iter_markdown_files(vault, folder):
        await index.index_note(vault, file_path)
        count += 1
        LOGGER.info("Indexed %s", file_path)
    return count


def _within_subpaths(file_path: str, subpaths: Sequence[str] | None) -> bool:
    if not subpaths:
        return True
    for raw in subpaths:
        prefix = (raw or "").strip().strip("/")
        if not prefix or file_path == prefix or file_path.startswith(prefix + "/"):
            return True
    return False


def _cosine_similarity(lhs: Sequence[float], rhs: Sequence[float]) -> float:
    if not lhs or not rhs:
        return 0.0
    if len(lhs) != len(rhs):
        return 0.0
    dot = sum(a * b for a, b in zip(lhs, rhs))
    left = math.sqrt(sum(a * a for a in lhs))
    right = math.sqrt(sum(b * b for b in rhs))
    if left == 0 or right == 0:
        return 0.0
    return dot / (left * right)


__all__ = [
    "EmbeddingProvider",
    "EmbeddingRecord",
    "OpenAIEmbeddingProvider",
    "SearchHit",
    "VaultEmbeddingIndex",
    "embedding_text",
    "index_vault",
    "record_file_name",
]
