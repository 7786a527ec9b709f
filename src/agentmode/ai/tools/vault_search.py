"""Semantic search over the vault's embedding index."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, ClassVar

from .base import BaseTool, ToolContext, require_str
from .errors import InvalidParameterError

LOGGER = logging.getLogger(__name__)

PREVIEW_CHARS = 200


@dataclass
class VaultSearchTool(BaseTool):
    """Rank indexed notes by cosine similarity to the query."""

    name: ClassVar[str] = "vault_search"
    limit: int = 5

    async def execute(self, context: ToolContext, params: dict[str, Any]) -> str:
        query = require_str(params, "query")
        subpaths = params.get("target_subpaths") or None
        if subpaths is not None and (
            not isinstance(subpaths, list) or not all(isinstance(item, str) for item in subpaths)
        ):
            raise InvalidParameterError(
                message="'target_subpaths' must be an array of strings",
                parameter="target_subpaths",
                value=subpaths,
                expected="array of strings",
            )

        index = context.index
        if index is None or len(index) == 0:
            return f"No results found for '{query}': the vault has not been indexed yet."

        hits = await index.search(query, limit=self.limit, target_subpaths=subpaths)
        if not hits:
            return f"No results found for '{query}'."

        lines = [f"Top {len(hits)} results for '{query}':"]
        for rank, hit in enumerate(hits, start=1):
            preview = " ".join(hit.content.split())[:PREVIEW_CHARS]
            lines.append(f"{rank}. [[{hit.file_path}]] (similarity {hit.score:.3f})")
            if preview:
                lines.append(f"   {preview}")
        return "\n".join(lines)
