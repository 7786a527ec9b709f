"""List the immediate children of a vault folder."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, ClassVar

from ...services.vault import VaultError, VaultListing, iter_markdown_files, normalize_vault_path
from .base import BaseTool, ToolContext

LOGGER = logging.getLogger(__name__)

MAX_ENTRIES = 20


@dataclass
class ListVaultTool(BaseTool):
    """List folders and notes directly inside ``vault_path``.

    ``""``, ``"."`` and ``"/"`` name the root. When the folder cannot be
    resolved, every note in the vault is listed instead (best effort), with a
    note saying so.
    """

    name: ClassVar[str] = "list_vault"
    max_entries: int = MAX_ENTRIES

    async def execute(self, context: ToolContext, params: dict[str, Any]) -> str:
        raw_path = params.get("vault_path")
        requested = raw_path if isinstance(raw_path, str) else ""
        try:
            folder = normalize_vault_path(requested)
            listing = await context.vault.list(folder)
        except VaultError as exc:
            LOGGER.info("list_vault could not resolve %r (%s); listing all notes", requested, exc)
            return await self._global_listing(context, requested)
        return self._render(folder, listing)

    async def _global_listing(self, context: ToolContext, requested: str) -> str:
        notes: list[str] = []
        hidden = 0
        async for path in iter_markdown_files(context.vault):
            if len(notes) < self.max_entries:
                notes.append(path)
            else:
                hidden += 1
        lines = [f"Folder '{requested}' could not be listed; showing notes from the whole vault instead."]
        if not notes:
            lines.append("The vault has no notes.")
        lines.extend(f"- {path}" for path in notes)
        if hidden:
            lines.append(f"... and {hidden} more")
        return "\n".join(lines)

    def _render(self, folder: str, listing: VaultListing) -> str:
        entries = [f"{path}/" for path in listing.folders] + list(listing.files)
        label = f"/{folder}" if folder else "/"
        if not entries:
            return f"{label} is empty."
        shown = entries[: self.max_entries]
        lines = [f"Contents of {label} ({len(listing.folders)} folders, {len(listing.files)} files):"]
        lines.extend(f"- {entry}" for entry in shown)
        hidden = len(entries) - len(shown)
        if hidden > 0:
            lines.append(f"... and {hidden} more")
        return "\n".join(lines)
