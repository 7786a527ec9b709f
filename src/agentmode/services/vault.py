"""Vault (document store) contracts and the two concrete stores shipped with agentmode.

The agent core only ever talks to a vault through :class:`DocumentStore`. Paths
are vault-relative, ``/``-separated strings (``"folder/note.md"``); the empty
string names the vault root.
"""

from __future__ import annotations

import asyncio
import logging
import posixpath
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Protocol, runtime_checkable

from ..utils.file_io import read_text, write_text

__all__ = [
    "DocumentStore",
    "VaultListing",
    "VaultError",
    "NoteNotFoundError",
    "NoteExistsError",
    "InMemoryVault",
    "FileSystemVault",
    "normalize_vault_path",
    "iter_markdown_files",
]

LOGGER = logging.getLogger(__name__)

_ROOT_ALIASES = {"", ".", "/", "./"}


class VaultError(Exception):
    """Raised when a vault primitive cannot complete."""

    def __init__(self, message: str, *, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path


class NoteNotFoundError(VaultError):
    """Raised when a note or folder does not exist."""


class NoteExistsError(VaultError):
    """Raised when creating a note over an existing one."""


@dataclass(slots=True, frozen=True)
class VaultListing:
    """Immediate children of a folder, as vault-relative paths."""

    folders: tuple[str, ...] = ()
    files: tuple[str, ...] = ()


@runtime_checkable
class DocumentStore(Protocol):
    """Async document-store primitives consumed by the tools."""

    async def read(self, path: str) -> str:
        ...

    async def write(self, path: str, text: str) -> None:
        ...

    async def create(self, path: str, text: str) -> None:
        ...

    async def exists(self, path: str) -> bool:
        ...

    async def list(self, folder: str) -> VaultListing:
        ...

    async def ensure_directory(self, path: str) -> None:
        ...


def normalize_vault_path(path: str | None) -> str:
    """Return ``path`` as a clean vault-relative path (``""`` for the root)."""

    raw = (path or "").strip().replace("\\", "/")
    if raw in _ROOT_ALIASES:
        return ""
    normalized = posixpath.normpath(raw.lstrip("/"))
    if normalized in (".", ""):
        return ""
    if normalized == ".." or normalized.startswith("../"):
        raise VaultError(f"Path escapes the vault root: {path}", path=path)
    return normalized


async def iter_markdown_files(store: DocumentStore, folder: str = "") -> AsyncIterator[str]:
    """Yield every markdown note below ``folder``, depth first."""

    listing = await store.list(folder)
    for file_path in listing.files:
        if file_path.lower().endswith(".md"):
            yield file_path
    for child in listing.folders:
        async for nested in iter_markdown_files(store, child):
            yield nested


@dataclass
class InMemoryVault:
    """Dictionary-backed vault used by tests and dry runs."""

    notes: dict[str, str] = field(default_factory=dict)
    folders: set[str] = field(default_factory=set)

    def __post_init__(self) -> None:
        self.notes = {normalize_vault_path(path): text for path, text in self.notes.items()}
        for path in list(self.notes):
            self._register_parents(path)

    async def read(self, path: str) -> str:
        key = normalize_vault_path(path)
        try:
            return self.notes[key]
        except KeyError:
            raise NoteNotFoundError(f"Note not found: {key}", path=key) from None

    async def write(self, path: str, text: str) -> None:
        key = normalize_vault_path(path)
        if key not in self.notes:
            raise NoteNotFoundError(f"Cannot write missing note: {key}", path=key)
        self.notes[key] = text

    async def create(self, path: str, text: str) -> None:
        key = normalize_vault_path(path)
        if not key:
            raise VaultError("Cannot create a note at the vault root", path=path)
        if key in self.notes:
            raise NoteExistsError(f"Note already exists: {key}", path=key)
        parent = posixpath.dirname(key)
        if parent and parent not in self.folders:
            raise NoteNotFoundError(f"Parent folder does not exist: {parent}", path=parent)
        self.notes[key] = text

    async def exists(self, path: str) -> bool:
        key = normalize_vault_path(path)
        return key in self.notes or key in self.folders

    async def list(self, folder: str) -> VaultListing:
        key = normalize_vault_path(folder)
        if key and key not in self.folders:
            raise NoteNotFoundError(f"Folder not found: {key}", path=key)
        files = sorted(path for path in self.notes if posixpath.dirname(path) == key)
        folders = sorted(path for path in self.folders if posixpath.dirname(path) == key)
        return VaultListing(folders=tuple(folders), files=tuple(files))

    async def ensure_directory(self, path: str) -> None:
        key = normalize_vault_path(path)
        if not key:
            return
        if key in self.notes:
            raise NoteExistsError(f"A note occupies the folder path: {key}", path=key)
        self.folders.add(key)
        self._register_parents(key)

    def _register_parents(self, path: str) -> None:
        parent = posixpath.dirname(path)
        while parent:
            self.folders.add(parent)
            parent = posixpath.dirname(parent)


class FileSystemVault:
    """Vault backed by a directory on disk.

    Blocking filesystem work runs in worker threads so the agent loop never
    stalls on disk IO. Dot-folders (``.obsidian``, ``.git``) are hidden from
    listings.
    """

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root).expanduser().resolve()
        if not self._root.is_dir():
            raise VaultError(f"Vault directory does not exist: {self._root}")

    @property
    def root(self) -> Path:
        return self._root

    async def read(self, path: str) -> str:
        target = self._resolve(path)
        if not target.is_file():
            raise NoteNotFoundError(f"Note not found: {normalize_vault_path(path)}", path=path)
        return await asyncio.to_thread(read_text, target)

    async def write(self, path: str, text: str) -> None:
        target = self._resolve(path)
        if not target.is_file():
            raise NoteNotFoundError(f"Cannot write missing note: {normalize_vault_path(path)}", path=path)
        await asyncio.to_thread(write_text, target, text)
        LOGGER.debug("Wrote %d chars to %s", len(text), target)

    async def create(self, path: str, text: str) -> None:
        target = self._resolve(path)
        if target == self._root:
            raise VaultError("Cannot create a note at the vault root", path=path)
        if target.exists():
            raise NoteExistsError(f"Note already exists: {normalize_vault_path(path)}", path=path)
        if not target.parent.is_dir():
            raise NoteNotFoundError(
                f"Parent folder does not exist: {normalize_vault_path(path)}", path=path
            )
        await asyncio.to_thread(write_text, target, text)
        LOGGER.debug("Created %s", target)

    async def exists(self, path: str) -> bool:
        return self._resolve(path).exists()

    async def list(self, folder: str) -> VaultListing:
        target = self._resolve(folder)
        if not target.is_dir():
            raise NoteNotFoundError(f"Folder not found: {normalize_vault_path(folder)}", path=folder)
        entries = await asyncio.to_thread(lambda: sorted(target.iterdir()))
        folders: list[str] = []
        files: list[str] = []
        for entry in entries:
            if entry.name.startswith("."):
                continue
            relative = entry.relative_to(self._root).as_posix()
            if entry.is_dir():
                folders.append(relative)
            else:
                files.append(relative)
        return VaultListing(folders=tuple(folders), files=tuple(files))

    async def ensure_directory(self, path: str) -> None:
        target = self._resolve(path)
        if target.exists() and not target.is_dir():
            raise NoteExistsError(
                f"A note occupies the folder path: {normalize_vault_path(path)}", path=path
            )
        await asyncio.to_thread(target.mkdir, parents=True, exist_ok=True)

    def _resolve(self, path: str) -> Path:
        relative = normalize_vault_path(path)
        return self._root / relative if relative else self._root
