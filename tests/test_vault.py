"""Tests for the in-memory and filesystem vaults."""

from __future__ import annotations

from pathlib import Path

import pytest

from agentmode.services.vault import (
    DocumentStore,
    FileSystemVault,
    InMemoryVault,
    NoteExistsError,
    NoteNotFoundError,
    VaultError,
    VaultListing,
    iter_markdown_files,
    normalize_vault_path,
)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("", ""),
        (None, ""),
        ("/", ""),
        ("./", ""),
        ("/Projects/plan.md", "Projects/plan.md"),
        ("Projects\\2026\\plan.md", "Projects/2026/plan.md"),
        ("a/./b/../c.md", "a/c.md"),
        (" folder/ ", "folder"),
    ],
)
def test_normalize_vault_path(raw: str | None, expected: str) -> None:
    assert normalize_vault_path(raw) == expected


@pytest.mark.parametrize("raw", ["..", "../x.md", "a/../../x.md"])
def test_normalize_vault_path_rejects_escapes(raw: str) -> None:
    with pytest.raises(VaultError):
        normalize_vault_path(raw)


# ---------------------------------------------------------------------------
# InMemoryVault
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_in_memory_vault_registers_parent_folders() -> None:
    vault = InMemoryVault(notes={"/a/b/c.md": "x", "top.md": "y"})

    assert vault.folders == {"a", "a/b"}
    assert await vault.list("") == VaultListing(folders=("a",), files=("top.md",))
    assert await vault.list("a") == VaultListing(folders=("a/b",), files=())
    assert await vault.read("a/b/c.md") == "x"
    assert isinstance(vault, DocumentStore)


@pytest.mark.asyncio
async def test_in_memory_vault_write_and_create_rules() -> None:
    vault = InMemoryVault(notes={"a.md": "x"})

    with pytest.raises(NoteNotFoundError):
        await vault.write("missing.md", "x")
    with pytest.raises(NoteExistsError):
        await vault.create("a.md", "x")
    with pytest.raises(NoteNotFoundError):
        await vault.create("new/b.md", "x")
    with pytest.raises(NoteNotFoundError):
        await vault.read("nope.md")
    with pytest.raises(NoteNotFoundError):
        await vault.list("nope")

    await vault.ensure_directory("new/deeper")
    await vault.create("new/deeper/b.md", "body")

    assert await vault.exists("new")
    assert await vault.read("new/deeper/b.md") == "body"
    with pytest.raises(NoteExistsError):
        await vault.ensure_directory("a.md")


# ---------------------------------------------------------------------------
# FileSystemVault
# ---------------------------------------------------------------------------


@pytest.fixture
def vault_dir(tmp_path: Path) -> Path:
    root = tmp_path / "vault"
    (root / "Projects").mkdir(parents=True)
    (root / ".obsidian").mkdir()
    (root / "Projects" / "plan.md").write_text("# Plan\r\nship it\r\n", encoding="utf-8")
    (root / "inbox.md").write_text("todo", encoding="utf-8")
    (root / "image.png").write_bytes(b"\x89PNG")
    return root


def test_filesystem_vault_requires_existing_directory(tmp_path: Path) -> None:
    with pytest.raises(VaultError):
        FileSystemVault(tmp_path / "missing")


@pytest.mark.asyncio
async def test_filesystem_vault_reads_and_lists(vault_dir: Path) -> None:
    vault = FileSystemVault(vault_dir)

    assert await vault.read("Projects/plan.md") == "# Plan\nship it\n"
    assert await vault.list("/") == VaultListing(folders=("Projects",), files=("image.png", "inbox.md"))
    assert await vault.list("Projects") == VaultListing(folders=(), files=("Projects/plan.md",))
    with pytest.raises(NoteNotFoundError):
        await vault.read("Projects")
    with pytest.raises(NoteNotFoundError):
        await vault.list("inbox.md")


@pytest.mark.asyncio
async def test_filesystem_vault_write_and_create(vault_dir: Path) -> None:
    vault = FileSystemVault(vault_dir)

    await vault.write("inbox.md", "done")
    with pytest.raises(NoteNotFoundError):
        await vault.write("ghost.md", "x")
    with pytest.raises(NoteExistsError):
        await vault.create("inbox.md", "x")
    with pytest.raises(NoteNotFoundError):
        await vault.create("Archive/2026/old.md", "x")

    await vault.ensure_directory("Archive/2026")
    await vault.create("Archive/2026/old.md", "archived")

    assert (vault_dir / "inbox.md").read_text(encoding="utf-8") == "done"
    assert (vault_dir / "Archive" / "2026" / "old.md").read_text(encoding="utf-8") == "archived"
    assert await vault.exists("Archive/2026")
    with pytest.raises(VaultError):
        await vault.create("../escape.md", "x")


@pytest.mark.asyncio
async def test_iter_markdown_files_walks_depth_first(vault_dir: Path) -> None:
    (vault_dir / "Projects" / "Sub").mkdir()
    (vault_dir / "Projects" / "Sub" / "deep.MD").write_text("deep", encoding="utf-8")
    vault = FileSystemVault(vault_dir)

    found = [path async for path in iter_markdown_files(vault)]

    assert found == ["inbox.md", "Projects/plan.md", "Projects/Sub/deep.MD"]
