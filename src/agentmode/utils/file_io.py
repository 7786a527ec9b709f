"""Text file helpers for notes, index records and the settings file."""

from __future__ import annotations

import codecs
import os
import tempfile
from pathlib import Path

__all__ = ["read_text", "write_text"]

_UTF16_BOMS = {codecs.BOM_UTF16_LE: "utf-16-le", codecs.BOM_UTF16_BE: "utf-16-be"}


def read_text(path: Path | str) -> str:
    """Decode ``path`` and normalize every line ending to ``\\n``.

    UTF-8 is assumed unless the file starts with a UTF-16 byte order mark; a
    UTF-8 BOM is dropped.
    """

    raw = Path(path).read_bytes()
    encoding = next((name for bom, name in _UTF16_BOMS.items() if raw.startswith(bom)), "utf-8-sig")
    text = raw.decode(encoding).lstrip("\ufeff")
    return text.replace("\r\n", "\n").replace("\r", "\n")


def write_text(path: Path | str, content: str) -> Path:
    """Write ``content`` as UTF-8 through a temporary sibling and ``os.replace``.

    Readers never observe a half-written file; missing parent directories are
    created.
    """

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, scratch = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".part")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(scratch, target)
    except BaseException:
        Path(scratch).unlink(missing_ok=True)
        raise
    return target
