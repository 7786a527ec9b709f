"""User confirmation gate for mutating tools.

``edit_file`` and ``create_file`` never touch the vault directly. They prepare
their change, register a pending confirmation here and wait. A UI (or the CLI)
observes the pending record through listeners and resolves it with
:meth:`ConfirmationChannel.accept` or :meth:`ConfirmationChannel.reject`. Only
an accepted confirmation performs the mutation, exactly once.
"""

from __future__ import annotations

import asyncio
import logging
import posixpath
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Generic, TypeVar

from ...editor.line_diff import DiffLine, apply_diff, format_diff
from ...editor.line_edits import EditOperation, join_lines, split_lines
from ...services.vault import DocumentStore
from ..tools.errors import ConfirmationBusyError

__all__ = [
    "ConfirmationChannel",
    "ConfirmationGateway",
    "PendingCreateConfirmation",
    "PendingEditConfirmation",
    "PendingListener",
]

LOGGER = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


@dataclass(slots=True, frozen=True)
class PendingEditConfirmation:
    """A proposed edit awaiting the user's decision."""

    file_path: str
    instructions: str
    edits: tuple[EditOperation, ...]
    original_text: str
    diff: tuple[DiffLine, ...]
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=_utcnow)

    def formatted_diff(self) -> str:
        return format_diff(self.diff)

    def modified_text(self) -> str:
        return join_lines(apply_diff(split_lines(self.original_text), self.diff))


@dataclass(slots=True, frozen=True)
class PendingCreateConfirmation:
    """A proposed new note awaiting the user's decision."""

    file_path: str
    content: str
    explanation: str = ""
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=_utcnow)


PendingT = TypeVar("PendingT", PendingEditConfirmation, PendingCreateConfirmation)
PendingListener = Callable[[Any], None]


class ConfirmationChannel(Generic[PendingT]):
    """Holds at most one pending confirmation of a single kind.

    Listeners are called with the pending record when it is registered and
    with ``None`` once it is accepted or rejected.
    """

    def __init__(
        self,
        kind: str,
        *,
        apply: Callable[[PendingT], Awaitable[str]],
        describe_rejection: Callable[[PendingT, str | None], str],
    ) -> None:
        self.kind = kind
        self._apply = apply
        self._describe_rejection = describe_rejection
        self._listeners: list[Callable[[PendingT | None], None]] = []
        self._pending: PendingT | None = None
        self._future: asyncio.Future[str] | None = None

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def add_listener(self, listener: Callable[[PendingT | None], None]) -> Callable[[], None]:
        """Register ``listener`` and return a callable that removes it."""
        self._listeners.append(listener)
        return lambda: self.remove_listener(listener)

    def remove_listener(self, listener: Callable[[PendingT | None], None]) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def get_pending(self) -> PendingT | None:
        return self._pending

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    # ------------------------------------------------------------------
    # Request / resolve
    # ------------------------------------------------------------------

    async def request(self, record: PendingT) -> str:
        """Register ``record`` and wait until the user resolves it."""
        if self._pending is not None:
            raise ConfirmationBusyError(
                message=f"Another {self.kind} is already awaiting confirmation ({self._pending.file_path})",
                kind=self.kind,
            )
        future: asyncio.Future[str] = asyncio.get_running_loop().create_future()
        self._pending = record
        self._future = future
        LOGGER.debug("Pending %s registered: %s (%s)", self.kind, record.file_path, record.id)
        self._notify(record)
        try:
            return await future
        except asyncio.CancelledError:
            # The owning run was abandoned; drop the record without mutating.
            if self._future is future:
                self._take()
                self._notify(None)
            raise

    async def accept(self) -> None:
        """Apply the pending change; a no-op when nothing is pending."""
        taken = self._take()
        if taken is None:
            return
        record, future = taken
        self._notify(None)
        try:
            message = await self._apply(record)
        except Exception as exc:
            LOGGER.exception("Applying accepted %s for %s failed", self.kind, record.file_path)
            message = f"Error applying {self.kind} to {record.file_path}: {exc}"
        if not future.done():
            future.set_result(message)

    async def reject(self, reason: str | None = None) -> None:
        """Discard the pending change; a no-op when nothing is pending."""
        taken = self._take()
        if taken is None:
            return
        record, future = taken
        self._notify(None)
        LOGGER.debug("Pending %s rejected: %s", self.kind, record.file_path)
        if not future.done():
            future.set_result(self._describe_rejection(record, reason))

    def _take(self) -> tuple[PendingT, asyncio.Future[str]] | None:
        record, future = self._pending, self._future
        self._pending = None
        self._future = None
        if record is None or future is None:
            return None
        return record, future

    def _notify(self, record: PendingT | None) -> None:
        for listener in list(self._listeners):
            try:
                listener(record)
            except Exception:
                LOGGER.debug("Confirmation listener failed", exc_info=True)


class ConfirmationGateway:
    """Owns the edit and create confirmation channels for one agent core."""

    def __init__(self, vault: DocumentStore) -> None:
        self._vault = vault
        self.edits: ConfirmationChannel[PendingEditConfirmation] = ConfirmationChannel(
            "edit",
            apply=self._apply_edit,
            describe_rejection=_describe_edit_rejection,
        )
        self.creates: ConfirmationChannel[PendingCreateConfirmation] = ConfirmationChannel(
            "create",
            apply=self._apply_create,
            describe_rejection=_describe_create_rejection,
        )

    @property
    def has_pending(self) -> bool:
        return self.edits.has_pending or self.creates.has_pending

    async def request_edit(self, record: PendingEditConfirmation) -> str:
        return await self.edits.request(record)

    async def request_create(self, record: PendingCreateConfirmation) -> str:
        return await self.creates.request(record)

    async def _apply_edit(self, record: PendingEditConfirmation) -> str:
        await self._vault.write(record.file_path, record.modified_text())
        LOGGER.info("Applied %d edit(s) to %s", len(record.edits), record.file_path)
        return f"Changes applied to {record.file_path}.\n\n{record.formatted_diff()}"

    async def _apply_create(self, record: PendingCreateConfirmation) -> str:
        parent = posixpath.dirname(record.file_path)
        if parent:
            await self._vault.ensure_directory(parent)
        await self._vault.create(record.file_path, record.content)
        LOGGER.info("Created %s", record.file_path)
        return f"Created {record.file_path}."


def _describe_edit_rejection(record: PendingEditConfirmation, reason: str | None) -> str:
    message = f"The user rejected the changes to {record.file_path}; the note was not modified."
    if reason:
        message = f"{message} Reason: {reason}"
    return message


def _describe_create_rejection(record: PendingCreateConfirmation, reason: str | None) -> str:
    message = f"The user rejected creating {record.file_path}; no note was created."
    if reason:
        message = f"{message} Reason: {reason}"
    return message
