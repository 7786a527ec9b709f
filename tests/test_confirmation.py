"""Tests for the confirmation gateway."""

from __future__ import annotations

import asyncio

import pytest

from agentmode.ai.orchestration.confirmation import (
    ConfirmationGateway,
    PendingCreateConfirmation,
    PendingEditConfirmation,
)
from agentmode.ai.tools.errors import ConfirmationBusyError
from agentmode.editor.line_diff import compute_line_diff
from agentmode.editor.line_edits import EditOperation
from tests.helpers import RecordingVault, make_vault


def _edit_record(original: str = "one\ntwo\nthree", modified: str = "one\nTWO\nthree") -> PendingEditConfirmation:
    return PendingEditConfirmation(
        file_path="A.md",
        instructions="capitalize",
        edits=(EditOperation("replace", 2, 2, "TWO"),),
        original_text=original,
        diff=tuple(compute_line_diff(original, modified)),
    )


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_accept_without_pending_is_a_no_op(vault: RecordingVault, gateway: ConfirmationGateway) -> None:
    seen: list[object] = []
    gateway.edits.add_listener(seen.append)

    await gateway.edits.accept()
    await gateway.creates.reject("nothing to reject")

    assert seen == []
    assert vault.writes == [] and vault.creates == []


@pytest.mark.asyncio
async def test_accept_applies_exactly_once_and_notifies(vault: RecordingVault, gateway: ConfirmationGateway) -> None:
    seen: list[object] = []
    gateway.edits.add_listener(seen.append)
    record = _edit_record()

    task = asyncio.create_task(gateway.request_edit(record))
    await _settle()
    assert seen == [record]
    assert gateway.edits.get_pending() is record

    await gateway.edits.accept()
    await gateway.edits.accept()
    result = await task

    assert result.startswith("Changes applied to A.md.")
    assert gateway.edits.get_pending() is None
    assert seen == [record, None]
    assert vault.writes == [("A.md", "one\nTWO\nthree")]


@pytest.mark.asyncio
async def test_reject_echoes_reason_and_skips_mutation(vault: RecordingVault, gateway: ConfirmationGateway) -> None:
    task = asyncio.create_task(
        gateway.request_create(PendingCreateConfirmation(file_path="New.md", content="x"))
    )
    await _settle()

    await gateway.creates.reject("wrong folder")

    assert await task == "The user rejected creating New.md; no note was created. Reason: wrong folder"
    assert vault.creates == []
    assert not await vault.exists("New.md")


@pytest.mark.asyncio
async def test_second_request_of_same_kind_is_refused(gateway: ConfirmationGateway) -> None:
    first = _edit_record()
    task = asyncio.create_task(gateway.request_edit(first))
    await _settle()

    with pytest.raises(ConfirmationBusyError):
        await gateway.request_edit(_edit_record())

    assert gateway.edits.get_pending() is first
    await gateway.edits.reject()
    await task


@pytest.mark.asyncio
async def test_channels_are_independent(gateway: ConfirmationGateway) -> None:
    edit_task = asyncio.create_task(gateway.request_edit(_edit_record()))
    create_task = asyncio.create_task(
        gateway.request_create(PendingCreateConfirmation(file_path="New.md", content=""))
    )
    await _settle()

    assert gateway.edits.has_pending and gateway.creates.has_pending

    await gateway.creates.accept()
    assert await create_task == "Created New.md."
    assert gateway.edits.has_pending

    await gateway.edits.reject()
    await edit_task
    assert not gateway.has_pending


@pytest.mark.asyncio
async def test_apply_failure_resolves_with_error_text() -> None:
    vault = make_vault({})
    gateway = ConfirmationGateway(vault)
    task = asyncio.create_task(gateway.request_edit(_edit_record()))
    await _settle()

    await gateway.edits.accept()

    assert (await task).startswith("Error applying edit to A.md:")


@pytest.mark.asyncio
async def test_cancelled_request_clears_pending(gateway: ConfirmationGateway) -> None:
    seen: list[object] = []
    gateway.edits.add_listener(seen.append)
    task = asyncio.create_task(gateway.request_edit(_edit_record()))
    await _settle()

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert gateway.edits.get_pending() is None
    assert seen[-1] is None


@pytest.mark.asyncio
async def test_removed_listener_is_not_called(gateway: ConfirmationGateway) -> None:
    seen: list[object] = []
    remove = gateway.creates.add_listener(seen.append)
    remove()
    remove()

    task = asyncio.create_task(gateway.request_create(PendingCreateConfirmation(file_path="N.md", content="")))
    await _settle()
    await gateway.creates.reject()
    await task

    assert seen == []


@pytest.mark.asyncio
async def test_failing_listener_does_not_block_confirmation(gateway: ConfirmationGateway) -> None:
    def broken(_record: object) -> None:
        raise RuntimeError("ui went away")

    gateway.edits.add_listener(broken)
    task = asyncio.create_task(gateway.request_edit(_edit_record()))
    await _settle()

    await gateway.edits.reject()

    assert (await task).startswith("The user rejected the changes to A.md")


def test_pending_edit_rebuilds_modified_text() -> None:
    record = _edit_record("a\nb\n", "a\nB\nc\n")

    assert record.modified_text() == "a\nB\nc\n"
