"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from agentmode.ai.orchestration.confirmation import ConfirmationGateway
from agentmode.ai.orchestration.tool_dispatcher import ToolDispatcher
from tests.helpers import RecordingVault, make_vault


@pytest.fixture
def vault() -> RecordingVault:
    return make_vault(
        {
            "A.md": "one\ntwo\nthree",
            "a.md": "# Lowercase note",
            "folder/b.md": "nested note",
        }
    )


@pytest.fixture
def gateway(vault: RecordingVault) -> ConfirmationGateway:
    return ConfirmationGateway(vault)


@pytest.fixture
def dispatcher(vault: RecordingVault, gateway: ConfirmationGateway) -> ToolDispatcher:
    return ToolDispatcher(vault=vault, gateway=gateway)
