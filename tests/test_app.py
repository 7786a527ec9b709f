"""Tests for the command-line entry point."""

from __future__ import annotations

import io
import json
import logging
import os
from pathlib import Path

import pytest

from agentmode import app
from agentmode.ai.orchestration.confirmation import PendingCreateConfirmation
from agentmode.services.device_auth import DeviceAuthError, DeviceAuthState, TokenResponse
from agentmode.services.settings import Settings, SettingsStore
from tests.helpers import FakeModelClient, text_response, tool_call_response


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    for name in list(os.environ):
        if name.startswith("AGENTMODE_"):
            monkeypatch.delenv(name)
    monkeypatch.setenv("AGENTMODE_LOG_DIR", str(tmp_path / "logs"))
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def vault_dir(tmp_path: Path) -> Path:
    root = tmp_path / "vault"
    root.mkdir()
    (root / "A.md").write_text("one\ntwo\nthree", encoding="utf-8")
    return root


def _edit_turns() -> list:
    return [
        tool_call_response(
            (
                "call_1",
                "edit_file",
                {
                    "file_path": "A.md",
                    "instructions": "Capitalize line two",
                    "edits": [{"operation": "replace", "start_line": 2, "end_line": 2, "content": "TWO"}],
                },
            )
        ),
        text_response("Done."),
    ]


# ---------------------------------------------------------------------------
# chat
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_chat_applies_edit_after_terminal_confirmation(vault_dir: Path) -> None:
    out = io.StringIO()
    prompts: list[str] = []

    def answer(prompt: str) -> str:
        prompts.append(prompt)
        return "y"

    code = await app.run_chat(
        Settings(),
        "capitalize line two",
        vault_path=vault_dir,
        client=FakeModelClient(_edit_turns()),
        input_fn=answer,
        out=out,
    )

    assert code == 0
    assert (vault_dir / "A.md").read_text(encoding="utf-8") == "one\nTWO\nthree"
    assert len(prompts) == 1
    transcript = out.getvalue()
    assert "Proposed edit to A.md: Capitalize line two\n  one\n- two\n+ TWO\n  three" in transcript
    assert "[tool] edit_file" in transcript
    assert "[result] Changes applied to A.md." in transcript
    assert transcript.rstrip().endswith("Done.")


@pytest.mark.asyncio
async def test_chat_rejection_reason_reaches_the_model(vault_dir: Path) -> None:
    client = FakeModelClient(_edit_turns())

    code = await app.run_chat(
        Settings(),
        "capitalize line two",
        vault_path=vault_dir,
        client=client,
        input_fn=lambda prompt: "keep it lowercase",
        out=io.StringIO(),
    )

    assert code == 0
    assert (vault_dir / "A.md").read_text(encoding="utf-8") == "one\ntwo\nthree"
    tool_message = client.calls[1]["messages"][-1]
    assert tool_message["content"].endswith("Reason: keep it lowercase")


@pytest.mark.asyncio
async def test_chat_attaches_context_notes(vault_dir: Path) -> None:
    client = FakeModelClient([text_response("Three lines.")])

    code = await app.run_chat(
        Settings(),
        "how long is it?",
        vault_path=vault_dir,
        mode="ask",
        context_paths=["A.md"],
        client=client,
        out=io.StringIO(),
    )

    assert code == 0
    messages = client.calls[0]["messages"]
    assert "### A.md\n```markdown\none\ntwo\nthree\n```" in messages[0]["content"]
    assert "## Current Mode: Ask" in messages[0]["content"]
    assert messages[-1]["content"] == "how long is it?\n\nContext files: [[A.md]]"


@pytest.mark.asyncio
async def test_chat_without_api_key_exits_with_usage_error(vault_dir: Path) -> None:
    out = io.StringIO()

    assert await app.run_chat(Settings(), "hi", vault_path=vault_dir, out=out) == 2
    assert "No API key configured" in out.getvalue()


@pytest.mark.asyncio
async def test_chat_with_missing_context_note_fails(vault_dir: Path) -> None:
    out = io.StringIO()
    client = FakeModelClient([])

    code = await app.run_chat(
        Settings(), "hi", vault_path=vault_dir, context_paths=["Nope.md"], client=client, out=out
    )

    assert code == 1
    assert "Note not found: Nope.md" in out.getvalue()
    assert client.calls == []


@pytest.mark.asyncio
async def test_chat_reports_model_failure(vault_dir: Path) -> None:
    out = io.StringIO()

    code = await app.run_chat(
        Settings(), "hi", vault_path=vault_dir, client=FakeModelClient([RuntimeError("503")]), out=out
    )

    assert code == 1
    assert "Error: 503" in out.getvalue()


def test_describe_pending_create() -> None:
    record = PendingCreateConfirmation(file_path="New.md", content="# New", explanation="Start a log")

    assert app.describe_pending(record) == "Proposed new note New.md: Start a log\n# New"


# ---------------------------------------------------------------------------
# login
# ---------------------------------------------------------------------------


class _FakeAuthClient:
    def __init__(self, *, error: Exception | None = None) -> None:
        self._error = error
        self.closed = False

    async def start_device_auth(self) -> DeviceAuthState:
        return DeviceAuthState(
            device_code="dev",
            user_code="ABCD-EFGH",
            verification_uri="https://tenant.test/activate",
            verification_uri_complete="https://tenant.test/activate?user_code=ABCD-EFGH",
            expires_in=600,
        )

    async def poll_for_token(self, state: DeviceAuthState) -> TokenResponse:
        if self._error is not None:
            raise self._error
        return TokenResponse(access_token="access-123", refresh_token="refresh-456")

    async def get_user_info(self, access_token: str) -> dict:
        return {"sub": "user-1", "email": "me@example.com"}

    async def aclose(self) -> None:
        self.closed = True


@pytest.mark.asyncio
async def test_login_saves_access_token(tmp_path: Path) -> None:
    store = SettingsStore(tmp_path / "settings.json")
    auth = _FakeAuthClient()
    out = io.StringIO()

    code = await app.run_login(Settings(model="o3"), store, auth_client=auth, out=out)

    assert code == 0
    assert auth.closed
    assert "confirm the code ABCD-EFGH" in out.getvalue()
    assert "Logged in as me@example.com" in out.getvalue()
    saved = store.load()
    assert saved.api_key == "access-123"
    assert saved.model == "o3"


@pytest.mark.asyncio
async def test_login_failure_is_reported(tmp_path: Path) -> None:
    store = SettingsStore(tmp_path / "settings.json")
    auth = _FakeAuthClient(error=DeviceAuthError("access_denied", "User refused"))
    out = io.StringIO()

    code = await app.run_login(Settings(), store, auth_client=auth, out=out)

    assert code == 1
    assert "Login failed: access_denied: User refused" in out.getvalue()
    assert auth.closed
    assert not store.path.exists()


@pytest.mark.asyncio
async def test_login_requires_tenant_settings(tmp_path: Path) -> None:
    out = io.StringIO()

    assert await app.run_login(Settings(), SettingsStore(tmp_path / "s.json"), out=out) == 2
    assert "auth_domain" in out.getvalue()


# ---------------------------------------------------------------------------
# CLI parsing
# ---------------------------------------------------------------------------


def test_cli_overrides_are_coerced_to_field_types() -> None:
    overrides = app._coerce_cli_overrides(
        [
            "max_tool_iterations=none",
            "max_context_tokens=8000",
            "temperature=0.5",
            "debug_logging=yes",
            'default_headers={"X-Team": "notes"}',
            "model = o3",
        ]
    )

    assert overrides == {
        "max_tool_iterations": None,
        "max_context_tokens": 8000,
        "temperature": 0.5,
        "debug_logging": True,
        "default_headers": {"X-Team": "notes"},
        "model": "o3",
    }


@pytest.mark.parametrize("entry", ["model", "=x", "colour=blue", "debug_logging=maybe", "default_headers=[1]"])
def test_invalid_cli_overrides_raise(entry: str) -> None:
    with pytest.raises(ValueError):
        app._coerce_cli_overrides([entry])


def test_settings_command_prints_redacted_settings(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    path = tmp_path / "settings.json"
    SettingsStore(path).save(Settings(api_key="sk-abcdef"))

    code = app.main(["--settings", str(path), "--set", "model=o3", "settings"])

    assert code == 0
    printed = json.loads(capsys.readouterr().out)
    assert printed["path"] == str(path)
    assert printed["settings"]["model"] == "o3"
    assert printed["settings"]["api_key"] == "sk*****ef"


def test_invalid_override_exits_with_usage_error(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code = app.main(["--settings", str(tmp_path / "s.json"), "--set", "bogus=1", "settings"])

    assert code == 2
    assert "Unknown setting 'bogus'" in capsys.readouterr().err
