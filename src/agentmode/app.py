"""Command-line entry point for the agentmode vault agent."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import mimetypes
import os
import sys
from dataclasses import asdict, replace
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, TextIO, get_args, get_origin, get_type_hints

import httpx

from .ai.client import AIClient, ApproxByteCounter, ClientSettings
from .ai.memory.embeddings import OpenAIEmbeddingProvider, VaultEmbeddingIndex, index_vault
from .ai.orchestration.confirmation import (
    ConfirmationChannel,
    ConfirmationGateway,
    PendingCreateConfirmation,
    PendingEditConfirmation,
)
from .ai.orchestration.message_builder import MessageBuilder
from .ai.orchestration.runner import AgentListener, AgentRunner, ModelClient, RunnerConfig
from .ai.orchestration.tool_dispatcher import ToolDispatcher
from .ai.orchestration.types import ChatMode, ContextDocument, ImageAttachment
from .services.device_auth import DeviceAuthClient, DeviceAuthError
from .services.settings import Settings, SettingsStore, redact_secret
from .services.vault import FileSystemVault, VaultError
from .utils import logging as logging_utils

_LOGGER = logging.getLogger(__name__)
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}
_INDEX_SUBDIR = Path(".agentmode") / "index"

InputFn = Callable[[str], str]


def configure_logging(debug: bool = False, *, force: bool = False) -> None:
    """Configure structured logging for the command-line run."""

    level = logging.DEBUG if debug else logging.INFO
    logging_utils.setup_logging(level, force=force)
    _LOGGER.debug("Logging configured (level=%s)", logging.getLevelName(level))


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        return active_store.load(overrides=overrides)
    except (OSError, ValueError) as exc:
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        return Settings()


def build_client_settings(settings: Settings) -> ClientSettings:
    return ClientSettings(
        base_url=settings.base_url,
        api_key=settings.api_key,
        model=settings.model,
        organization=settings.organization,
        request_timeout=settings.request_timeout,
        max_retries=settings.max_retries,
        retry_min_seconds=settings.retry_min_seconds,
        retry_max_seconds=settings.retry_max_seconds,
        default_headers=settings.default_headers or None,
        metadata=settings.metadata or None,
        debug_logging=settings.debug_logging,
        embedding_model=settings.embedding_model,
    )


def resolve_index_dir(settings: Settings, vault_root: Path) -> Path:
    if settings.index_dir:
        return Path(settings.index_dir).expanduser()
    return vault_root / _INDEX_SUBDIR


# -----------------------------------------------------------------------------
# Terminal confirmations
# -----------------------------------------------------------------------------


class TerminalConfirmations:
    """Prompts on the terminal whenever the gateway publishes a pending change.

    ``y`` accepts; any other answer rejects, and text other than ``n`` is
    passed along as the rejection reason.
    """

    def __init__(
        self,
        gateway: ConfirmationGateway,
        *,
        input_fn: InputFn = input,
        out: TextIO | None = None,
    ) -> None:
        self._input = input_fn
        self._out = out or sys.stdout
        self._tasks: set[asyncio.Task[None]] = set()
        self._removers = [
            gateway.edits.add_listener(lambda record: self._on_pending(gateway.edits, record)),
            gateway.creates.add_listener(lambda record: self._on_pending(gateway.creates, record)),
        ]

    def close(self) -> None:
        for remove in self._removers:
            remove()
        self._removers.clear()
        for task in self._tasks:
            task.cancel()

    def _on_pending(self, channel: ConfirmationChannel[Any], record: Any) -> None:
        if record is None:
            return
        task = asyncio.get_running_loop().create_task(self._prompt(channel, record))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _prompt(self, channel: ConfirmationChannel[Any], record: Any) -> None:
        self._out.write(f"\n{describe_pending(record)}\n")
        self._out.flush()
        answer = (await asyncio.to_thread(self._input, "Apply this change? [y/N or a reason] ")).strip()
        if answer.lower() in {"y", "yes"}:
            await channel.accept()
        elif answer.lower() in {"", "n", "no"}:
            await channel.reject()
        else:
            await channel.reject(answer)


def describe_pending(record: PendingEditConfirmation | PendingCreateConfirmation) -> str:
    if isinstance(record, PendingEditConfirmation):
        header = f"Proposed edit to {record.file_path}"
        if record.instructions:
            header += f": {record.instructions}"
        return f"{header}\n{record.formatted_diff()}"
    header = f"Proposed new note {record.file_path}"
    if record.explanation:
        header += f": {record.explanation}"
    return f"{header}\n{record.content}"


def _terminal_listener(out: TextIO) -> AgentListener:
    def on_content(text: str) -> None:
        out.write(text)
        out.flush()

    def on_tool_call(call_id: str, name: str) -> None:
        out.write(f"\n[tool] {name}\n")
        out.flush()

    def on_tool_result(call_id: str, result: str) -> None:
        first_line = result.splitlines()[0] if result else ""
        out.write(f"[result] {first_line}\n")
        out.flush()

    def on_complete(text: str) -> None:
        out.write("\n")
        out.flush()

    def on_error(message: str) -> None:
        out.write(f"\nError: {message}\n")
        out.flush()

    return AgentListener(
        on_content=on_content,
        on_tool_call=on_tool_call,
        on_tool_result=on_tool_result,
        on_complete=on_complete,
        on_error=on_error,
    )


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------


async def run_chat(
    settings: Settings,
    prompt: str,
    *,
    vault_path: Path | str | None = None,
    mode: ChatMode | str | None = None,
    context_paths: Sequence[str] = (),
    image_paths: Sequence[str] = (),
    client: ModelClient | None = None,
    input_fn: InputFn = input,
    out: TextIO | None = None,
) -> int:
    """Run one agent turn against a filesystem vault; returns the exit code."""

    stream = out or sys.stdout
    vault = FileSystemVault(Path(vault_path or settings.vault_path or Path.cwd()).expanduser())
    chat_mode = ChatMode.parse(mode or settings.chat_mode)

    if client is None and not settings.api_key:
        stream.write("No API key configured; set AGENTMODE_API_KEY or run 'agentmode login'.\n")
        return 2

    try:
        context_documents = [ContextDocument(path, await vault.read(path)) for path in context_paths]
        images = [_load_image(Path(path)) for path in image_paths]
    except (VaultError, OSError) as exc:
        stream.write(f"Error: {exc}\n")
        return 1

    owns_client = client is None
    if client is None:
        client = AIClient(build_client_settings(settings))

    index: VaultEmbeddingIndex | None = None
    if isinstance(client, AIClient):
        index_dir = resolve_index_dir(settings, vault.root)
        if index_dir.is_dir():
            index = VaultEmbeddingIndex(OpenAIEmbeddingProvider(client=client), index_dir=index_dir)
            await index.load()
        counter = client.get_token_counter(settings.model)
    else:
        counter = ApproxByteCounter(model_name=settings.model)

    gateway = ConfirmationGateway(vault)
    prompter = TerminalConfirmations(gateway, input_fn=input_fn, out=stream)
    runner = AgentRunner(
        client,
        ToolDispatcher(vault=vault, gateway=gateway, index=index),
        MessageBuilder(
            counter,
            model=settings.model,
            context_token_budget=settings.max_context_tokens,
            vault_name=vault.root.name,
        ),
        config=RunnerConfig(max_iterations=settings.max_tool_iterations, temperature=settings.temperature),
    )
    try:
        result = await runner.run(
            prompt,
            context_documents=context_documents,
            images=images,
            mode=chat_mode,
            listener=_terminal_listener(stream),
        )
    finally:
        prompter.close()
        if owns_client and isinstance(client, AIClient):
            await client.aclose()
    _LOGGER.info("Chat finished after %d iteration(s), %d tool call(s)", result.iterations, len(result.tool_calls))
    return 0 if result.ok else 1


async def run_index(settings: Settings, *, vault_path: Path | str | None = None, out: TextIO | None = None) -> int:
    stream = out or sys.stdout
    if not settings.api_key:
        stream.write("No API key configured; set AGENTMODE_API_KEY or run 'agentmode login'.\n")
        return 2
    vault = FileSystemVault(Path(vault_path or settings.vault_path or Path.cwd()).expanduser())
    client = AIClient(build_client_settings(settings))
    index_dir = resolve_index_dir(settings, vault.root)
    try:
        index = VaultEmbeddingIndex(OpenAIEmbeddingProvider(client=client), index_dir=index_dir)
        count = await index_vault(vault, index)
    finally:
        await client.aclose()
    stream.write(f"Indexed {count} note(s) into {index_dir}\n")
    return 0


async def run_login(
    settings: Settings,
    store: SettingsStore,
    *,
    auth_client: DeviceAuthClient | None = None,
    out: TextIO | None = None,
) -> int:
    """Run the device authorization flow and persist the access token as the API key."""

    stream = out or sys.stdout
    if auth_client is None:
        if not settings.auth_domain or not settings.auth_client_id:
            stream.write("Device login needs auth_domain and auth_client_id in the settings.\n")
            return 2
        auth_client = DeviceAuthClient(
            domain=settings.auth_domain,
            client_id=settings.auth_client_id,
            audience=settings.auth_audience or None,
        )
    try:
        state = await auth_client.start_device_auth()
        stream.write(
            f"Open {state.verification_uri_complete} and confirm the code {state.user_code}\n"
            f"(expires in {state.seconds_remaining() // 60} minutes)\n"
        )
        stream.flush()
        token = await auth_client.poll_for_token(state)
        user = await auth_client.get_user_info(token.access_token)
    except (DeviceAuthError, httpx.HTTPError) as exc:
        stream.write(f"Login failed: {exc}\n")
        return 1
    finally:
        await auth_client.aclose()

    store.save(replace(settings, api_key=token.access_token))
    stream.write(f"Logged in as {user.get('name') or user.get('email') or user.get('sub') or 'unknown user'}\n")
    return 0


def _load_image(path: Path) -> ImageAttachment:
    mime_type = mimetypes.guess_type(path.name)[0] or "image/png"
    return ImageAttachment(name=path.name, data=path.read_bytes(), mime_type=mime_type)


# -----------------------------------------------------------------------------
# Entry point
# -----------------------------------------------------------------------------


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point invoked by the `agentmode` console script."""

    args = _parse_cli_args(argv)
    debug = bool(args.debug) or _env_flag("AGENTMODE_DEBUG", default=False)
    configure_logging(debug)

    settings_path = args.settings_path or os.environ.get("AGENTMODE_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    store = SettingsStore(resolved_path)
    try:
        cli_overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        return 2
    if getattr(args, "model", None):
        cli_overrides["model"] = args.model
    settings = load_settings(resolved_path, store=store, overrides=cli_overrides or None)

    if settings.debug_logging and not debug:
        configure_logging(True, force=True)

    if args.command == "settings":
        _dump_settings(settings, store)
        return 0
    if args.command == "chat":
        return asyncio.run(
            run_chat(
                settings,
                args.prompt,
                vault_path=args.vault,
                mode=args.mode,
                context_paths=args.context,
                image_paths=args.image,
            )
        )
    if args.command == "index":
        return asyncio.run(run_index(settings, vault_path=args.vault))
    if args.command == "login":
        return asyncio.run(run_login(settings, store))
    raise AssertionError(f"unhandled command {args.command!r}")


def _parse_cli_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="agentmode",
        description="Chat with an agent that searches, reads and edits a vault of markdown notes.",
    )
    parser.add_argument("--settings", dest="settings_path", metavar="PATH", help="Override ~/.agentmode/settings.json.")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override a persisted setting for this run (repeatable).",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    chat = commands.add_parser("chat", help="Run one agent turn.")
    chat.add_argument("prompt")
    chat.add_argument("--vault", metavar="DIR", help="Vault root (defaults to the configured vault or cwd).")
    chat.add_argument("--mode", choices=[mode.value.lower() for mode in ChatMode], type=str.lower)
    chat.add_argument("--context", metavar="PATH", action="append", default=[], help="Attach a note as context.")
    chat.add_argument("--image", metavar="FILE", action="append", default=[], help="Attach an image.")
    chat.add_argument("--model", metavar="M")

    index = commands.add_parser("index", help="Build the embedding index for vault_search.")
    index.add_argument("--vault", metavar="DIR")

    commands.add_parser("login", help="Sign in with the device authorization flow.")
    commands.add_parser("settings", help="Print the effective settings with secrets redacted.")
    return parser.parse_args(argv)


def _dump_settings(settings: Settings, store: SettingsStore) -> None:
    payload = asdict(settings)
    payload["api_key"] = redact_secret(settings.api_key)
    print(json.dumps({"path": str(store.path), "settings": payload}, indent=2, sort_keys=True))


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    fields = Settings.__dataclass_fields__  # type: ignore[attr-defined]
    type_hints = get_type_hints(Settings)
    for entry in items:
        if "=" not in entry:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        key, raw_value = entry.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError("Override is missing a field name.")
        if key not in fields:
            raise ValueError(f"Unknown setting '{key}'.")
        overrides[key] = _coerce_value(type_hints.get(key, fields[key].type), raw_value.strip())
    return overrides


def _coerce_value(annotation: Any, raw_value: str) -> Any:
    origin = get_origin(annotation)
    args = [arg for arg in get_args(annotation) if arg is not type(None)]
    if origin is not None and origin not in {list, dict}:
        if raw_value.lower() in {"none", "null"} and len(args) < len(get_args(annotation)):
            return None
        annotation = args[0] if args else origin
    elif origin is not None:
        annotation = origin

    if annotation is bool:
        return _parse_bool(raw_value)
    if annotation is int:
        return int(raw_value, 10)
    if annotation is float:
        return float(raw_value)
    if annotation in {list, dict}:
        try:
            value = json.loads(raw_value)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Expected a JSON {annotation.__name__}") from exc
        if not isinstance(value, annotation):
            raise ValueError(f"Expected a JSON {annotation.__name__}")
        return value
    return raw_value


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Cannot coerce '{value}' to a boolean.")


def _env_flag(name: str, *, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUE_VALUES


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
