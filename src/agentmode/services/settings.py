"""Persistent user settings.

Settings live in ``~/.agentmode/settings.json``. The API key is never written
in clear text: :class:`SecretVault` encrypts it with a Fernet key kept next to
the settings file. Values are resolved in three layers, file first, then
command-line overrides, then ``AGENTMODE_*`` environment variables.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Callable, Dict, Mapping

from cryptography.fernet import Fernet, InvalidToken

from ..utils.file_io import read_text, write_text

__all__ = [
    "Settings",
    "SettingsStore",
    "SecretVault",
    "redact_secret",
]

LOGGER = logging.getLogger(__name__)

SETTINGS_DIR = Path.home() / ".agentmode"
SETTINGS_VERSION = 1
_CIPHERTEXT_KEY = "api_key_ciphertext"
_BOOKKEEPING_KEYS = frozenset({"version", "secret_backend"})


def _as_bool(raw: str) -> bool:
    return raw.strip().lower() in {"1", "true", "yes", "on", "debug"}


# Environment variable -> (settings field, converter).
_ENVIRONMENT: Mapping[str, tuple[str, Callable[[str], Any]]] = {
    "AGENTMODE_API_KEY": ("api_key", str),
    "AGENTMODE_BASE_URL": ("base_url", str),
    "AGENTMODE_MODEL": ("model", str),
    "AGENTMODE_EMBEDDING_MODEL": ("embedding_model", str),
    "AGENTMODE_ORGANIZATION": ("organization", str),
    "AGENTMODE_VAULT": ("vault_path", str),
    "AGENTMODE_INDEX_DIR": ("index_dir", str),
    "AGENTMODE_CHAT_MODE": ("chat_mode", str),
    "AGENTMODE_AUTH_DOMAIN": ("auth_domain", str),
    "AGENTMODE_AUTH_CLIENT_ID": ("auth_client_id", str),
    "AGENTMODE_AUTH_AUDIENCE": ("auth_audience", str),
    "AGENTMODE_DEBUG_LOGGING": ("debug_logging", _as_bool),
    "AGENTMODE_REQUEST_TIMEOUT": ("request_timeout", float),
    "AGENTMODE_TEMPERATURE": ("temperature", float),
    "AGENTMODE_MAX_TOOL_ITERATIONS": ("max_tool_iterations", int),
    "AGENTMODE_MAX_CONTEXT_TOKENS": ("max_context_tokens", int),
}


@dataclass(slots=True)
class Settings:
    """Everything the CLI and the agent runtime read from configuration."""

    # Model provider
    base_url: str = "https://api.openai.com/v1"
    api_key: str = ""
    model: str = "gpt-4o"
    embedding_model: str = "text-embedding-3-small"
    temperature: float | None = None
    organization: str | None = None
    request_timeout: float = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    default_headers: dict[str, str] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)

    # Agent loop
    max_tool_iterations: int | None = 25  # None = unbounded
    max_context_tokens: int = 6_000
    chat_mode: str = "Agent"

    # Vault
    vault_path: str | None = None
    index_dir: str | None = None

    # Device login
    auth_domain: str = ""
    auth_client_id: str = ""
    auth_audience: str = ""

    debug_logging: bool = False


def _field_names() -> set[str]:
    return {item.name for item in fields(Settings)}


class SecretVault:
    """Fernet encryption for secrets stored in the settings file.

    Ciphertexts carry a ``"fernet:"`` prefix. The key file is created with
    owner-only permissions on first use.
    """

    strategy = "fernet"

    def __init__(self, *, key_path: Path | None = None) -> None:
        self.key_path = key_path or SETTINGS_DIR / "settings.key"
        self._cipher: Fernet | None = None

    def encrypt(self, secret: str) -> str:
        if not secret:
            return ""
        return f"{self.strategy}:{self._fernet().encrypt(secret.encode('utf-8')).decode('ascii')}"

    def decrypt(self, token: str | None) -> str:
        """Raise ``ValueError`` for tokens from another backend or another key."""
        if not token:
            return ""
        backend, separator, payload = token.partition(":")
        if not separator:
            backend, payload = self.strategy, token
        if backend != self.strategy:
            raise ValueError(f"Secret was stored by the {backend!r} backend")
        try:
            return self._fernet().decrypt(payload.encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            raise ValueError("Secret cannot be decrypted with this key") from exc

    def _fernet(self) -> Fernet:
        if self._cipher is None:
            if self.key_path.exists():
                key = self.key_path.read_bytes().strip()
            else:
                key = Fernet.generate_key()
                self.key_path.parent.mkdir(parents=True, exist_ok=True)
                fd = os.open(self.key_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
                with os.fdopen(fd, "wb") as handle:
                    handle.write(key)
            self._cipher = Fernet(key)
        return self._cipher


class SettingsStore:
    """Reads and writes :class:`Settings` as JSON."""

    def __init__(self, path: Path | None = None, *, vault: SecretVault | None = None) -> None:
        self.path = path or SETTINGS_DIR / "settings.json"
        self.vault = vault or SecretVault(key_path=self.path.with_suffix(".key"))

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Return the stored settings with ``overrides`` and the environment applied.

        A missing or unreadable file yields defaults. A file still holding a
        clear-text API key, or written by another format version, is rewritten.
        """

        stored = self._read()
        settings = Settings()
        if stored:
            api_key, legacy = self._recover_api_key(stored)
            settings = replace(Settings(**_known_fields(stored)), api_key=api_key)
            if legacy or stored.get("version") != SETTINGS_VERSION:
                try:
                    self.save(settings)
                except OSError as exc:
                    LOGGER.warning("Could not rewrite %s: %s", self.path, exc)

        if overrides:
            settings = _override(settings, overrides, "command line")
        return _override(settings, _environment_values(), "environment")

    def save(self, settings: Settings) -> Path:
        """Write ``settings`` atomically, encrypting the API key."""

        document = asdict(settings)
        api_key = document.pop("api_key")
        if api_key:
            document[_CIPHERTEXT_KEY] = self.vault.encrypt(api_key)
        document["version"] = SETTINGS_VERSION
        document["secret_backend"] = self.vault.strategy
        write_text(self.path, json.dumps(document, indent=2, sort_keys=True))
        LOGGER.debug("Saved settings to %s", self.path)
        return self.path

    def _read(self) -> Dict[str, Any]:
        try:
            document = json.loads(read_text(self.path))
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON (%s); using defaults", self.path, exc)
            return {}
        if not isinstance(document, dict):
            LOGGER.warning("Settings file %s does not hold a JSON object; using defaults", self.path)
            return {}
        return document

    def _recover_api_key(self, stored: Mapping[str, Any]) -> tuple[str, bool]:
        """Return the clear API key and whether it was stored unencrypted."""
        ciphertext = stored.get(_CIPHERTEXT_KEY)
        if ciphertext:
            try:
                return self.vault.decrypt(ciphertext), False
            except ValueError as exc:
                LOGGER.warning("Discarding stored API key: %s", exc)
                return "", False
        plaintext = stored.get("api_key") or ""
        if plaintext:
            LOGGER.info("Encrypting API key previously stored in clear text")
        return plaintext, bool(plaintext)


def _known_fields(stored: Mapping[str, Any]) -> Dict[str, Any]:
    names = _field_names() - {"api_key"}
    unknown = sorted(set(stored) - names - _BOOKKEEPING_KEYS - {"api_key", _CIPHERTEXT_KEY})
    if unknown:
        LOGGER.info("Ignoring unknown settings fields: %s", unknown)
    return {key: value for key, value in stored.items() if key in names}


def _environment_values() -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for variable, (name, convert) in _ENVIRONMENT.items():
        raw = os.environ.get(variable)
        if raw is None:
            continue
        try:
            values[name] = convert(raw)
        except ValueError:
            LOGGER.warning("Ignoring %s=%r: expected %s", variable, raw, getattr(convert, "__name__", "value"))
    return values


def _override(settings: Settings, values: Mapping[str, Any], source: str) -> Settings:
    names = _field_names()
    applied = {key: value for key, value in values.items() if key in names and value is not None}
    if not applied:
        return settings
    LOGGER.debug("Settings from %s: %s", source, sorted(applied))
    return replace(settings, **applied)


def redact_secret(value: str) -> str:
    """Mask all but the first and last two characters of ``value``."""
    secret = (value or "").strip()
    if len(secret) <= 4:
        return "*" * len(secret)
    return f"{secret[:2]}{'*' * (len(secret) - 4)}{secret[-2:]}"
