"""OAuth 2.0 device authorization flow: HTTP client and token poller.

The poller is a small state machine (idle, polling, then resolved, timed out,
failed or cancelled) driven by a single ``loop.call_later`` handle. A status
check is only issued while the poller is active, and the active flag is
re-checked once the response arrives, so stopping the poller while a request
is in flight never leads to a late resolution.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Mapping

import httpx

__all__ = [
    "DEVICE_CODE_GRANT",
    "DeviceAuthCancelled",
    "DeviceAuthClient",
    "DeviceAuthError",
    "DeviceAuthPoller",
    "DeviceAuthState",
    "DeviceAuthTimeout",
    "PollerState",
    "TokenResponse",
]

LOGGER = logging.getLogger(__name__)

DEVICE_CODE_GRANT = "urn:ietf:params:oauth:grant-type:device_code"
DEFAULT_SCOPE = "openid profile email offline_access"
POLL_WINDOW_SECONDS = 300
SLOW_DOWN_INCREMENT = 5


# -----------------------------------------------------------------------------
# Errors
# -----------------------------------------------------------------------------


class DeviceAuthError(Exception):
    """OAuth error response (``error`` / ``error_description``) or transport failure."""

    def __init__(self, code: str, description: str = "") -> None:
        self.code = code
        self.description = description
        super().__init__(f"{code}: {description}" if description else code)


class DeviceAuthTimeout(DeviceAuthError):
    """Raised when the user did not authorize the device in time."""

    def __init__(self, description: str = "Timed out waiting for device authorization") -> None:
        super().__init__("timeout", description)


class DeviceAuthCancelled(DeviceAuthError):
    """Raised to waiters when polling is stopped before it resolves."""

    def __init__(self) -> None:
        super().__init__("cancelled", "Device authorization polling was stopped")


# -----------------------------------------------------------------------------
# Payloads
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class DeviceAuthState:
    """Response of the device-code endpoint."""

    device_code: str
    user_code: str
    verification_uri: str
    verification_uri_complete: str
    expires_in: int
    interval: int = 5
    issued_at: float = field(default_factory=time.monotonic)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "DeviceAuthState":
        try:
            verification_uri = str(payload["verification_uri"])
            return cls(
                device_code=str(payload["device_code"]),
                user_code=str(payload["user_code"]),
                verification_uri=verification_uri,
                verification_uri_complete=str(payload.get("verification_uri_complete") or verification_uri),
                expires_in=int(payload.get("expires_in", 900)),
                interval=max(1, int(payload.get("interval", 5))),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise DeviceAuthError("invalid_response", f"Malformed device code response: {exc}") from exc

    def seconds_remaining(self, now: float | None = None) -> int:
        """Seconds left before the device code expires (never negative)."""
        current = time.monotonic() if now is None else now
        return max(0, int(math.ceil(self.issued_at + self.expires_in - current)))


@dataclass(slots=True, frozen=True)
class TokenResponse:
    access_token: str
    token_type: str = "Bearer"
    expires_in: int = 0
    refresh_token: str | None = None
    id_token: str | None = None
    scope: str | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "TokenResponse":
        token = payload.get("access_token")
        if not isinstance(token, str) or not token:
            raise DeviceAuthError("invalid_response", "Token response is missing access_token")
        return cls(
            access_token=token,
            token_type=str(payload.get("token_type") or "Bearer"),
            expires_in=int(payload.get("expires_in") or 0),
            refresh_token=payload.get("refresh_token"),
            id_token=payload.get("id_token"),
            scope=payload.get("scope"),
        )

    def expiry_timestamp(self, now: float | None = None) -> int:
        """Absolute expiry as a unix timestamp."""
        return int((time.time() if now is None else now) + self.expires_in)


# -----------------------------------------------------------------------------
# Poller
# -----------------------------------------------------------------------------


class PollerState(str, Enum):
    IDLE = "idle"
    POLLING = "polling"
    RESOLVED = "resolved"
    TIMED_OUT = "timed_out"
    FAILED = "failed"
    CANCELLED = "cancelled"


TokenCheck = Callable[[str], Awaitable[TokenResponse]]


class DeviceAuthPoller:
    """Polls the token endpoint until the user authorizes the device.

    ``check`` issues one status check and either returns the token or raises
    :class:`DeviceAuthError`; ``authorization_pending`` keeps polling and
    ``slow_down`` restarts the timer ``SLOW_DOWN_INCREMENT`` seconds slower.
    Polling gives up after ``ceil(POLL_WINDOW_SECONDS / interval)`` checks.
    """

    def __init__(
        self,
        check: TokenCheck,
        device_code: str,
        interval: float,
        *,
        max_attempts: int | None = None,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._check = check
        self._device_code = device_code
        self._interval = float(interval)
        self._max_attempts = max_attempts or max(1, math.ceil(POLL_WINDOW_SECONDS / interval))
        self._attempts = 0
        self._state = PollerState.IDLE
        self._active = False
        self._timer: asyncio.TimerHandle | None = None
        self._tick_task: asyncio.Task[None] | None = None
        self._future: asyncio.Future[TokenResponse] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def state(self) -> PollerState:
        return self._state

    @property
    def active(self) -> bool:
        return self._active

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    @property
    def interval(self) -> float:
        return self._interval

    def start(self) -> "asyncio.Future[TokenResponse]":
        """Enter the polling state and schedule the first check."""
        if self._state is not PollerState.IDLE:
            raise RuntimeError(f"Poller already started (state={self._state.value})")
        self._loop = asyncio.get_running_loop()
        self._future = self._loop.create_future()
        self._active = True
        self._state = PollerState.POLLING
        LOGGER.debug("Device auth polling started (interval=%ss, max_attempts=%d)", self._interval, self._max_attempts)
        self._schedule()
        return self._future

    async def wait(self) -> TokenResponse:
        """Start polling if needed and return the token once authorized."""
        future = self._future if self._future is not None else self.start()
        return await future

    def stop(self) -> None:
        """Stop polling. Safe to call repeatedly and after resolution."""
        if not self._active:
            return
        self._active = False
        self._cancel_timer()
        self._state = PollerState.CANCELLED
        if self._future is not None and not self._future.done():
            self._future.set_exception(DeviceAuthCancelled())
        LOGGER.debug("Device auth polling stopped after %d attempt(s)", self._attempts)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _schedule(self) -> None:
        if not self._active or self._loop is None:
            return
        self._cancel_timer()
        self._timer = self._loop.call_later(self._interval, self._on_timer)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timer(self) -> None:
        self._timer = None
        if not self._active or self._loop is None:
            return
        self._tick_task = self._loop.create_task(self._tick())

    async def _tick(self) -> None:
        if not self._active:
            return
        self._attempts += 1
        try:
            token = await self._check(self._device_code)
        except DeviceAuthError as exc:
            if not self._active:
                return
            self._handle_error(exc)
            return
        except Exception as exc:
            if not self._active:
                return
            LOGGER.warning("Device auth status check failed: %s", exc)
            self._finish(PollerState.FAILED, error=exc)
            return
        if not self._active:
            return
        self._finish(PollerState.RESOLVED, token=token)

    def _handle_error(self, exc: DeviceAuthError) -> None:
        if exc.code == "authorization_pending":
            self._continue_or_time_out()
        elif exc.code == "slow_down":
            self._interval += SLOW_DOWN_INCREMENT
            LOGGER.info("Device auth server asked to slow down; interval now %ss", self._interval)
            self._continue_or_time_out()
        elif exc.code == "expired_token":
            self._finish(PollerState.TIMED_OUT, error=DeviceAuthTimeout("The device code expired"))
        else:
            LOGGER.warning("Device auth rejected: %s", exc)
            self._finish(PollerState.FAILED, error=exc)

    def _continue_or_time_out(self) -> None:
        if self._attempts >= self._max_attempts:
            self._finish(PollerState.TIMED_OUT, error=DeviceAuthTimeout())
            return
        self._schedule()

    def _finish(
        self,
        state: PollerState,
        *,
        token: TokenResponse | None = None,
        error: BaseException | None = None,
    ) -> None:
        self._active = False
        self._cancel_timer()
        self._state = state
        LOGGER.debug("Device auth polling finished: %s after %d attempt(s)", state.value, self._attempts)
        if self._future is None or self._future.done():
            return
        if error is not None:
            self._future.set_exception(error)
        else:
            self._future.set_result(token)  # type: ignore[arg-type]


# -----------------------------------------------------------------------------
# HTTP client
# -----------------------------------------------------------------------------


class DeviceAuthClient:
    """Talks to an Auth0-style tenant using the device authorization grant."""

    def __init__(
        self,
        *,
        domain: str,
        client_id: str,
        audience: str | None = None,
        scope: str = DEFAULT_SCOPE,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        if not domain or not client_id:
            raise ValueError("domain and client_id are required for device authorization")
        base_url = domain if domain.startswith(("http://", "https://")) else f"https://{domain}"
        self._client_id = client_id
        self._audience = audience or None
        self._scope = scope
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(base_url=base_url, timeout=httpx.Timeout(timeout))
        self._poller: DeviceAuthPoller | None = None

    async def start_device_auth(self) -> DeviceAuthState:
        data = {"client_id": self._client_id, "scope": self._scope}
        if self._audience:
            data["audience"] = self._audience
        payload = await self._post_form("/oauth/device/code", data)
        state = DeviceAuthState.from_payload(payload)
        LOGGER.info("Device authorization started; user code %s", state.user_code)
        return state

    async def check_token(self, device_code: str) -> TokenResponse:
        """Issue one token status check; raises :class:`DeviceAuthError` while not yet authorized."""
        payload = await self._post_form(
            "/oauth/token",
            {"grant_type": DEVICE_CODE_GRANT, "device_code": device_code, "client_id": self._client_id},
        )
        return TokenResponse.from_payload(payload)

    async def refresh(self, refresh_token: str) -> TokenResponse:
        payload = await self._post_form(
            "/oauth/token",
            {"grant_type": "refresh_token", "refresh_token": refresh_token, "client_id": self._client_id},
        )
        return TokenResponse.from_payload(payload)

    async def get_user_info(self, access_token: str) -> Dict[str, Any]:
        response = await self._http.get("/userinfo", headers={"Authorization": f"Bearer {access_token}"})
        payload = self._decode(response)
        if response.is_error:
            raise _error_from_payload(payload, response.status_code)
        return payload

    async def poll_for_token(self, state: DeviceAuthState) -> TokenResponse:
        """Poll until the user authorizes ``state``; only one poller runs at a time."""
        self.stop_polling()
        self._poller = DeviceAuthPoller(self.check_token, state.device_code, state.interval)
        return await self._poller.wait()

    def stop_polling(self) -> None:
        if self._poller is not None:
            self._poller.stop()

    async def aclose(self) -> None:
        self.stop_polling()
        if self._owns_client:
            await self._http.aclose()

    async def _post_form(self, path: str, data: Mapping[str, str]) -> Dict[str, Any]:
        response = await self._http.post(path, data=dict(data))
        payload = self._decode(response)
        if response.is_error:
            raise _error_from_payload(payload, response.status_code)
        return payload

    @staticmethod
    def _decode(response: httpx.Response) -> Dict[str, Any]:
        try:
            payload = response.json()
        except ValueError:
            payload = None
        if not isinstance(payload, dict):
            if response.is_error:
                return {}
            raise DeviceAuthError("invalid_response", f"Expected a JSON object from {response.request.url}")
        return payload


def _error_from_payload(payload: Mapping[str, Any], status_code: int) -> DeviceAuthError:
    code = str(payload.get("error") or f"http_{status_code}")
    description = str(payload.get("error_description") or "")
    return DeviceAuthError(code, description)
