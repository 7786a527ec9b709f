"""Base classes for agent tools.

Every tool turns a parameter mapping into the observation text the model
reads next. Expected failures are raised as :class:`ToolError` and rendered
by :meth:`BaseTool.run`; anything else propagates to the caller.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar, Mapping, Protocol, Sequence

from ...services.vault import DocumentStore
from ..orchestration.types import ASK_MODE_REFUSAL, ChatMode
from .errors import InvalidParameterError, MissingParameterError, ToolError

if TYPE_CHECKING:  # pragma: no cover
    from ..memory.embeddings import SearchHit
    from ..orchestration.confirmation import ConfirmationGateway


LOGGER = logging.getLogger(__name__)


class SearchIndex(Protocol):
    """Semantic index consumed by ``vault_search``."""

    def __len__(self) -> int:
        ...

    async def search(
        self,
        query: str,
        *,
        limit: int = 5,
        target_subpaths: Sequence[str] | None = None,
    ) -> list["SearchHit"]:
        ...


@dataclass(slots=True)
class ToolContext:
    """Runtime context provided to tool execution.

    Attributes:
        vault: Document store the tools read from and (after confirmation) write to.
        gateway: Confirmation gateway for mutating tools.
        index: Optional semantic index for ``vault_search``.
        mode: Current chat mode; Ask mode refuses mutating tools.
        call_id: Identifier of the tool call being executed (for tracing).
    """

    vault: DocumentStore
    gateway: "ConfirmationGateway"
    index: SearchIndex | None = None
    mode: ChatMode = ChatMode.AGENT
    call_id: str = ""


class BaseTool(ABC):
    """Abstract base class for all agent tools.

    Subclasses must implement:
    - `name`: Tool identifier
    - `execute()`: Core tool logic, returning observation text

    Example:
        class EchoTool(BaseTool):
            name = "echo"

            async def execute(self, context: ToolContext, params: dict) -> str:
                return params["text"]
    """

    name: ClassVar[str] = ""
    mutating: ClassVar[bool] = False

    async def run(self, context: ToolContext, params: Mapping[str, Any] | None = None) -> str:
        """Validate and execute, rendering :class:`ToolError` as observation text."""
        start_time = time.perf_counter()
        params = dict(params) if params else {}
        try:
            self.validate(params)
            result = await self.execute(context, params)
        except ToolError as exc:
            LOGGER.debug("Tool %s returned error %s", self.name, exc.to_dict())
            return exc.to_observation()
        finally:
            LOGGER.debug(
                "Tool %s finished in %.1fms (call_id=%s)",
                self.name,
                (time.perf_counter() - start_time) * 1000.0,
                context.call_id,
            )
        return result

    @abstractmethod
    async def execute(self, context: ToolContext, params: dict[str, Any]) -> str:
        """Execute the tool's core logic.

        Raises:
            ToolError: For expected error conditions.
        """
        ...

    def validate(self, params: dict[str, Any]) -> None:
        """Validate tool parameters before execution.

        Override to add custom validation. Raise ToolError for invalid inputs.
        """


class WriteTool(BaseTool):
    """Base class for tools that change the vault.

    Write tools short-circuit with a fixed refusal in Ask mode, before any
    validation, and otherwise delegate to :meth:`propose`, which must route
    the change through the confirmation gateway.
    """

    mutating: ClassVar[bool] = True

    async def run(self, context: ToolContext, params: Mapping[str, Any] | None = None) -> str:
        if context.mode is ChatMode.ASK:
            LOGGER.info("Refused %s in Ask mode", self.name)
            return ASK_MODE_REFUSAL
        return await BaseTool.run(self, context, params)

    async def execute(self, context: ToolContext, params: dict[str, Any]) -> str:
        return await self.propose(context, params)

    @abstractmethod
    async def propose(self, context: ToolContext, params: dict[str, Any]) -> str:
        """Prepare the change, wait for the user and return the outcome text."""
        ...


# -----------------------------------------------------------------------------
# Parameter helpers
# -----------------------------------------------------------------------------


def require_str(params: Mapping[str, Any], key: str, *, allow_empty: bool = False) -> str:
    value = params.get(key)
    if value is None:
        raise MissingParameterError(message=f"'{key}' is required", parameter=key)
    if not isinstance(value, str):
        raise InvalidParameterError(
            message=f"'{key}' must be a string", parameter=key, value=value, expected="string"
        )
    if not allow_empty and not value.strip():
        raise MissingParameterError(message=f"'{key}' must not be empty", parameter=key)
    return value


def optional_int(params: Mapping[str, Any], key: str) -> int | None:
    value = params.get(key)
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise InvalidParameterError(
            message=f"'{key}' must be an integer", parameter=key, value=value, expected="integer"
        )
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    raise InvalidParameterError(
        message=f"'{key}' must be an integer", parameter=key, value=value, expected="integer"
    )


def optional_bool(params: Mapping[str, Any], key: str, default: bool = False) -> bool:
    value = params.get(key)
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise InvalidParameterError(
        message=f"'{key}' must be a boolean", parameter=key, value=value, expected="boolean"
    )


__all__ = [
    "BaseTool",
    "SearchIndex",
    "ToolContext",
    "WriteTool",
    "optional_bool",
    "optional_int",
    "require_str",
]
