"""Core type definitions for the agent loop.

This module defines the immutable dataclasses that flow between the runner,
the tool dispatcher and callers consuming streamed agent events.
"""

from __future__ import annotations

import base64
import enum
from dataclasses import dataclass, field
from typing import Any, Literal, Mapping, Sequence

from openai.types.chat import ChatCompletionMessageParam

__all__ = [
    "ASK_MODE_REFUSAL",
    "AgentEvent",
    "AgentEventType",
    "AgentRunResult",
    "ChatMode",
    "ContextDocument",
    "ImageAttachment",
    "Message",
    "MessageRole",
    "ToolCall",
    "ToolCallRecord",
]


class ChatMode(str, enum.Enum):
    """Operating mode; only Agent mode may change the vault."""

    ASK = "Ask"
    AGENT = "Agent"

    @classmethod
    def parse(cls, value: "ChatMode | str | None") -> "ChatMode":
        if isinstance(value, ChatMode):
            return value
        text = (value or "").strip().lower()
        for member in cls:
            if member.value.lower() == text:
                return member
        raise ValueError(f"Unknown chat mode: {value!r}")


ASK_MODE_REFUSAL = (
    "I'm currently in Ask Mode, so I can't modify notes. "
    "Switch to Agent Mode if you'd like me to make this change."
)


# -----------------------------------------------------------------------------
# Message Type
# -----------------------------------------------------------------------------

MessageRole = Literal["system", "user", "assistant", "tool"]


@dataclass(slots=True, frozen=True)
class ToolCall:
    """A tool invocation requested by the model.

    ``arguments`` is the raw JSON text exactly as the model streamed it.
    """

    id: str
    name: str
    arguments: str = ""

    def to_param(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "ToolCall":
        function = payload.get("function") or {}
        return cls(
            id=str(payload.get("id") or ""),
            name=str(function.get("name") or ""),
            arguments=str(function.get("arguments") or ""),
        )


@dataclass(slots=True, frozen=True)
class Message:
    """Immutable chat message held in the runner's conversation buffer.

    Attributes:
        role: The role of the message sender.
        content: Plain text, or an ordered tuple of text/image content parts.
        tool_calls: Tool calls made by the assistant.
        tool_call_id: ID linking a tool result to its call.
        name: Optional tool name for tool messages.
    """

    role: MessageRole
    content: str | tuple[Mapping[str, Any], ...]
    tool_calls: tuple[ToolCall, ...] = ()
    tool_call_id: str | None = None
    name: str | None = None

    @property
    def text(self) -> str:
        """Return the textual portion of the content."""
        if isinstance(self.content, str):
            return self.content
        return "".join(
            str(part.get("text", "")) for part in self.content if part.get("type") == "text"
        )

    def to_chat_param(self) -> ChatCompletionMessageParam:
        """Convert to OpenAI's ChatCompletionMessageParam format."""
        content: Any = self.content if isinstance(self.content, str) else [dict(p) for p in self.content]
        payload: dict[str, Any] = {"role": self.role, "content": content}
        if self.tool_calls:
            payload["tool_calls"] = [call.to_param() for call in self.tool_calls]
            if not content:
                payload["content"] = None
        if self.tool_call_id is not None:
            payload["tool_call_id"] = self.tool_call_id
        if self.name is not None and self.role != "tool":
            payload["name"] = self.name
        return payload  # type: ignore[return-value]

    @classmethod
    def system(cls, content: str) -> Message:
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str | Sequence[Mapping[str, Any]]) -> Message:
        return cls(role="user", content=content if isinstance(content, str) else tuple(content))

    @classmethod
    def assistant(cls, content: str, tool_calls: Sequence[ToolCall] = ()) -> Message:
        return cls(role="assistant", content=content, tool_calls=tuple(tool_calls))

    @classmethod
    def tool(cls, content: str, tool_call_id: str, name: str | None = None) -> Message:
        return cls(role="tool", content=content, tool_call_id=tool_call_id, name=name)


# -----------------------------------------------------------------------------
# Attachments
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ContextDocument:
    """A note the user attached to the request."""

    path: str
    content: str


@dataclass(slots=True, frozen=True)
class ImageAttachment:
    """An image uploaded alongside the user prompt."""

    name: str
    data: bytes
    mime_type: str = "image/png"

    def data_url(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"


# -----------------------------------------------------------------------------
# Streamed events and results
# -----------------------------------------------------------------------------

AgentEventType = Literal[
    "content.delta",
    "tool_call.started",
    "tool_call.result",
    "completed",
    "error",
]


@dataclass(slots=True, frozen=True)
class AgentEvent:
    """One event on the streamed surface consumed by a UI or CLI."""

    type: AgentEventType
    content: str = ""
    tool_call_id: str | None = None
    tool_name: str | None = None
    iteration: int = 0


@dataclass(slots=True, frozen=True)
class ToolCallRecord:
    """Record of one executed tool call."""

    id: str
    name: str
    arguments: str
    result: str
    iteration: int


@dataclass(slots=True)
class AgentRunResult:
    """Outcome of :meth:`AgentRunner.run`."""

    final_text: str
    messages: list[Message] = field(default_factory=list)
    tool_calls: list[ToolCallRecord] = field(default_factory=list)
    iterations: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None
