"""Agent loop orchestration: conversation types, stream assembly, dispatch and confirmation."""

from .stream_assembler import StreamAssembler, StreamProtocolError, assemble, merge_fragment
from .types import (
    ASK_MODE_REFUSAL,
    AgentEvent,
    AgentRunResult,
    ChatMode,
    ContextDocument,
    ImageAttachment,
    Message,
    ToolCall,
    ToolCallRecord,
)

__all__ = [
    "ASK_MODE_REFUSAL",
    "AgentEvent",
    "AgentRunResult",
    "ChatMode",
    "ContextDocument",
    "ImageAttachment",
    "Message",
    "StreamAssembler",
    "StreamProtocolError",
    "ToolCall",
    "ToolCallRecord",
    "assemble",
    "merge_fragment",
]
