"""Agent Runner: the reason / act / observe loop.

Each iteration streams one model response through the :class:`StreamAssembler`,
echoing text as it arrives. A response without tool calls ends the run; its
text is the final answer. Otherwise every tool call is executed in order and
its observation appended to the conversation before the model is called
again.

Only request-level and stream-protocol failures end a run early. Argument
parse errors and tool failures become observations the model can react to.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Protocol, Sequence, runtime_checkable

from .message_builder import MessageBuilder, VisionNotSupportedError
from .stream_assembler import StreamAssembler
from .tool_dispatcher import ToolDispatcher
from .types import (
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
    "AgentListener",
    "AgentRunner",
    "ModelClient",
    "RunnerConfig",
]

LOGGER = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Protocols
# -----------------------------------------------------------------------------


@runtime_checkable
class ModelClient(Protocol):
    """Protocol for model clients that stream partial assistant messages.

    Each streamed event exposes ``delta`` (a partial message dict) and
    ``finish_reason``. :class:`~agentmode.ai.client.AIClient` conforms.
    """

    def stream_chat(
        self,
        messages: Sequence[Mapping[str, Any]],
        *,
        tools: Sequence[Mapping[str, Any]] | None = None,
        temperature: float | None = None,
        **kwargs: Any,
    ) -> AsyncIterator[Any]:
        ...


@dataclass(slots=True)
class AgentListener:
    """Optional callbacks mirroring the streamed event surface."""

    on_content: Callable[[str], None] | None = None
    on_tool_call: Callable[[str, str], None] | None = None
    on_tool_result: Callable[[str, str], None] | None = None
    on_complete: Callable[[str], None] | None = None
    on_error: Callable[[str], None] | None = None

    def dispatch(self, event: AgentEvent) -> None:
        try:
            if event.type == "content.delta" and self.on_content:
                self.on_content(event.content)
            elif event.type == "tool_call.started" and self.on_tool_call:
                self.on_tool_call(event.tool_call_id or "", event.tool_name or "")
            elif event.type == "tool_call.result" and self.on_tool_result:
                self.on_tool_result(event.tool_call_id or "", event.content)
            elif event.type == "completed" and self.on_complete:
                self.on_complete(event.content)
            elif event.type == "error" and self.on_error:
                self.on_error(event.content)
        except Exception:
            LOGGER.debug("Agent listener failed for %s", event.type, exc_info=True)


# -----------------------------------------------------------------------------
# Runner Configuration
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class RunnerConfig:
    """Configuration for the agent runner.

    Attributes:
        max_iterations: Maximum model calls per run; ``None`` means unbounded.
        temperature: Sampling temperature passed to the model (``None`` = provider default).
    """

    max_iterations: int | None = 25
    temperature: float | None = None


@dataclass(slots=True)
class _RunState:
    messages: list[Message] = field(default_factory=list)
    tool_calls: list[ToolCallRecord] = field(default_factory=list)
    iterations: int = 0
    final_text: str = ""
    error: str | None = None

    def result(self) -> AgentRunResult:
        return AgentRunResult(
            final_text=self.final_text,
            messages=list(self.messages),
            tool_calls=list(self.tool_calls),
            iterations=self.iterations,
            error=self.error,
        )


# -----------------------------------------------------------------------------
# Agent Runner
# -----------------------------------------------------------------------------


class AgentRunner:
    """Drives one agent run to a final answer.

    Example:
        >>> runner = AgentRunner(client, dispatcher, builder)
        >>> async for event in runner.stream("Summarize [[Projects/plan.md]]"):
        ...     print(event.type, event.content)
    """

    def __init__(
        self,
        client: ModelClient,
        dispatcher: ToolDispatcher,
        builder: MessageBuilder,
        *,
        config: RunnerConfig | None = None,
    ) -> None:
        self._client = client
        self._dispatcher = dispatcher
        self._builder = builder
        self._config = config or RunnerConfig()

    @property
    def config(self) -> RunnerConfig:
        return self._config

    @property
    def dispatcher(self) -> ToolDispatcher:
        return self._dispatcher

    async def stream(
        self,
        prompt: str,
        *,
        history: Sequence[Message] = (),
        context_documents: Sequence[ContextDocument] = (),
        images: Sequence[ImageAttachment] = (),
        mode: ChatMode = ChatMode.AGENT,
    ) -> AsyncIterator[AgentEvent]:
        """Yield agent events until the run completes or fails."""
        state = _RunState()
        async for event in self._drive(state, prompt, history, context_documents, images, mode):
            yield event

    async def run(
        self,
        prompt: str,
        *,
        history: Sequence[Message] = (),
        context_documents: Sequence[ContextDocument] = (),
        images: Sequence[ImageAttachment] = (),
        mode: ChatMode = ChatMode.AGENT,
        listener: AgentListener | None = None,
    ) -> AgentRunResult:
        """Run to completion, forwarding events to ``listener``; never raises for run failures."""
        state = _RunState()
        async for event in self._drive(state, prompt, history, context_documents, images, mode):
            if listener is not None:
                listener.dispatch(event)
        return state.result()

    async def _drive(
        self,
        state: _RunState,
        prompt: str,
        history: Sequence[Message],
        context_documents: Sequence[ContextDocument],
        images: Sequence[ImageAttachment],
        mode: ChatMode,
    ) -> AsyncIterator[AgentEvent]:
        run_id = uuid.uuid4().hex[:8]
        try:
            state.messages = self._builder.build_messages(
                prompt,
                history,
                context_documents=context_documents,
                images=images,
                mode=mode,
            )
        except VisionNotSupportedError as exc:
            state.error = str(exc)
            yield AgentEvent(type="error", content=state.error)
            return

        tools = self._dispatcher.tool_schemas()
        max_iterations = self._config.max_iterations
        LOGGER.debug("Run %s starting (mode=%s, max_iterations=%s)", run_id, mode.value, max_iterations)

        while True:
            if max_iterations is not None and state.iterations >= max_iterations:
                state.error = f"Stopped after {max_iterations} iterations without a final answer"
                LOGGER.warning("Run %s reached max iterations (%d)", run_id, max_iterations)
                yield AgentEvent(type="error", content=state.error, iteration=state.iterations)
                return
            state.iterations += 1
            iteration = state.iterations

            # Awaiting model
            assembler = StreamAssembler()
            announced: set[str] = set()
            try:
                async for stream_event in self._client.stream_chat(
                    [message.to_chat_param() for message in state.messages],
                    tools=tools,
                    temperature=self._config.temperature,
                ):
                    delta = getattr(stream_event, "delta", None) or {}
                    assembler.feed(delta, finish_reason=getattr(stream_event, "finish_reason", None))
                    text = delta.get("content")
                    if isinstance(text, str) and text:
                        yield AgentEvent(type="content.delta", content=text, iteration=iteration)
                    for partial in assembler.partial_tool_calls():
                        call_id = partial.get("id")
                        if call_id and call_id not in announced:
                            announced.add(call_id)
                            name = (partial.get("function") or {}).get("name") or ""
                            yield AgentEvent(
                                type="tool_call.started",
                                tool_call_id=call_id,
                                tool_name=name,
                                iteration=iteration,
                            )
                message = assembler.message()
            except Exception as exc:
                LOGGER.exception("Run %s: model request failed on iteration %d", run_id, iteration)
                state.error = str(exc) or exc.__class__.__name__
                yield AgentEvent(type="error", content=state.error, iteration=iteration)
                return

            content = message.get("content") or ""
            calls = [_ensure_call_id(ToolCall.from_mapping(raw)) for raw in message.get("tool_calls") or ()]
            state.messages.append(Message.assistant(content, calls))

            if not calls:
                state.final_text = content
                LOGGER.debug("Run %s completed after %d iteration(s)", run_id, iteration)
                yield AgentEvent(type="completed", content=content, iteration=iteration)
                return

            # Executing tools
            for call in calls:
                if call.id not in announced:
                    announced.add(call.id)
                    yield AgentEvent(
                        type="tool_call.started",
                        tool_call_id=call.id,
                        tool_name=call.name,
                        iteration=iteration,
                    )
                result = await self._execute_call(call, mode)
                state.messages.append(Message.tool(result, call.id, call.name))
                state.tool_calls.append(
                    ToolCallRecord(
                        id=call.id,
                        name=call.name,
                        arguments=call.arguments,
                        result=result,
                        iteration=iteration,
                    )
                )
                yield AgentEvent(
                    type="tool_call.result",
                    content=result,
                    tool_call_id=call.id,
                    tool_name=call.name,
                    iteration=iteration,
                )

    async def _execute_call(self, call: ToolCall, mode: ChatMode) -> str:
        try:
            arguments = json.loads(call.arguments) if call.arguments.strip() else {}
        except json.JSONDecodeError as exc:
            LOGGER.info("Unparseable arguments for %s: %s", call.name, exc)
            return f"Error: could not parse arguments for {call.name}: {exc}"
        if not isinstance(arguments, dict):
            return f"Error: arguments for {call.name} must be a JSON object"
        try:
            return await self._dispatcher.execute(call.name, arguments, call_id=call.id, mode=mode)
        except Exception as exc:
            LOGGER.exception("Tool %s failed unexpectedly", call.name)
            return f"Error executing {call.name}: {exc}"


def _ensure_call_id(call: ToolCall) -> ToolCall:
    if call.id:
        return call
    return ToolCall(id=f"call_{uuid.uuid4().hex[:12]}", name=call.name, arguments=call.arguments)
