"""OpenAI-compatible model client used by the agent loop.

The client exposes three calls against the provider: a streamed chat
completion whose chunks are reduced to raw ``delta`` fragments, a batched
embedding request and a cached model listing. Token counting for context
truncation lives here too, since the tokenizer is chosen per model.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import math
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Iterable, List, Mapping, Sequence, cast

import httpx
import tiktoken
from openai import AsyncOpenAI, APIConnectionError, APIError, RateLimitError
from openai.types.chat import ChatCompletionChunk, ChatCompletionMessageParam, ChatCompletionToolParam
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .ai_types import TokenCounterProtocol

LOGGER = logging.getLogger(__name__)

DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"
_RETRYABLE_ERRORS = (APIError, APIConnectionError, RateLimitError, httpx.TimeoutException)


# ---------------------------------------------------------------------------
# Token counting
# ---------------------------------------------------------------------------


class ApproxByteCounter(TokenCounterProtocol):
    """Estimate tokens as UTF-8 bytes divided by ``bytes_per_token``, rounded up."""

    def __init__(self, *, model_name: str | None = None, bytes_per_token: int = 4) -> None:
        self.model_name = model_name
        self.bytes_per_token = max(1, int(bytes_per_token))

    def count(self, text: str) -> int:
        return self.estimate(text)

    def estimate(self, text: str) -> int:
        size = len(text.encode("utf-8", errors="ignore")) if text else 0
        return math.ceil(size / self.bytes_per_token)


class TiktokenCounter(TokenCounterProtocol):
    """Exact counts from the model's tiktoken encoding."""

    def __init__(self, model_name: str, encoding: tiktoken.Encoding) -> None:
        self.model_name = model_name
        self._encoding = encoding
        self._approx = ApproxByteCounter(model_name=model_name)

    @classmethod
    def for_model(cls, model_name: str) -> "TiktokenCounter":
        """Raise ``KeyError`` when tiktoken does not know ``model_name``."""
        return cls(model_name, tiktoken.encoding_for_model(model_name))

    def count(self, text: str) -> int:
        return len(self._encoding.encode(text, disallowed_special=())) if text else 0

    def estimate(self, text: str) -> int:
        return self._approx.estimate(text)


class TokenCounterRegistry:
    """Per-model token counters keyed case-insensitively."""

    def __init__(self, *, fallback: TokenCounterProtocol | None = None) -> None:
        self.fallback = fallback or ApproxByteCounter()
        self._by_model: Dict[str, TokenCounterProtocol] = {}

    def register(self, model_name: str, counter: TokenCounterProtocol) -> None:
        key = _model_key(model_name)
        if not key:
            raise ValueError("A model name is required to register a token counter")
        self._by_model[key] = counter

    def unregister(self, model_name: str) -> None:
        self._by_model.pop(_model_key(model_name), None)

    def has(self, model_name: str | None) -> bool:
        return _model_key(model_name) in self._by_model

    def get(self, model_name: str | None = None) -> TokenCounterProtocol:
        return self._by_model.get(_model_key(model_name), self.fallback)

    def count(self, model_name: str | None, text: str) -> int:
        return self.get(model_name).count(text)

    def resolve(self, model_name: str | None) -> TokenCounterProtocol:
        """Return the counter for ``model_name``, creating and caching it on first use."""
        key = _model_key(model_name)
        if not key:
            return self.fallback
        if key not in self._by_model:
            self._by_model[key] = _counter_for(model_name or key)
        return self._by_model[key]


def _model_key(model_name: str | None) -> str:
    return (model_name or "").strip().lower()


def _counter_for(model_name: str) -> TokenCounterProtocol:
    try:
        return TiktokenCounter.for_model(model_name.strip())
    except KeyError:
        LOGGER.debug("No tiktoken encoding for %s; estimating from byte length", model_name)
    except Exception as exc:
        # tiktoken downloads encodings on first use and may be offline.
        LOGGER.warning("Could not load tiktoken encoding for %s: %s", model_name, exc)
    return ApproxByteCounter(model_name=model_name)


_SHARED_REGISTRY = TokenCounterRegistry()


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class ClientSettings:
    """Connection and retry settings for :class:`AIClient`."""

    base_url: str
    api_key: str
    model: str
    organization: str | None = None
    request_timeout: float | None = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    default_headers: Mapping[str, str] | None = None
    metadata: Mapping[str, str] | None = None
    debug_logging: bool = False
    embedding_model: str = DEFAULT_EMBEDDING_MODEL


@dataclass(slots=True)
class AIStreamEvent:
    """One streamed fragment of the assistant message.

    ``delta`` is ``choices[0].delta`` as a plain dict with ``None`` fields
    dropped; it is what the stream assembler folds.
    """

    type: str
    delta: Dict[str, Any]
    finish_reason: str | None = None


class AIClient:
    """Thin async wrapper over :class:`openai.AsyncOpenAI`.

    The OpenAI SDK's own retries are disabled; ``tenacity`` retries opening a
    chat stream and embedding requests with exponential backoff.
    """

    def __init__(
        self,
        settings: ClientSettings,
        *,
        client: AsyncOpenAI | None = None,
        token_registry: TokenCounterRegistry | None = None,
    ) -> None:
        self._settings = settings
        self._client = client or AsyncOpenAI(
            api_key=settings.api_key,
            base_url=settings.base_url,
            organization=settings.organization,
            timeout=settings.request_timeout,
            default_headers=dict(settings.default_headers) if settings.default_headers else None,
            max_retries=0,
        )
        self._tokens = token_registry or _SHARED_REGISTRY
        self._models: List[str] | None = None
        self._models_lock = asyncio.Lock()

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    async def stream_chat(
        self,
        messages: Iterable[Mapping[str, Any] | ChatCompletionMessageParam],
        *,
        tools: Iterable[ChatCompletionToolParam | Mapping[str, Any]] | None = None,
        temperature: float | None = None,
        max_completion_tokens: int | None = None,
        metadata: Mapping[str, str] | None = None,
        **extra_params: Any,
    ) -> AsyncIterator[AIStreamEvent]:
        """Yield one :class:`AIStreamEvent` per non-empty streamed chunk.

        Only opening the stream is retried; once fragments have been yielded a
        failure propagates, since replaying would duplicate them.
        """

        request: Dict[str, Any] = {
            "model": self._settings.model,
            "messages": [cast(ChatCompletionMessageParam, dict(message)) for message in messages],
        }
        if not request["messages"]:
            raise ValueError("At least one message is required to start a chat")
        merged_metadata = {**(self._settings.metadata or {}), **(metadata or {})}
        if merged_metadata:
            request["metadata"] = merged_metadata
        tool_list = list(tools or ())
        if tool_list:
            request["tools"] = tool_list
        if temperature is not None:
            request["temperature"] = temperature
        if max_completion_tokens is not None:
            request["max_completion_tokens"] = max_completion_tokens
        request.update(extra_params)

        LOGGER.debug(
            "Opening chat stream on %s with %d message(s) and %d tool(s)",
            self._settings.model,
            len(request["messages"]),
            len(tool_list),
        )
        if self._settings.debug_logging:
            LOGGER.debug("Chat request:\n%s", json.dumps(request, ensure_ascii=False, indent=2, default=repr))

        stream: Any = None
        async for attempt in self._retrying():
            with attempt:
                stream = await self._client.chat.completions.create(**request, stream=True)

        try:
            async for chunk in stream:
                event = _to_stream_event(chunk)
                if event is not None:
                    yield event
        finally:
            await _close(stream)

    # ------------------------------------------------------------------
    # Embeddings and models
    # ------------------------------------------------------------------

    async def embed(self, texts: Sequence[str], *, model: str | None = None) -> List[List[float]]:
        """Return one embedding vector per input text, in input order."""

        if not texts:
            return []
        model_name = model or self._settings.embedding_model
        response: Any = None
        async for attempt in self._retrying():
            with attempt:
                response = await self._client.embeddings.create(model=model_name, input=list(texts))
        vectors = [list(item.embedding) for item in sorted(response.data, key=lambda item: item.index)]
        LOGGER.debug("Embedded %d text(s) with %s", len(vectors), model_name)
        return vectors

    async def list_models(self, *, force_refresh: bool = False) -> List[str]:
        """Return the provider's model ids, cached after the first call."""

        async with self._models_lock:
            if self._models is None or force_refresh:
                response = await self._client.models.list()
                self._models = [item.id for item in response.data if getattr(item, "id", None)]
            return list(self._models)

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def get_token_counter(self, model: str | None = None) -> TokenCounterProtocol:
        return self._tokens.resolve(model or self._settings.model)

    def count_tokens(self, text: str, *, model: str | None = None, estimate_only: bool = False) -> int:
        counter = self.get_token_counter(model)
        return counter.estimate(text) if estimate_only else counter.count(text)

    async def aclose(self) -> None:
        """Release the underlying HTTP connections."""
        await _close(self._client)

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.max_retries)),
            wait=wait_exponential(
                multiplier=self._settings.retry_min_seconds,
                max=self._settings.retry_max_seconds,
            ),
            retry=retry_if_exception_type(_RETRYABLE_ERRORS),
        )


def _to_stream_event(chunk: ChatCompletionChunk) -> AIStreamEvent | None:
    if not chunk.choices:
        return None
    choice = chunk.choices[0]
    delta = choice.delta.model_dump(exclude_none=True) if choice.delta is not None else {}
    if not delta and not choice.finish_reason:
        return None
    return AIStreamEvent(type="message.delta", delta=delta, finish_reason=choice.finish_reason)


async def _close(resource: Any) -> None:
    close = getattr(resource, "close", None)
    if close is None:
        return
    result = close()
    if inspect.isawaitable(result):
        await result
