"""Outbound request construction: system prompt, attached notes, images and history."""

from __future__ import annotations

import logging
from typing import Any, Sequence

from .. import prompts
from ..ai_types import TokenCounterProtocol, model_supports_vision
from .types import ChatMode, ContextDocument, ImageAttachment, Message

LOGGER = logging.getLogger(__name__)


class VisionNotSupportedError(ValueError):
    """Raised when images are attached for a model without vision support."""

    def __init__(self, model: str) -> None:
        super().__init__(
            f"Model '{model}' does not support image input; choose a vision model such as gpt-4o"
        )
        self.model = model


class MessageBuilder:
    """Builds the message list for one agent run.

    Attached notes are inlined into the system message within a token budget;
    the user message is suffixed with ``[[path]]`` links for the attached
    notes and ``[Image: name]`` labels for uploaded images.
    """

    def __init__(
        self,
        token_counter: TokenCounterProtocol,
        *,
        model: str,
        context_token_budget: int = prompts.DEFAULT_CONTEXT_TOKEN_BUDGET,
        vault_name: str | None = None,
    ) -> None:
        """Initialize the message builder.

        Args:
            token_counter: Counter used to budget attached-note content.
            model: Target model, consulted for vision support.
            context_token_budget: Token budget shared by all attached notes.
            vault_name: Optional vault name mentioned in the system prompt.
        """
        self._counter = token_counter
        self._model = model
        self._budget = max(0, int(context_token_budget))
        self._vault_name = vault_name

    @property
    def model(self) -> str:
        return self._model

    def build_messages(
        self,
        prompt: str,
        history: Sequence[Message] = (),
        *,
        context_documents: Sequence[ContextDocument] = (),
        images: Sequence[ImageAttachment] = (),
        mode: ChatMode = ChatMode.AGENT,
    ) -> list[Message]:
        """Return ``[system, *history, user]`` for a new request."""
        if images and not model_supports_vision(self._model):
            raise VisionNotSupportedError(self._model)

        system_text = prompts.system_prompt(mode=mode, vault_name=self._vault_name)
        attached = prompts.context_documents_section(self._render_documents(context_documents))
        if attached:
            system_text = f"{system_text}\n{attached}"

        return [Message.system(system_text), *history, self.build_user_message(prompt, context_documents, images)]

    def build_user_message(
        self,
        prompt: str,
        context_documents: Sequence[ContextDocument] = (),
        images: Sequence[ImageAttachment] = (),
    ) -> Message:
        text = prompt.strip()
        if context_documents:
            links = " ".join(f"[[{doc.path}]]" for doc in context_documents)
            text += f"\n\nContext files: {links}"
        if images:
            labels = " ".join(f"[Image: {image.name}]" for image in images)
            text += f"\n\nUploaded images: {labels}"
        if not images:
            return Message.user(text)
        parts: list[dict[str, Any]] = [{"type": "text", "text": text}]
        parts.extend(
            {"type": "image_url", "image_url": {"url": image.data_url()}} for image in images
        )
        return Message.user(parts)

    def _render_documents(self, documents: Sequence[ContextDocument]) -> list[str]:
        rendered: list[str] = []
        remaining = self._budget
        for document in documents:
            if remaining <= 0:
                rendered.append(f"### {document.path}\n(omitted: context budget exhausted)")
                LOGGER.info("Context budget exhausted; omitted %s", document.path)
                continue
            content = self._truncate(document.content, remaining)
            remaining -= self._counter.count(content)
            rendered.append(f"### {document.path}\n```markdown\n{content}\n```")
        return rendered

    def _truncate(self, text: str, budget: int) -> str:
        tokens = self._counter.count(text)
        if tokens <= budget:
            return text
        keep = int(len(text) * budget / tokens)
        while keep > 0:
            candidate = text[:keep] + prompts.TRUNCATION_MARKER
            if self._counter.count(candidate) <= budget:
                LOGGER.debug("Truncated attached note from %d to %d chars", len(text), keep)
                return candidate
            keep = int(keep * 0.9)
        return prompts.TRUNCATION_MARKER.strip()


__all__ = ["MessageBuilder", "VisionNotSupportedError"]
