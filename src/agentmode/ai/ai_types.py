"""Shared typing contracts for AI infrastructure."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


class TokenCounterProtocol(Protocol):
    """Protocol describing tokenizer implementations."""

    model_name: str | None

    def count(self, text: str) -> int:
        """Return the precise token count for *text*."""
        ...

    def estimate(self, text: str) -> int:
        """Return a deterministic fallback estimate when precise counts fail."""
        ...


@dataclass(slots=True, frozen=True)
class ModelInfo:
    """Capabilities of a chat model offered in the model picker."""

    name: str
    display_name: str
    supports_vision: bool = False


MODEL_CATALOGUE: dict[str, ModelInfo] = {
    info.name: info
    for info in (
        ModelInfo("gpt-4o", "GPT-4o", supports_vision=True),
        ModelInfo("gpt-4o-mini", "GPT-4o mini", supports_vision=True),
        ModelInfo("gpt-4.1", "GPT-4.1", supports_vision=True),
        ModelInfo("o4-mini", "o4-mini", supports_vision=True),
        ModelInfo("o3", "o3", supports_vision=True),
        ModelInfo("o3-pro", "o3-pro", supports_vision=True),
        ModelInfo("o3-mini", "o3-mini", supports_vision=False),
    )
}


def model_supports_vision(model_name: str | None) -> bool:
    """Return ``True`` when the catalogue marks ``model_name`` as image-capable.

    Unknown models are assumed to be text only.
    """

    info = MODEL_CATALOGUE.get((model_name or "").strip().lower())
    return bool(info and info.supports_vision)


__all__ = ["MODEL_CATALOGUE", "ModelInfo", "TokenCounterProtocol", "model_supports_vision"]
