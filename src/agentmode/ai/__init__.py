"""AI client, orchestration, tools and embeddings."""

from .client import AIClient, AIStreamEvent, ApproxByteCounter, ClientSettings, TokenCounterRegistry

__all__ = ["AIClient", "AIStreamEvent", "ClientSettings", "TokenCounterRegistry", "ApproxByteCounter"]
