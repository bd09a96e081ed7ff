"""
Embedding providers.

Providers:
- litellm: hosted models through LiteLLM
- local: OpenAI-compatible local server over httpx
"""

from mnemo.core.config import Settings
from mnemo.embedding.base import EmbeddingProvider, embed_with_retry


def create_provider(settings: Settings) -> EmbeddingProvider:
    """Build the configured embedding provider."""
    if settings.embedding_provider == "local":
        from mnemo.embedding.local import LocalEmbeddingProvider

        return LocalEmbeddingProvider(settings)
    if settings.embedding_provider == "litellm":
        from mnemo.embedding.litellm_adapter import LiteLLMEmbeddingProvider

        return LiteLLMEmbeddingProvider(settings)
    raise ValueError(f"Unknown embedding provider: {settings.embedding_provider}")


__all__ = ["EmbeddingProvider", "create_provider", "embed_with_retry"]
