"""LiteLLM adapter - hosted embedding models behind one interface."""

import asyncio

import litellm
from litellm import aembedding

from mnemo.core.config import Settings, get_settings
from mnemo.core.errors import EmbeddingUnavailable
from mnemo.core.logging import get_logger
from mnemo.embedding.base import EmbeddingProvider

logger = get_logger("embedding.litellm_adapter")

# Disable LiteLLM's verbose logging
litellm.suppress_debug_info = True


class LiteLLMEmbeddingProvider(EmbeddingProvider):
    """Embeddings through litellm.aembedding (OpenAI, Azure, Cohere, ...)."""

    name = "litellm"

    def __init__(self, settings: Settings | None = None):
        settings = settings or get_settings()
        self.model = settings.embedding_model
        self.api_key = settings.embedding_api_key or None
        self.timeout = settings.embedding_timeout_seconds

    async def embed(self, text: str) -> list[float]:
        params = {"model": self.model, "input": [text]}
        if self.api_key:
            params["api_key"] = self.api_key

        try:
            response = await asyncio.wait_for(aembedding(**params), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise EmbeddingUnavailable(f"LiteLLM embedding timed out after {self.timeout}s") from e
        except Exception as e:
            # litellm maps every provider failure onto its own exception tree
            logger.warning(f"LiteLLM embedding error for {self.model}: {e}")
            raise EmbeddingUnavailable(f"LiteLLM embedding failed: {e}") from e

        try:
            item = response.data[0]
            vector = item["embedding"] if isinstance(item, dict) else item.embedding
            return [float(x) for x in vector]
        except (AttributeError, IndexError, KeyError, TypeError) as e:
            raise EmbeddingUnavailable(f"Malformed embedding response: {e}") from e
