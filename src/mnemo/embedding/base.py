"""
Embedding provider interface.
"""

import asyncio
from abc import ABC, abstractmethod

from mnemo.core.errors import EmbeddingUnavailable
from mnemo.core.logging import get_logger

logger = get_logger("embedding.base")


class EmbeddingProvider(ABC):
    """Abstract text embedding capability."""

    name: str = "embedding"

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """
        Embed text into a dense vector.

        Raises:
            EmbeddingUnavailable: the backend failed or timed out
        """
        ...

    async def health_check(self) -> bool:
        """Check if provider is available."""
        try:
            await self.embed("health check")
            return True
        except EmbeddingUnavailable:
            return False

    async def close(self) -> None:
        """Release client resources. No-op by default."""
        return None


async def embed_with_retry(
    provider: EmbeddingProvider,
    text: str,
    *,
    max_attempts: int = 3,
    backoff_seconds: float = 0.5,
) -> list[float]:
    """Call the provider with exponential backoff.

    Raises EmbeddingUnavailable once every attempt has failed.
    """
    last_error: Exception | None = None
    for attempt in range(max_attempts):
        try:
            return await provider.embed(text)
        except EmbeddingUnavailable as e:
            last_error = e
            if attempt + 1 < max_attempts:
                wait = backoff_seconds * (2**attempt)
                logger.warning(
                    f"Embedding attempt {attempt + 1} failed ({e}); retrying in {wait:.2f}s"
                )
                await asyncio.sleep(wait)

    logger.error(f"Embedding failed after {max_attempts} attempts: {last_error}")
    raise EmbeddingUnavailable(f"Embedding failed after {max_attempts} attempts: {last_error}")
