"""Local embedding provider - OpenAI-compatible API for Ollama, LM Studio, etc."""

import httpx

from mnemo.core.config import Settings, get_settings
from mnemo.core.errors import EmbeddingUnavailable
from mnemo.core.logging import get_logger
from mnemo.embedding.base import EmbeddingProvider

logger = get_logger("embedding.local")


class LocalEmbeddingProvider(EmbeddingProvider):
    """Local embeddings via the OpenAI-compatible /embeddings endpoint."""

    name = "local"

    def __init__(self, settings: Settings | None = None, base_url: str | None = None):
        settings = settings or get_settings()
        self.base_url = base_url or settings.local_embedding_url
        self.model = settings.embedding_model
        self.timeout = settings.embedding_timeout_seconds
        self._client: httpx.AsyncClient | None = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)
        return self._client

    async def embed(self, text: str) -> list[float]:
        payload = {"model": self.model, "input": text}
        logger.debug(f"Local embed request: model={self.model}, url={self.base_url}")

        try:
            response = await self.client.post("/embeddings", json=payload)
            response.raise_for_status()
            data = response.json()
            return [float(x) for x in data["data"][0]["embedding"]]
        except httpx.TimeoutException as e:
            raise EmbeddingUnavailable(f"Local embedding timed out: {e}") from e
        except httpx.HTTPError as e:
            raise EmbeddingUnavailable(f"Local embedding request failed: {e}") from e
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise EmbeddingUnavailable(f"Malformed embedding response: {e}") from e

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None
