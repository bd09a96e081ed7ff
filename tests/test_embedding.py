"""Tests for embedding providers and retry handling."""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from helpers import FakeEmbedder
from mnemo.core.config import Settings
from mnemo.core.errors import EmbeddingUnavailable
from mnemo.embedding import create_provider, embed_with_retry
from mnemo.embedding.litellm_adapter import LiteLLMEmbeddingProvider
from mnemo.embedding.local import LocalEmbeddingProvider


@pytest.mark.asyncio
async def test_embed_with_retry_succeeds_after_failures():
    embedder = FakeEmbedder(fail_times=2)
    vector = await embed_with_retry(embedder, "text", max_attempts=3, backoff_seconds=0)
    assert vector == embedder.default
    assert embedder.calls == 3


@pytest.mark.asyncio
async def test_embed_with_retry_gives_up():
    embedder = FakeEmbedder(fail=True)
    with pytest.raises(EmbeddingUnavailable):
        await embed_with_retry(embedder, "text", max_attempts=2, backoff_seconds=0)
    assert embedder.calls == 2


@pytest.mark.asyncio
async def test_health_check():
    assert await FakeEmbedder().health_check()
    assert not await FakeEmbedder(fail=True).health_check()


def test_create_provider():
    local = create_provider(Settings(_env_file=None, embedding_provider="local"))
    assert isinstance(local, LocalEmbeddingProvider)

    hosted = create_provider(Settings(_env_file=None, embedding_provider="litellm"))
    assert isinstance(hosted, LiteLLMEmbeddingProvider)

    with pytest.raises(ValueError):
        create_provider(Settings(_env_file=None, embedding_provider="carrier-pigeon"))


def _local_provider(handler) -> LocalEmbeddingProvider:
    provider = LocalEmbeddingProvider(Settings(_env_file=None), base_url="http://embed.test/v1")
    provider._client = httpx.AsyncClient(
        base_url=provider.base_url, transport=httpx.MockTransport(handler)
    )
    return provider


@pytest.mark.asyncio
async def test_local_provider_parses_response():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        return httpx.Response(200, json={"data": [{"embedding": [0.1, 0.2, 0.3]}]})

    provider = _local_provider(handler)
    try:
        assert await provider.embed("hello") == [0.1, 0.2, 0.3]
    finally:
        await provider.close()
    assert seen["path"] == "/v1/embeddings"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, text="server error"),
        httpx.Response(200, json={"data": []}),
        httpx.Response(200, json={"unexpected": True}),
    ],
)
async def test_local_provider_errors_become_unavailable(response):
    provider = _local_provider(lambda request: response)
    try:
        with pytest.raises(EmbeddingUnavailable):
            await provider.embed("hello")
    finally:
        await provider.close()


@pytest.mark.asyncio
async def test_local_provider_connection_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    provider = _local_provider(handler)
    try:
        with pytest.raises(EmbeddingUnavailable):
            await provider.embed("hello")
    finally:
        await provider.close()


@pytest.mark.asyncio
async def test_litellm_provider_parses_response():
    response = SimpleNamespace(data=[{"embedding": [1, 2, 3]}])
    provider = LiteLLMEmbeddingProvider(Settings(_env_file=None))

    with patch(
        "mnemo.embedding.litellm_adapter.aembedding", new=AsyncMock(return_value=response)
    ) as mock_embed:
        assert await provider.embed("hello") == [1.0, 2.0, 3.0]

    assert mock_embed.call_args.kwargs["input"] == ["hello"]


@pytest.mark.asyncio
async def test_litellm_provider_error_becomes_unavailable():
    provider = LiteLLMEmbeddingProvider(Settings(_env_file=None))

    with patch(
        "mnemo.embedding.litellm_adapter.aembedding",
        new=AsyncMock(side_effect=RuntimeError("rate limited")),
    ):
        with pytest.raises(EmbeddingUnavailable):
            await provider.embed("hello")


@pytest.mark.asyncio
async def test_litellm_provider_timeout():
    provider = LiteLLMEmbeddingProvider(Settings(_env_file=None, embedding_timeout_seconds=0.01))

    async def slow(**kwargs):
        await asyncio.sleep(1)

    with patch("mnemo.embedding.litellm_adapter.aembedding", new=slow):
        with pytest.raises(EmbeddingUnavailable, match="timed out"):
            await provider.embed("hello")
