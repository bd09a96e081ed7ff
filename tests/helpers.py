"""Shared test doubles."""

from datetime import datetime

from mnemo.core.errors import EmbeddingUnavailable
from mnemo.embedding.base import EmbeddingProvider
from mnemo.memory.base import MemoryCategory, MemoryFragment, MemoryTier, new_fragment_id
from mnemo.memory.sparse import sparse_features

T0 = datetime(2026, 1, 1, 12, 0, 0)


class FakeEmbedder(EmbeddingProvider):
    """Deterministic embedder: known texts map to fixed vectors."""

    name = "fake"

    def __init__(
        self,
        vectors: dict[str, list[float]] | None = None,
        default: list[float] | None = None,
        fail: bool = False,
        fail_times: int = 0,
    ):
        self.vectors = vectors or {}
        self.default = default or [0.0, 0.0, 0.0, 1.0]
        self.fail = fail
        self.fail_times = fail_times
        self.calls = 0
        self.closed = False

    async def embed(self, text: str) -> list[float]:
        self.calls += 1
        if self.fail or self.calls <= self.fail_times:
            raise EmbeddingUnavailable("fake outage")
        return list(self.vectors.get(text, self.default))

    async def close(self) -> None:
        self.closed = True


def make_fragment(
    content: str = "Hello world",
    persona_id: str = "nicole",
    timestamp: datetime = T0,
    tier: MemoryTier = MemoryTier.WORKING,
    importance: float = 5.0,
    embedding: list[float] | None = None,
    category: MemoryCategory = MemoryCategory.CHAT,
    **extra,
) -> MemoryFragment:
    return MemoryFragment(
        id=extra.pop("id", new_fragment_id()),
        persona_id=persona_id,
        content=content,
        timestamp=timestamp,
        sparse_features=sparse_features(content),
        category=category,
        dense_embedding=embedding,
        tier=tier,
        importance=importance,
        **extra,
    )
