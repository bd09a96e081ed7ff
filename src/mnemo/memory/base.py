"""
Memory fragment model and store interface.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import uuid4


class MemoryTier(Enum):
    WORKING = "working"
    SHORT_TERM = "short_term"
    LONG_TERM = "long_term"

    @property
    def rank(self) -> int:
        return _TIER_ORDER.index(self)

    def can_advance_to(self, other: "MemoryTier") -> bool:
        """Tiers only move forward (or stay put)."""
        return other.rank >= self.rank

    def tiers_at_or_below(self) -> list["MemoryTier"]:
        return list(_TIER_ORDER[: self.rank + 1])


_TIER_ORDER = (MemoryTier.WORKING, MemoryTier.SHORT_TERM, MemoryTier.LONG_TERM)
ALL_TIERS = frozenset(_TIER_ORDER)


class MemoryCategory(Enum):
    CHAT = "chat"
    ACTION = "action"
    EVENT = "event"
    RELATIONSHIP = "relationship"
    CONTEXT = "context"


IMPORTANCE_MIN = 1.0
IMPORTANCE_MAX = 10.0
EMOTION_MIN = -10.0
EMOTION_MAX = 10.0


def new_fragment_id() -> str:
    return uuid4().hex


@dataclass
class MemoryFragment:
    """Single stored memory unit."""

    id: str
    persona_id: str
    content: str
    timestamp: datetime
    sparse_features: dict[str, float]
    category: MemoryCategory = MemoryCategory.CHAT
    source: str = ""
    user_id: str = ""
    dense_embedding: list[float] | None = None
    tier: MemoryTier = MemoryTier.WORKING
    importance: float = 5.0
    emotional_impact: float = 0.0
    access_count: int = 0
    last_accessed: datetime | None = None
    degraded: bool = False
    version: int = 0
    consolidated_at: datetime | None = None
    access_baseline: int = 0

    @property
    def has_embedding(self) -> bool:
        return bool(self.dense_embedding)

    def age_seconds(self, now: datetime) -> float:
        return max(0.0, (now - self.timestamp).total_seconds())


@dataclass
class PersonaNamespace:
    """Per-persona memory namespace record."""

    persona_id: str
    embedding_dimension: int | None = None
    created_at: datetime = field(default_factory=datetime.now)


class MemoryStore(ABC):
    """Abstract memory storage interface.

    Governed fields (tier, importance, emotional_impact) change only through
    compare_and_set. Access statistics change only through record_access.
    """

    async def connect(self) -> None:
        """Open underlying resources. No-op by default."""
        return None

    async def close(self) -> None:
        """Release underlying resources. No-op by default."""
        return None

    # Persona namespaces

    @abstractmethod
    async def get_persona(self, persona_id: str) -> PersonaNamespace | None:
        """Get persona namespace, None if unknown."""
        ...

    @abstractmethod
    async def ensure_persona(
        self, persona_id: str, embedding_dimension: int | None = None
    ) -> PersonaNamespace:
        """Create persona namespace on first use, return the stored record."""
        ...

    @abstractmethod
    async def set_persona_dimension(self, persona_id: str, dimension: int) -> int:
        """Fix the persona's embedding dimension if unset. Returns the fixed dimension."""
        ...

    @abstractmethod
    async def list_personas(self) -> list[str]:
        ...

    # Fragments

    @abstractmethod
    async def upsert(self, fragment: MemoryFragment) -> str:
        """Insert or replace a fragment, return its ID."""
        ...

    @abstractmethod
    async def get(self, fragment_id: str) -> MemoryFragment | None:
        ...

    @abstractmethod
    async def list_fragments(
        self,
        persona_id: str,
        tiers: set[MemoryTier] | frozenset[MemoryTier] | None = None,
        categories: set[MemoryCategory] | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[MemoryFragment]:
        """All fragments for a persona matching the filters, oldest first."""
        ...

    @abstractmethod
    async def range_by_time(
        self, persona_id: str, start: datetime, end: datetime
    ) -> list[MemoryFragment]:
        """Fragments with start <= timestamp <= end, ascending."""
        ...

    @abstractmethod
    async def top_by_importance(
        self, persona_id: str, limit: int, min_importance: float | None = None
    ) -> list[MemoryFragment]:
        ...

    @abstractmethod
    async def vector_scan(
        self, persona_id: str, query_vector: list[float], threshold: float
    ) -> list[tuple[MemoryFragment, float]]:
        """Fragments whose cosine similarity to query_vector >= threshold, best first."""
        ...

    @abstractmethod
    async def count_by_tier(self, persona_id: str, tier: MemoryTier) -> int:
        ...

    @abstractmethod
    async def compare_and_set(
        self, fragment_id: str, expected_version: int, **fields: Any
    ) -> bool:
        """Apply governed field updates if the version still matches.

        Returns False on version mismatch, missing fragment, or a backward
        tier transition.
        """
        ...

    @abstractmethod
    async def record_access(self, fragment_id: str, when: datetime) -> None:
        """Increment access_count and set last_accessed."""
        ...

    @abstractmethod
    async def set_embedding(self, fragment_id: str, embedding: list[float]) -> bool:
        ...

    @abstractmethod
    async def mark_degraded(self, fragment_id: str) -> bool:
        ...

    @abstractmethod
    async def delete(self, fragment_id: str) -> bool:
        ...


class CasOutcome(Enum):
    APPLIED = "applied"
    UNCHANGED = "unchanged"
    MISSING = "missing"
    CONFLICT = "conflict"


async def update_with_retry(
    store: MemoryStore,
    fragment_id: str,
    compute: Callable[[MemoryFragment], dict[str, Any] | None],
    max_retries: int = 3,
) -> CasOutcome:
    """Optimistic read-compute-write loop over compare_and_set.

    compute returns the governed fields to write, or None when nothing needs
    to change. CONFLICT means every attempt lost a race with another writer.
    """
    for _ in range(max_retries):
        fragment = await store.get(fragment_id)
        if fragment is None:
            return CasOutcome.MISSING
        fields = compute(fragment)
        if not fields:
            return CasOutcome.UNCHANGED
        if await store.compare_and_set(fragment_id, fragment.version, **fields):
            return CasOutcome.APPLIED
    return CasOutcome.CONFLICT
