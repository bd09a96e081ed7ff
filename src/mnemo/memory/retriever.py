"""Hybrid retriever - dense + sparse fusion with temporal and emotional weighting.

Pipeline:
1. Query embedding (precomputed, provider, or none on failure) and sparse terms.
2. Persona candidates filtered by tier scope, category and time range.
3. Fused relevance; below-threshold candidates dropped unless the query names
   one of the fragment's entity terms.
4. Weighted final score, deterministic ordering, limit.
5. Access statistics bumped in the background for returned fragments.
"""

import asyncio
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime

from mnemo.core.config import Settings, get_settings
from mnemo.core.errors import EmbeddingUnavailable, InvalidQuery, StoreUnavailable
from mnemo.core.logging import get_logger
from mnemo.embedding.base import EmbeddingProvider
from mnemo.memory.base import (
    ALL_TIERS,
    MemoryCategory,
    MemoryFragment,
    MemoryStore,
    MemoryTier,
)
from mnemo.memory.persona import PersonaRegistry
from mnemo.memory.scoring import (
    RelationshipScorer,
    ScoreBreakdown,
    cosine_similarity,
    no_relationship,
    score_fragment,
)
from mnemo.memory.sparse import has_entity_match, sparse_features, sparse_overlap

logger = get_logger("memory.retriever")


@dataclass
class SearchFilters:
    """Optional narrowing of the candidate set."""

    categories: set[MemoryCategory] = field(default_factory=set)
    start: datetime | None = None
    end: datetime | None = None


@dataclass
class SearchResult:
    """A ranked fragment with its score breakdown."""

    fragment: MemoryFragment
    score: float
    breakdown: ScoreBreakdown


def result_sort_key(result: SearchResult) -> tuple[float, float, str]:
    """Final score desc, then newest first, then id asc."""
    return (-result.score, -result.fragment.timestamp.timestamp(), result.fragment.id)


class AccessRecorder:
    """Fire-and-forget access-count bumps that never block a response."""

    def __init__(self, store: MemoryStore, clock: Callable[[], datetime] = datetime.now):
        self.store = store
        self.clock = clock
        self._pending: set[asyncio.Task] = set()

    def record(self, fragments: Iterable[MemoryFragment]) -> None:
        ids = [f.id for f in fragments]
        if not ids:
            return
        task = asyncio.create_task(self._bump(ids, self.clock()))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _bump(self, fragment_ids: list[str], when: datetime) -> None:
        for fragment_id in fragment_ids:
            try:
                await self.store.record_access(fragment_id, when)
            except StoreUnavailable as e:
                logger.warning(f"Access bump lost for {fragment_id}: {e}")

    async def flush(self) -> None:
        """Wait for outstanding bumps."""
        if self._pending:
            await asyncio.gather(*list(self._pending))


class HybridRetriever:
    """Answers ranked recall queries for one persona at a time."""

    def __init__(
        self,
        store: MemoryStore,
        personas: PersonaRegistry,
        embedder: EmbeddingProvider | None,
        settings: Settings | None = None,
        relationship_scorer: RelationshipScorer = no_relationship,
        access: AccessRecorder | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.personas = personas
        self.embedder = embedder
        self.settings = settings or get_settings()
        self.relationship_scorer = relationship_scorer
        self.clock = clock
        self.access = access or AccessRecorder(store, clock)

    async def search(
        self,
        query: str | list[float],
        persona_id: str,
        tier_scope: Iterable[MemoryTier] | None = None,
        limit: int | None = None,
        filters: SearchFilters | None = None,
        query_embedding: list[float] | None = None,
        now: datetime | None = None,
    ) -> list[SearchResult]:
        """
        Ranked hybrid search over a persona's fragments.

        Args:
            query: Query text, or a query vector
            persona_id: Persona to search
            tier_scope: Tiers to search, all tiers when None
            limit: Max results, defaults to configured limit
            filters: Category / time range filters
            query_embedding: Precomputed embedding for a text query
            now: Reference time for recency

        Raises:
            InvalidQuery: malformed parameters
            PersonaNotFound: persona has no namespace
            StoreUnavailable: store unreachable
        """
        limit = self.settings.default_search_limit if limit is None else limit
        if limit <= 0:
            raise InvalidQuery(f"limit must be positive, got {limit}")
        filters = filters or SearchFilters()
        if filters.start and filters.end and filters.start > filters.end:
            raise InvalidQuery("time range start is after end")
        tiers = self._resolve_tiers(tier_scope)

        query_text, query_vector = self._split_query(query, query_embedding)
        namespace = await self.personas.get(persona_id)

        if query_vector is not None:
            dimension = namespace.embedding_dimension
            if dimension is not None and len(query_vector) != dimension:
                raise InvalidQuery(
                    f"Query vector has {len(query_vector)} dims, persona uses {dimension}"
                )
        elif query_text and self.embedder is not None:
            query_vector = await self._embed_query(self.embedder, query_text)

        query_terms = sparse_features(query_text) if query_text else {}
        now = now or self.clock()

        candidates = await self.store.list_fragments(
            persona_id,
            tiers=tiers,
            categories=filters.categories or None,
            start=filters.start,
            end=filters.end,
        )

        results = []
        for fragment in candidates:
            breakdown = self._score(query_text, query_vector, query_terms, fragment, now)
            if breakdown is not None:
                results.append(SearchResult(fragment, breakdown.final_score, breakdown))

        results.sort(key=result_sort_key)
        results = results[:limit]

        self.access.record(r.fragment for r in results)
        logger.debug(
            f"search persona={persona_id} candidates={len(candidates)} "
            f"hits={len(results)} dense={query_vector is not None}"
        )
        return results

    def _score(
        self,
        query_text: str,
        query_vector: list[float] | None,
        query_terms: dict[str, float],
        fragment: MemoryFragment,
        now: datetime,
    ) -> ScoreBreakdown | None:
        similarity = cosine_similarity(query_vector, fragment.dense_embedding)
        overlap = sparse_overlap(query_terms, fragment.sparse_features)
        entity_match = has_entity_match(query_terms, fragment.content)

        dense_weight, sparse_weight = self.settings.fusion_weights
        fused = dense_weight * similarity + sparse_weight * overlap
        if fused < self.settings.similarity_threshold and not entity_match:
            return None

        relationship = self.relationship_scorer(query_text, fragment) if query_text else 0.0
        return score_fragment(
            fragment,
            similarity,
            overlap,
            now,
            relationship_strength=relationship,
            weights=self.settings.fusion_weights,
            decay_days=self.settings.time_decay_days,
            entity_match=entity_match,
        )

    @staticmethod
    def _resolve_tiers(tier_scope: Iterable[MemoryTier] | None) -> frozenset[MemoryTier]:
        if tier_scope is None:
            return ALL_TIERS
        try:
            tiers = frozenset(MemoryTier(t) for t in tier_scope)
        except ValueError as e:
            raise InvalidQuery(f"Unknown tier in scope: {e}") from e
        if not tiers:
            raise InvalidQuery("tier_scope must not be empty")
        return tiers

    @staticmethod
    def _split_query(
        query: str | list[float], query_embedding: list[float] | None
    ) -> tuple[str, list[float] | None]:
        if isinstance(query, str):
            if not query.strip() and not query_embedding:
                raise InvalidQuery("query must not be empty")
            return query, list(query_embedding) if query_embedding else None
        if isinstance(query, (list, tuple)):
            if not query or not all(isinstance(x, (int, float)) for x in query):
                raise InvalidQuery("query vector must be a non-empty list of numbers")
            return "", [float(x) for x in query]
        raise InvalidQuery(f"Unsupported query type: {type(query).__name__}")

    @staticmethod
    async def _embed_query(embedder: EmbeddingProvider, text: str) -> list[float] | None:
        try:
            return await embedder.embed(text)
        except EmbeddingUnavailable as e:
            logger.warning(f"Query embedding unavailable, using sparse-only search: {e}")
            return None

    async def find_similar(
        self, fragment_id: str, threshold: float | None = None, limit: int | None = None
    ) -> list[tuple[MemoryFragment, float]]:
        """Fragments of the same persona whose embeddings sit close to this one."""
        fragment = await self.store.get(fragment_id)
        if fragment is None:
            raise InvalidQuery(f"Unknown fragment: {fragment_id}")
        if not fragment.has_embedding:
            return []
        threshold = self.settings.similarity_threshold if threshold is None else threshold
        matches = await self.store.vector_scan(
            fragment.persona_id, fragment.dense_embedding or [], threshold
        )
        matches = [(f, s) for f, s in matches if f.id != fragment_id]
        return matches[:limit] if limit is not None else matches

    async def key_memories(self, persona_id: str, limit: int = 10) -> list[MemoryFragment]:
        """Most important fragments at or above the importance threshold."""
        if limit <= 0:
            raise InvalidQuery(f"limit must be positive, got {limit}")
        await self.personas.get(persona_id)
        return await self.store.top_by_importance(
            persona_id, limit, min_importance=self.settings.importance_threshold
        )

    async def flush(self) -> None:
        await self.access.flush()
