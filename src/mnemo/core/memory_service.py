"""Memory service - wires store, writer, retriever and scheduler together.

One MemoryService owns one PersonaRegistry; every component receives it
explicitly, so several services (e.g. one per test) never share state.
"""

from collections.abc import Callable, Iterable
from datetime import datetime, timedelta

from mnemo.core.config import Settings, get_settings
from mnemo.core.logging import get_logger
from mnemo.core.orchestrator import Orchestrator, TaskPriority
from mnemo.embedding import create_provider
from mnemo.embedding.base import EmbeddingProvider
from mnemo.memory.base import MemoryCategory, MemoryFragment, MemoryStore, MemoryTier
from mnemo.memory.consolidation import (
    ConsolidationReport,
    ConsolidationScheduler,
    ImportancePolicy,
)
from mnemo.memory.context import ContextWindowReconstructor
from mnemo.memory.persona import PersonaRegistry
from mnemo.memory.retriever import AccessRecorder, HybridRetriever, SearchFilters, SearchResult
from mnemo.memory.scoring import RelationshipScorer, no_relationship
from mnemo.memory.store import SQLiteMemoryStore
from mnemo.memory.writer import MemoryWriter

logger = get_logger("core.memory_service")

CONSOLIDATION_TASK_ID = "consolidation"


class MemoryService:
    """Facade over the memory components with a single lifecycle."""

    def __init__(
        self,
        settings: Settings | None = None,
        store: MemoryStore | None = None,
        embedder: EmbeddingProvider | None = None,
        relationship_scorer: RelationshipScorer = no_relationship,
        policy: ImportancePolicy | None = None,
        clock: Callable[[], datetime] = datetime.now,
        orchestrator: Orchestrator | None = None,
    ):
        self.settings = settings or get_settings()
        self.store = store or SQLiteMemoryStore(self.settings.db_path)
        self.embedder = embedder if embedder is not None else create_provider(self.settings)
        self.personas = PersonaRegistry(self.store, self.settings.embedding_dimension)
        self.access = AccessRecorder(self.store, clock)

        self.writer = MemoryWriter(
            self.store, self.personas, self.embedder, self.settings, clock=clock
        )
        self.retriever = HybridRetriever(
            self.store,
            self.personas,
            self.embedder,
            self.settings,
            relationship_scorer=relationship_scorer,
            access=self.access,
            clock=clock,
        )
        self.reconstructor = ContextWindowReconstructor(self.store, self.access, self.settings)
        self.scheduler = ConsolidationScheduler(
            self.store, self.personas, self.settings, policy=policy, clock=clock
        )
        self.orchestrator = orchestrator or Orchestrator()
        self.orchestrator.on_stop(self.scheduler.cancel)
        self._started = False

    async def start(self, run_scheduler: bool = True) -> None:
        """Connect storage, start embedding workers and the consolidation loop."""
        if self._started:
            return
        await self.store.connect()
        await self.writer.start()
        self.scheduler.reset()

        if run_scheduler:
            interval = timedelta(seconds=self.settings.consolidation_interval_seconds)
            self.orchestrator.schedule_task(
                task_id=CONSOLIDATION_TASK_ID,
                name="Memory consolidation",
                callback=self.scheduler.run_all,
                interval=interval,
                priority=TaskPriority.LOW,
                delay=interval,
            )
            await self.orchestrator.start()

        self._started = True
        logger.info("Memory service started")

    async def stop(self) -> None:
        """Cancel consolidation, stop workers, flush access stats, close storage."""
        if not self._started:
            return
        await self.orchestrator.stop()
        self.orchestrator.cancel_task(CONSOLIDATION_TASK_ID)
        await self.writer.stop()
        await self.access.flush()
        await self.embedder.close()
        await self.store.close()
        self._started = False
        logger.info("Memory service stopped")

    async def __aenter__(self) -> "MemoryService":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    # Operations

    async def ingest(
        self,
        content: str,
        persona_id: str,
        timestamp: datetime | None = None,
        source: str = "",
        category: MemoryCategory = MemoryCategory.CHAT,
        user_id: str = "",
        importance: float | None = None,
        emotional_impact: float = 0.0,
    ) -> str:
        return await self.writer.ingest(
            content,
            persona_id,
            timestamp=timestamp,
            source=source,
            category=category,
            user_id=user_id,
            importance=importance,
            emotional_impact=emotional_impact,
        )

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
        return await self.retriever.search(
            query,
            persona_id,
            tier_scope=tier_scope,
            limit=limit,
            filters=filters,
            query_embedding=query_embedding,
            now=now,
        )

    async def reconstruct(
        self, center: MemoryFragment | str, window_minutes: float | None = None
    ) -> list[MemoryFragment]:
        if isinstance(center, str):
            return await self.reconstructor.reconstruct_by_id(center, window_minutes)
        return await self.reconstructor.reconstruct(center, window_minutes)

    async def consolidate(
        self, persona_id: str | None = None, now: datetime | None = None
    ) -> list[ConsolidationReport]:
        """Run consolidation immediately, for one persona or all."""
        if persona_id is None:
            return await self.scheduler.run_all(now)
        return [await self.scheduler.run_persona(persona_id, now)]

    async def key_memories(self, persona_id: str, limit: int = 10) -> list[MemoryFragment]:
        return await self.retriever.key_memories(persona_id, limit)

    async def get(self, fragment_id: str) -> MemoryFragment | None:
        return await self.store.get(fragment_id)

    async def delete(self, fragment_id: str) -> bool:
        """Explicit deletion of one fragment."""
        deleted = await self.store.delete(fragment_id)
        if deleted:
            logger.info(f"Deleted fragment {fragment_id}")
        return deleted
