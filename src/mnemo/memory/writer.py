"""Memory writer - turns events into WORKING-tier fragments.

Sparse features are computed inline. Dense embeddings are produced off the
request path by a fixed pool of workers fed from a bounded queue; when the
queue is full the fragment is stored degraded instead of blocking the caller.
"""

import asyncio
import contextlib
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from mnemo.core.config import Settings, get_settings
from mnemo.core.errors import EmbeddingUnavailable, InvalidQuery, StoreUnavailable
from mnemo.core.logging import get_logger
from mnemo.embedding.base import EmbeddingProvider, embed_with_retry
from mnemo.memory.base import (
    EMOTION_MAX,
    EMOTION_MIN,
    IMPORTANCE_MAX,
    IMPORTANCE_MIN,
    CasOutcome,
    MemoryCategory,
    MemoryFragment,
    MemoryStore,
    MemoryTier,
    new_fragment_id,
    update_with_retry,
)
from mnemo.memory.persona import PersonaRegistry
from mnemo.memory.sparse import sparse_features

logger = get_logger("memory.writer")


@dataclass
class EmbeddingJob:
    fragment_id: str
    persona_id: str
    content: str


def _demote_working(fragment: MemoryFragment) -> dict | None:
    if fragment.tier != MemoryTier.WORKING:
        return None
    return {"tier": MemoryTier.SHORT_TERM}


class MemoryWriter:
    """Ingests events into the memory store."""

    def __init__(
        self,
        store: MemoryStore,
        personas: PersonaRegistry,
        embedder: EmbeddingProvider | None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.personas = personas
        self.embedder = embedder
        self.settings = settings or get_settings()
        self.clock = clock
        self._queue: asyncio.Queue[EmbeddingJob] = asyncio.Queue(
            maxsize=self.settings.embedding_queue_size
        )
        self._workers: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._workers)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def start(self) -> None:
        """Start the embedding worker pool."""
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"embed-worker-{i}")
            for i in range(self.settings.embedding_workers)
        ]
        logger.info(f"Memory writer started with {len(self._workers)} embedding workers")

    async def stop(self) -> None:
        """Stop workers. Jobs still queued leave their fragments degraded."""
        for task in self._workers:
            task.cancel()
        for task in self._workers:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._workers = []

        abandoned = 0
        while not self._queue.empty():
            job = self._queue.get_nowait()
            self._queue.task_done()
            await self._degrade(job.fragment_id)
            abandoned += 1
        if abandoned:
            logger.warning(f"Memory writer stopped with {abandoned} embeddings abandoned")
        logger.info("Memory writer stopped")

    async def drain(self) -> None:
        """Wait until every queued embedding job has been processed."""
        await self._queue.join()

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
        """
        Store a new event as a WORKING fragment.

        Args:
            content: Event text
            persona_id: Owning persona (namespace created on first use)
            timestamp: Event time, defaults to now
            source: Originating channel
            category: Fragment category
            user_id: User the event concerns
            importance: Initial importance 1-10, defaults to configured value
            emotional_impact: Initial emotional weight -10..+10

        Returns:
            New fragment ID

        Raises:
            InvalidQuery: malformed input
            StoreUnavailable: fragment could not be persisted
        """
        if not content or not content.strip():
            raise InvalidQuery("content must not be empty")
        if not persona_id:
            raise InvalidQuery("persona_id must not be empty")
        if importance is None:
            importance = self.settings.default_importance
        if not IMPORTANCE_MIN <= importance <= IMPORTANCE_MAX:
            raise InvalidQuery(f"importance out of range: {importance}")
        if not EMOTION_MIN <= emotional_impact <= EMOTION_MAX:
            raise InvalidQuery(f"emotional_impact out of range: {emotional_impact}")
        if not isinstance(category, MemoryCategory):
            try:
                category = MemoryCategory(category)
            except ValueError as e:
                raise InvalidQuery(f"Unknown category: {category}") from e

        await self.personas.ensure(persona_id)

        fragment = MemoryFragment(
            id=new_fragment_id(),
            persona_id=persona_id,
            content=content,
            timestamp=timestamp or self.clock(),
            sparse_features=sparse_features(content),
            category=category,
            source=source,
            user_id=user_id,
            tier=MemoryTier.WORKING,
            importance=float(importance),
            emotional_impact=float(emotional_impact),
        )
        await self.store.upsert(fragment)
        logger.debug(f"Ingested {fragment.id} for persona {persona_id}")

        # The fragment is durable from here on; later steps must not fail the call
        try:
            await self._enforce_working_capacity(persona_id)
        except StoreUnavailable as e:
            logger.warning(f"Working capacity check skipped for {persona_id}: {e}")
        await self._schedule_embedding(fragment)
        return fragment.id

    async def _schedule_embedding(self, fragment: MemoryFragment) -> None:
        if self.embedder is None:
            await self._degrade(fragment.id)
            return
        try:
            self._queue.put_nowait(
                EmbeddingJob(fragment.id, fragment.persona_id, fragment.content)
            )
        except asyncio.QueueFull:
            logger.warning(f"Embedding queue full; storing {fragment.id} as sparse-only")
            await self._degrade(fragment.id)

    async def _degrade(self, fragment_id: str) -> None:
        try:
            await self.store.mark_degraded(fragment_id)
        except StoreUnavailable as e:
            logger.error(f"Could not mark {fragment_id} degraded: {e}")

    async def _enforce_working_capacity(self, persona_id: str) -> int:
        """Demote the oldest WORKING fragments beyond capacity to SHORT_TERM."""
        working = await self.store.list_fragments(persona_id, tiers={MemoryTier.WORKING})
        overflow = len(working) - self.settings.max_working_memory
        if overflow <= 0:
            return 0

        demoted = 0
        for fragment in working[:overflow]:
            outcome = await update_with_retry(
                self.store, fragment.id, _demote_working, self.settings.cas_max_retries
            )
            if outcome == CasOutcome.APPLIED:
                demoted += 1
        if demoted:
            logger.debug(f"Demoted {demoted} working fragments for persona {persona_id}")
        return demoted

    async def _worker(self, index: int) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self._embed(job)
            except StoreUnavailable as e:
                logger.error(f"Worker {index} could not persist embedding for {job.fragment_id}: {e}")
            except Exception as e:
                logger.error(f"Worker {index} failed on {job.fragment_id}: {e}", exc_info=True)
            finally:
                self._queue.task_done()

    async def _embed(self, job: EmbeddingJob) -> None:
        embedder = self.embedder
        if embedder is None:
            await self.store.mark_degraded(job.fragment_id)
            return
        try:
            vector = await embed_with_retry(
                embedder,
                job.content,
                max_attempts=self.settings.embedding_max_retries,
                backoff_seconds=self.settings.embedding_backoff_seconds,
            )
            if not await self.personas.accept_vector(job.persona_id, vector):
                raise EmbeddingUnavailable(
                    f"Embedding dimension {len(vector)} rejected for persona {job.persona_id}"
                )
        except EmbeddingUnavailable as e:
            logger.warning(f"Fragment {job.fragment_id} degraded to sparse-only: {e}")
            await self.store.mark_degraded(job.fragment_id)
            return

        await self.store.set_embedding(job.fragment_id, vector)
        logger.debug(f"Embedded {job.fragment_id} ({len(vector)} dims)")
