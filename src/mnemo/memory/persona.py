"""Persona namespaces and per-persona coordination state."""

import asyncio

from mnemo.core.errors import PersonaNotFound
from mnemo.core.logging import get_logger
from mnemo.memory.base import MemoryStore, PersonaNamespace

logger = get_logger("memory.persona")


class PersonaRegistry:
    """Explicit, per-persona state shared by writer, retriever and scheduler.

    Namespaces are persisted in the store and cached here. Each persona also
    owns a consolidation lock. One registry is created per MemoryService and
    passed to every component that needs it.
    """

    def __init__(self, store: MemoryStore, embedding_dimension: int | None = None):
        self.store = store
        self.embedding_dimension = embedding_dimension
        self._namespaces: dict[str, PersonaNamespace] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    async def ensure(self, persona_id: str) -> PersonaNamespace:
        """Get the persona namespace, creating it on first use."""
        namespace = self._namespaces.get(persona_id)
        if namespace is None:
            namespace = await self.store.ensure_persona(persona_id, self.embedding_dimension)
            self._namespaces[persona_id] = namespace
            logger.debug(f"Persona namespace ready: {persona_id}")
        return namespace

    async def get(self, persona_id: str) -> PersonaNamespace:
        """Get an existing namespace.

        Raises:
            PersonaNotFound: persona has never been written to
        """
        namespace = self._namespaces.get(persona_id)
        if namespace is None:
            namespace = await self.store.get_persona(persona_id)
            if namespace is None:
                raise PersonaNotFound(persona_id)
            self._namespaces[persona_id] = namespace
        return namespace

    async def personas(self) -> list[str]:
        return await self.store.list_personas()

    def lock(self, persona_id: str) -> asyncio.Lock:
        """Consolidation mutex for one persona."""
        lock = self._locks.get(persona_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[persona_id] = lock
        return lock

    async def accept_vector(self, persona_id: str, vector: list[float]) -> bool:
        """Check a vector against the persona dimension, fixing it on first sight."""
        if not vector:
            return False
        namespace = await self.get(persona_id)
        dimension = namespace.embedding_dimension
        if dimension is None:
            dimension = await self.store.set_persona_dimension(persona_id, len(vector))
            namespace.embedding_dimension = dimension
            logger.info(f"Persona {persona_id} embedding dimension fixed at {dimension}")
        return len(vector) == dimension
