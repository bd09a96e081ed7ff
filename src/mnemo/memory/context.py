"""Context window reconstruction around a recalled fragment."""

from datetime import timedelta

from mnemo.core.config import Settings, get_settings
from mnemo.core.errors import InvalidQuery
from mnemo.core.logging import get_logger
from mnemo.memory.base import MemoryFragment, MemoryStore
from mnemo.memory.retriever import AccessRecorder

logger = get_logger("memory.context")


class ContextWindowReconstructor:
    """Rebuilds the narrative neighbourhood of a fragment."""

    def __init__(
        self,
        store: MemoryStore,
        access: AccessRecorder,
        settings: Settings | None = None,
    ):
        self.store = store
        self.access = access
        self.settings = settings or get_settings()

    async def reconstruct(
        self, center: MemoryFragment, window_minutes: float | None = None
    ) -> list[MemoryFragment]:
        """Same-persona fragments within +/- window of the center, oldest first.

        The center itself is included when it still exists.
        """
        if window_minutes is None:
            window_minutes = self.settings.context_reconstruction_window_minutes
        if window_minutes < 0:
            raise InvalidQuery(f"window_minutes must not be negative, got {window_minutes}")

        window = timedelta(minutes=window_minutes)
        fragments = await self.store.range_by_time(
            center.persona_id, center.timestamp - window, center.timestamp + window
        )
        fragments.sort(key=lambda f: (f.timestamp, f.id))

        self.access.record(fragments)
        logger.debug(
            f"Reconstructed {len(fragments)} fragments around {center.id} (+/-{window_minutes}m)"
        )
        return fragments

    async def reconstruct_by_id(
        self, fragment_id: str, window_minutes: float | None = None
    ) -> list[MemoryFragment]:
        center = await self.store.get(fragment_id)
        if center is None:
            raise InvalidQuery(f"Unknown fragment: {fragment_id}")
        return await self.reconstruct(center, window_minutes)
