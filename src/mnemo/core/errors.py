"""Error taxonomy for the memory system."""


class MnemoError(Exception):
    """Base class for all memory system errors."""

    retryable: bool = False


class EmbeddingUnavailable(MnemoError):
    """Embedding call failed or timed out. Callers degrade to sparse-only."""

    retryable = True


class StoreUnavailable(MnemoError):
    """Persistence layer could not be reached. Safe to retry the whole call."""

    retryable = True


class InvalidQuery(MnemoError):
    """Malformed ingestion or search parameters."""


class PersonaNotFound(MnemoError):
    """Persona has no memory namespace."""

    def __init__(self, persona_id: str):
        super().__init__(f"Persona not found: {persona_id}")
        self.persona_id = persona_id


class ConsolidationFragmentError(MnemoError):
    """A single fragment could not be consolidated."""

    def __init__(self, fragment_id: str, reason: str):
        super().__init__(f"Consolidation failed for {fragment_id}: {reason}")
        self.fragment_id = fragment_id
        self.reason = reason
