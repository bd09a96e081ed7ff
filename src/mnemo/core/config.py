"""
Configuration management.

Loads settings from environment variables and .env file.
Prefix: MNEMO_
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="MNEMO_",
        env_file=".env",
        env_file_encoding="utf-8",
    )

    # Storage
    data_dir: Path = Field(default=Path("data"), description="Data storage directory")
    db_name: str = Field(default="mnemo.db", description="SQLite database name")

    # Embeddings
    embedding_provider: str = Field(
        default="litellm", description="Embedding backend: litellm | local"
    )
    embedding_model: str = Field(
        default="text-embedding-3-small", description="Embedding model name"
    )
    embedding_api_key: str = Field(default="", description="Embedding API key")
    local_embedding_url: str = Field(
        default="http://localhost:1234/v1",
        description="Local embedding endpoint (OpenAI-compatible)",
    )
    embedding_dimension: int | None = Field(
        default=None,
        gt=0,
        description="Fixed vector dimension; None lets the first vector fix it per persona",
    )
    embedding_timeout_seconds: float = Field(default=10.0, gt=0, description="Embed call timeout")
    embedding_max_retries: int = Field(default=3, ge=1, description="Embed attempts per fragment")
    embedding_backoff_seconds: float = Field(
        default=0.5, ge=0, description="Initial retry backoff, doubled per attempt"
    )
    embedding_workers: int = Field(default=4, ge=1, description="Embedding worker pool size")
    embedding_queue_size: int = Field(default=256, ge=1, description="Embedding queue bound")

    # Tiers
    max_working_memory: int = Field(default=10, ge=1, description="WORKING capacity per persona")
    working_window_minutes: float = Field(
        default=10.0, ge=0, description="Age at which WORKING moves to SHORT_TERM"
    )
    short_term_window_minutes: float = Field(
        default=60.0, ge=0, description="Age at which SHORT_TERM moves to LONG_TERM"
    )
    max_long_term_per_persona: int = Field(
        default=10000, ge=0, description="LONG_TERM quota per persona"
    )

    # Consolidation
    consolidation_interval_seconds: float = Field(
        default=300.0, gt=0, description="Consolidation interval"
    )
    consolidation_concurrency: int = Field(
        default=4, ge=1, description="Personas consolidated in parallel"
    )
    importance_half_life_hours: float = Field(
        default=168.0, ge=0, description="Idle half-life of importance (0 disables decay)"
    )
    access_boost: float = Field(
        default=0.5, ge=0, description="Importance gained per ln(1 + new accesses)"
    )
    emotional_half_life_days: float = Field(
        default=0.0, ge=0, description="Half-life of emotional impact (0 disables)"
    )
    cas_max_retries: int = Field(default=3, ge=1, description="Compare-and-set attempts")

    # Retrieval
    default_importance: float = Field(default=5.0, ge=1, le=10, description="Initial importance")
    importance_threshold: float = Field(
        default=5.0, ge=1, le=10, description="Minimum importance for key memories"
    )
    similarity_threshold: float = Field(
        default=0.5, ge=0, description="Minimum fused relevance"
    )
    dense_weight: float = Field(default=0.7, ge=0, description="Fusion weight of cosine similarity")
    sparse_weight: float = Field(default=0.3, ge=0, description="Fusion weight of term overlap")
    time_decay_days: float = Field(default=30.0, gt=0, description="Linear recency decay span")
    default_search_limit: int = Field(default=10, ge=1, description="Default result count")
    context_reconstruction_window_minutes: float = Field(
        default=30.0, ge=0, description="Half-width of the context window"
    )

    @property
    def db_path(self) -> Path:
        return self.data_dir / self.db_name

    @property
    def fusion_weights(self) -> tuple[float, float]:
        """Dense and sparse fusion weights."""
        return (self.dense_weight, self.sparse_weight)


def get_settings() -> Settings:
    """Get settings instance."""
    return Settings()
