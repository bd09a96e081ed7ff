"""
Core module - configuration, errors, orchestration.

Components:
- config: Settings management via pydantic-settings
- errors: Error taxonomy
- orchestrator: Background task scheduler
- memory_service: Wires the memory components together
- logging: Structured logging setup
"""

from mnemo.core.config import Settings
from mnemo.core.errors import (
    ConsolidationFragmentError,
    EmbeddingUnavailable,
    InvalidQuery,
    MnemoError,
    PersonaNotFound,
    StoreUnavailable,
)

__all__ = [
    "Settings",
    "MnemoError",
    "EmbeddingUnavailable",
    "StoreUnavailable",
    "InvalidQuery",
    "PersonaNotFound",
    "ConsolidationFragmentError",
]
