"""
Mnemo - hierarchical conversational memory for persona agents.

Package structure:
- core: Configuration, logging, errors, orchestration, service facade
- memory: Fragment model, persistence, ingestion, retrieval, consolidation
- embedding: Embedding provider abstraction
"""

__version__ = "0.1.0"
