"""
Memory module - hierarchical memory system.

Tiers:
- working: Most recent events per persona (bounded)
- short_term: Recent events past the working window
- long_term: Consolidated events, quota-bounded per persona

Components:
- writer: Ingestion and background embedding
- retriever: Hybrid dense + sparse ranked recall
- consolidation: Importance rescoring, tier migration, eviction
- context: Temporal neighbourhood reconstruction

Storage: SQLite
"""
