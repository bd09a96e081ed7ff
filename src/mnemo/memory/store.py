"""SQLite memory store with versioned fragments and per-persona namespaces."""

import contextlib
import json
import sqlite3
import struct
from collections.abc import AsyncIterator
from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite

from mnemo.core.errors import StoreUnavailable
from mnemo.core.logging import get_logger
from mnemo.memory.base import (
    MemoryCategory,
    MemoryFragment,
    MemoryStore,
    MemoryTier,
    PersonaNamespace,
)
from mnemo.memory.scoring import cosine_similarity

logger = get_logger("memory.store")


# Python 3.12+ fix: Register datetime adapters explicitly
def _adapt_datetime(dt: datetime) -> str:
    """Convert datetime to fixed-width ISO string so text ordering matches time ordering."""
    return dt.isoformat(timespec="microseconds")


def _convert_datetime(val: bytes) -> datetime:
    """Convert ISO format string from SQLite to datetime."""
    return datetime.fromisoformat(val.decode())


sqlite3.register_adapter(datetime, _adapt_datetime)
sqlite3.register_converter("DATETIME", _convert_datetime)


def _pack_vector(vector: list[float] | None) -> bytes | None:
    if not vector:
        return None
    return struct.pack(f"{len(vector)}f", *vector)


def _unpack_vector(data: bytes | None) -> list[float] | None:
    if not data:
        return None
    return list(struct.unpack(f"{len(data) // 4}f", data))


SCHEMA = """
-- Persona namespaces: one row per memory owner
CREATE TABLE IF NOT EXISTS personas (
    persona_id TEXT PRIMARY KEY,
    embedding_dimension INTEGER,
    created_at DATETIME NOT NULL
);

-- Memory fragments
CREATE TABLE IF NOT EXISTS fragments (
    id TEXT PRIMARY KEY,
    persona_id TEXT NOT NULL REFERENCES personas(persona_id),
    content TEXT NOT NULL,
    timestamp DATETIME NOT NULL,
    category TEXT NOT NULL,
    source TEXT,
    user_id TEXT,
    dense_embedding BLOB,
    sparse_features TEXT NOT NULL,  -- JSON object
    tier TEXT NOT NULL,
    importance REAL NOT NULL,
    emotional_impact REAL NOT NULL DEFAULT 0,
    access_count INTEGER NOT NULL DEFAULT 0,
    last_accessed DATETIME,
    degraded INTEGER NOT NULL DEFAULT 0,
    version INTEGER NOT NULL DEFAULT 0,
    consolidated_at DATETIME,
    access_baseline INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_fragments_persona_time
    ON fragments(persona_id, timestamp);

CREATE INDEX IF NOT EXISTS idx_fragments_persona_tier
    ON fragments(persona_id, tier);
"""

_COLUMNS = (
    "id, persona_id, content, timestamp, category, source, user_id, dense_embedding, "
    "sparse_features, tier, importance, emotional_impact, access_count, last_accessed, "
    "degraded, version, consolidated_at, access_baseline"
)

# Fields that may only change through compare_and_set
GOVERNED_FIELDS = frozenset(
    {"tier", "importance", "emotional_impact", "consolidated_at", "access_baseline"}
)


def _row_to_fragment(row: Any) -> MemoryFragment:
    return MemoryFragment(
        id=row[0],
        persona_id=row[1],
        content=row[2],
        timestamp=row[3],
        category=MemoryCategory(row[4]),
        source=row[5] or "",
        user_id=row[6] or "",
        dense_embedding=_unpack_vector(row[7]),
        sparse_features=json.loads(row[8]) if row[8] else {},
        tier=MemoryTier(row[9]),
        importance=row[10],
        emotional_impact=row[11],
        access_count=row[12],
        last_accessed=row[13],
        degraded=bool(row[14]),
        version=row[15],
        consolidated_at=row[16],
        access_baseline=row[17],
    )


class SQLiteMemoryStore(MemoryStore):
    """SQLite-backed memory store.

    All sqlite failures surface as StoreUnavailable so callers can retry.
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._conn: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        """Initialize database connection and schema."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = await aiosqlite.connect(
                self.db_path,
                detect_types=sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES,
            )
            await self._conn.executescript(SCHEMA)
            await self._conn.commit()
        except (OSError, sqlite3.Error) as e:
            raise StoreUnavailable(f"Cannot open memory store {self.db_path}: {e}") from e
        logger.info(f"Connected to memory store: {self.db_path}")

    async def close(self) -> None:
        """Close database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise StoreUnavailable("Memory store not connected. Call connect() first.")
        return self._conn

    @contextlib.asynccontextmanager
    async def _guard(self, action: str) -> AsyncIterator[aiosqlite.Connection]:
        conn = self.conn
        try:
            yield conn
        except sqlite3.Error as e:
            logger.error(f"Store {action} failed: {e}")
            raise StoreUnavailable(f"{action} failed: {e}") from e

    # Persona namespaces

    async def get_persona(self, persona_id: str) -> PersonaNamespace | None:
        async with self._guard("get_persona") as conn:
            async with conn.execute(
                "SELECT persona_id, embedding_dimension, created_at FROM personas "
                "WHERE persona_id = ?",
                (persona_id,),
            ) as cursor:
                row = await cursor.fetchone()
        if row is None:
            return None
        return PersonaNamespace(persona_id=row[0], embedding_dimension=row[1], created_at=row[2])

    async def ensure_persona(
        self, persona_id: str, embedding_dimension: int | None = None
    ) -> PersonaNamespace:
        async with self._guard("ensure_persona") as conn:
            await conn.execute(
                "INSERT OR IGNORE INTO personas (persona_id, embedding_dimension, created_at) "
                "VALUES (?, ?, ?)",
                (persona_id, embedding_dimension, datetime.now()),
            )
            await conn.commit()
        namespace = await self.get_persona(persona_id)
        if namespace is None:
            raise StoreUnavailable(f"Persona namespace {persona_id} vanished after creation")
        return namespace

    async def set_persona_dimension(self, persona_id: str, dimension: int) -> int:
        async with self._guard("set_persona_dimension") as conn:
            await conn.execute(
                "UPDATE personas SET embedding_dimension = ? "
                "WHERE persona_id = ? AND embedding_dimension IS NULL",
                (dimension, persona_id),
            )
            await conn.commit()
        namespace = await self.get_persona(persona_id)
        if namespace is None or namespace.embedding_dimension is None:
            raise StoreUnavailable(f"Persona {persona_id} has no namespace")
        return namespace.embedding_dimension

    async def list_personas(self) -> list[str]:
        async with self._guard("list_personas") as conn:
            async with conn.execute(
                "SELECT persona_id FROM personas ORDER BY persona_id"
            ) as cursor:
                return [row[0] async for row in cursor]

    # Fragments

    async def upsert(self, fragment: MemoryFragment) -> str:
        async with self._guard("upsert") as conn:
            await conn.execute(
                f"INSERT OR REPLACE INTO fragments ({_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    fragment.id,
                    fragment.persona_id,
                    fragment.content,
                    fragment.timestamp,
                    fragment.category.value,
                    fragment.source,
                    fragment.user_id,
                    _pack_vector(fragment.dense_embedding),
                    json.dumps(fragment.sparse_features),
                    fragment.tier.value,
                    fragment.importance,
                    fragment.emotional_impact,
                    fragment.access_count,
                    fragment.last_accessed,
                    int(fragment.degraded),
                    fragment.version,
                    fragment.consolidated_at,
                    fragment.access_baseline,
                ),
            )
            await conn.commit()
        return fragment.id

    async def get(self, fragment_id: str) -> MemoryFragment | None:
        async with self._guard("get") as conn:
            async with conn.execute(
                f"SELECT {_COLUMNS} FROM fragments WHERE id = ?", (fragment_id,)
            ) as cursor:
                row = await cursor.fetchone()
        return _row_to_fragment(row) if row else None

    async def _select(self, action: str, where: str, params: list[Any], tail: str = "") -> list[MemoryFragment]:
        sql = f"SELECT {_COLUMNS} FROM fragments WHERE {where} {tail}"
        async with self._guard(action) as conn:
            async with conn.execute(sql, params) as cursor:
                return [_row_to_fragment(row) async for row in cursor]

    async def list_fragments(
        self,
        persona_id: str,
        tiers: set[MemoryTier] | frozenset[MemoryTier] | None = None,
        categories: set[MemoryCategory] | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[MemoryFragment]:
        clauses = ["persona_id = ?"]
        params: list[Any] = [persona_id]
        if tiers:
            clauses.append(f"tier IN ({', '.join('?' for _ in tiers)})")
            params.extend(sorted(t.value for t in tiers))
        if categories:
            clauses.append(f"category IN ({', '.join('?' for _ in categories)})")
            params.extend(sorted(c.value for c in categories))
        if start is not None:
            clauses.append("timestamp >= ?")
            params.append(start)
        if end is not None:
            clauses.append("timestamp <= ?")
            params.append(end)
        return await self._select(
            "list_fragments", " AND ".join(clauses), params, "ORDER BY timestamp, id"
        )

    async def range_by_time(
        self, persona_id: str, start: datetime, end: datetime
    ) -> list[MemoryFragment]:
        return await self._select(
            "range_by_time",
            "persona_id = ? AND timestamp >= ? AND timestamp <= ?",
            [persona_id, start, end],
            "ORDER BY timestamp, id",
        )

    async def top_by_importance(
        self, persona_id: str, limit: int, min_importance: float | None = None
    ) -> list[MemoryFragment]:
        where = "persona_id = ?"
        params: list[Any] = [persona_id]
        if min_importance is not None:
            where += " AND importance >= ?"
            params.append(min_importance)
        params.append(limit)
        return await self._select(
            "top_by_importance",
            where,
            params,
            "ORDER BY importance DESC, timestamp DESC, id LIMIT ?",
        )

    async def vector_scan(
        self, persona_id: str, query_vector: list[float], threshold: float
    ) -> list[tuple[MemoryFragment, float]]:
        candidates = await self._select(
            "vector_scan", "persona_id = ? AND dense_embedding IS NOT NULL", [persona_id]
        )
        matches = []
        for fragment in candidates:
            similarity = cosine_similarity(query_vector, fragment.dense_embedding)
            if similarity >= threshold:
                matches.append((fragment, similarity))
        matches.sort(key=lambda m: (-m[1], m[0].id))
        return matches

    async def count_by_tier(self, persona_id: str, tier: MemoryTier) -> int:
        async with self._guard("count_by_tier") as conn:
            async with conn.execute(
                "SELECT COUNT(*) FROM fragments WHERE persona_id = ? AND tier = ?",
                (persona_id, tier.value),
            ) as cursor:
                row = await cursor.fetchone()
        return row[0] if row else 0

    async def compare_and_set(
        self, fragment_id: str, expected_version: int, **fields: Any
    ) -> bool:
        unknown = set(fields) - GOVERNED_FIELDS
        if unknown:
            raise ValueError(f"Not a governed field: {', '.join(sorted(unknown))}")
        if not fields:
            return False

        updates = []
        values: list[Any] = []
        for key, value in fields.items():
            if isinstance(value, MemoryTier):
                value = value.value
            updates.append(f"{key} = ?")
            values.append(value)

        where = "id = ? AND version = ?"
        values.extend([fragment_id, expected_version])

        # Monotonic tiers: only rows currently at or below the new tier match
        new_tier = fields.get("tier")
        if new_tier is not None:
            allowed = MemoryTier(new_tier).tiers_at_or_below()
            where += f" AND tier IN ({', '.join('?' for _ in allowed)})"
            values.extend(t.value for t in allowed)

        sql = f"UPDATE fragments SET {', '.join(updates)}, version = version + 1 WHERE {where}"
        async with self._guard("compare_and_set") as conn:
            cursor = await conn.execute(sql, values)
            await conn.commit()
            return cursor.rowcount == 1

    async def record_access(self, fragment_id: str, when: datetime) -> None:
        async with self._guard("record_access") as conn:
            await conn.execute(
                "UPDATE fragments SET access_count = access_count + 1, last_accessed = ? "
                "WHERE id = ?",
                (when, fragment_id),
            )
            await conn.commit()

    async def set_embedding(self, fragment_id: str, embedding: list[float]) -> bool:
        async with self._guard("set_embedding") as conn:
            cursor = await conn.execute(
                "UPDATE fragments SET dense_embedding = ?, degraded = 0 WHERE id = ?",
                (_pack_vector(embedding), fragment_id),
            )
            await conn.commit()
            return cursor.rowcount == 1

    async def mark_degraded(self, fragment_id: str) -> bool:
        async with self._guard("mark_degraded") as conn:
            cursor = await conn.execute(
                "UPDATE fragments SET degraded = 1 WHERE id = ? AND dense_embedding IS NULL",
                (fragment_id,),
            )
            await conn.commit()
            return cursor.rowcount == 1

    async def delete(self, fragment_id: str) -> bool:
        async with self._guard("delete") as conn:
            cursor = await conn.execute("DELETE FROM fragments WHERE id = ?", (fragment_id,))
            await conn.commit()
            return cursor.rowcount == 1
