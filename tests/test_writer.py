"""Tests for the memory writer."""

from datetime import timedelta

import pytest

from helpers import T0, FakeEmbedder
from mnemo.core.config import Settings
from mnemo.core.errors import InvalidQuery, StoreUnavailable
from mnemo.memory.base import MemoryTier
from mnemo.memory.persona import PersonaRegistry
from mnemo.memory.store import SQLiteMemoryStore
from mnemo.memory.writer import MemoryWriter


async def _writer(store, personas, embedder, settings, **overrides):
    if overrides:
        settings = settings.model_copy(update=overrides)
    writer = MemoryWriter(store, personas, embedder, settings, clock=lambda: T0)
    await writer.start()
    return writer


@pytest.mark.asyncio
async def test_ingest_creates_working_fragment(
    memory_store: SQLiteMemoryStore, personas: PersonaRegistry, settings: Settings
):
    """New fragments land in WORKING and receive an embedding in the background."""
    embedder = FakeEmbedder({"Hello world": [1.0, 0.0, 0.0, 0.0]})
    writer = await _writer(memory_store, personas, embedder, settings)
    try:
        fragment_id = await writer.ingest("Hello world", "nicole")
        await writer.drain()
    finally:
        await writer.stop()

    fragment = await memory_store.get(fragment_id)
    assert fragment.tier == MemoryTier.WORKING
    assert fragment.timestamp == T0
    assert fragment.importance == settings.default_importance
    assert fragment.sparse_features == {"hello": 1.0, "world": 1.0}
    assert fragment.dense_embedding == [1.0, 0.0, 0.0, 0.0]
    assert not fragment.degraded

    namespace = await personas.get("nicole")
    assert namespace.embedding_dimension == 4


@pytest.mark.asyncio
async def test_embedding_recovers_after_transient_failure(
    memory_store: SQLiteMemoryStore, personas: PersonaRegistry, settings: Settings
):
    embedder = FakeEmbedder(fail_times=2)
    writer = await _writer(memory_store, personas, embedder, settings)
    try:
        fragment_id = await writer.ingest("flaky backend", "nicole")
        await writer.drain()
    finally:
        await writer.stop()

    fragment = await memory_store.get(fragment_id)
    assert fragment.has_embedding
    assert not fragment.degraded
    assert embedder.calls == 3


@pytest.mark.asyncio
async def test_embedding_outage_degrades_fragment(
    memory_store: SQLiteMemoryStore, personas: PersonaRegistry, settings: Settings
):
    """After retries are exhausted the fragment stays, sparse-only."""
    embedder = FakeEmbedder(fail=True)
    writer = await _writer(memory_store, personas, embedder, settings)
    try:
        fragment_id = await writer.ingest("Dinner with Alice at Luigi's", "nicole")
        await writer.drain()
    finally:
        await writer.stop()

    fragment = await memory_store.get(fragment_id)
    assert fragment is not None
    assert fragment.degraded
    assert fragment.dense_embedding is None
    assert "alice" in fragment.sparse_features
    assert embedder.calls == settings.embedding_max_retries


@pytest.mark.asyncio
async def test_no_embedder_stores_degraded(
    memory_store: SQLiteMemoryStore, personas: PersonaRegistry, settings: Settings
):
    writer = MemoryWriter(memory_store, personas, None, settings, clock=lambda: T0)
    fragment_id = await writer.ingest("offline note", "nicole")
    assert (await memory_store.get(fragment_id)).degraded


@pytest.mark.asyncio
async def test_dimension_mismatch_degrades(
    memory_store: SQLiteMemoryStore, settings: Settings
):
    personas = PersonaRegistry(memory_store, embedding_dimension=3)
    writer = await _writer(memory_store, personas, FakeEmbedder(), settings)
    try:
        fragment_id = await writer.ingest("wrong size", "nicole")
        await writer.drain()
    finally:
        await writer.stop()

    fragment = await memory_store.get(fragment_id)
    assert fragment.degraded
    assert fragment.dense_embedding is None


@pytest.mark.asyncio
async def test_full_queue_degrades_instead_of_blocking(
    memory_store: SQLiteMemoryStore, personas: PersonaRegistry, settings: Settings
):
    """With no free queue slot, ingest returns at once with a degraded fragment."""
    settings = settings.model_copy(update={"embedding_queue_size": 1})
    writer = MemoryWriter(memory_store, personas, FakeEmbedder(), settings, clock=lambda: T0)

    first = await writer.ingest("first", "nicole")
    second = await writer.ingest("second", "nicole")

    assert not (await memory_store.get(first)).degraded
    assert (await memory_store.get(second)).degraded
    assert writer.pending == 1

    # Stopping abandons the queued job
    await writer.stop()
    assert (await memory_store.get(first)).degraded


@pytest.mark.asyncio
async def test_working_capacity_demotes_oldest(
    memory_store: SQLiteMemoryStore, personas: PersonaRegistry, settings: Settings
):
    writer = await _writer(memory_store, personas, FakeEmbedder(), settings, max_working_memory=3)
    try:
        ids = [
            await writer.ingest(f"event {i}", "nicole", timestamp=T0 + timedelta(minutes=i))
            for i in range(4)
        ]
        await writer.drain()
    finally:
        await writer.stop()

    assert await memory_store.count_by_tier("nicole", MemoryTier.WORKING) == 3
    oldest = await memory_store.get(ids[0])
    assert oldest.tier == MemoryTier.SHORT_TERM
    assert (await memory_store.get(ids[3])).tier == MemoryTier.WORKING


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "kwargs",
    [
        {"content": "", "persona_id": "nicole"},
        {"content": "   ", "persona_id": "nicole"},
        {"content": "text", "persona_id": ""},
        {"content": "text", "persona_id": "nicole", "importance": 11},
        {"content": "text", "persona_id": "nicole", "emotional_impact": -12},
        {"content": "text", "persona_id": "nicole", "category": "gossip"},
    ],
)
async def test_ingest_rejects_invalid_input(
    memory_store: SQLiteMemoryStore, personas: PersonaRegistry, settings: Settings, kwargs
):
    writer = MemoryWriter(memory_store, personas, FakeEmbedder(), settings)
    with pytest.raises(InvalidQuery):
        await writer.ingest(**kwargs)


class _NoListingStore(SQLiteMemoryStore):
    """Writes succeed but tier listings are unavailable."""

    async def list_fragments(self, *args, **kwargs):
        raise StoreUnavailable("listing offline")


class _NoDegradeStore(SQLiteMemoryStore):
    async def mark_degraded(self, fragment_id):
        raise StoreUnavailable("write lock timeout")


class _ReadOnlyStore(SQLiteMemoryStore):
    async def upsert(self, fragment):
        raise StoreUnavailable("disk full")


@pytest.mark.asyncio
async def test_capacity_failure_after_write_still_returns_id(tmp_path, settings: Settings):
    """Once persisted, a fragment is reported as stored and still gets embedded."""
    store = _NoListingStore(tmp_path / "listing.db")
    await store.connect()
    try:
        personas = PersonaRegistry(store)
        writer = await _writer(store, personas, FakeEmbedder(), settings)
        try:
            fragment_id = await writer.ingest("Hello world", "nicole")
            await writer.drain()
        finally:
            await writer.stop()

        fragment = await store.get(fragment_id)
        assert fragment is not None
        assert fragment.has_embedding
        assert not fragment.degraded
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_degrade_failure_after_write_still_returns_id(tmp_path, settings: Settings):
    store = _NoDegradeStore(tmp_path / "degrade.db")
    await store.connect()
    try:
        writer = MemoryWriter(store, PersonaRegistry(store), None, settings, clock=lambda: T0)
        fragment_id = await writer.ingest("offline note", "nicole")
        assert await store.get(fragment_id) is not None
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_failed_write_raises_and_stores_nothing(tmp_path, settings: Settings):
    store = _ReadOnlyStore(tmp_path / "readonly.db")
    await store.connect()
    try:
        writer = MemoryWriter(store, PersonaRegistry(store), FakeEmbedder(), settings)
        with pytest.raises(StoreUnavailable):
            await writer.ingest("Hello world", "nicole")
        assert await SQLiteMemoryStore.list_fragments(store, "nicole") == []
        assert writer.pending == 0
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_queued_job_without_embedder_degrades(
    memory_store: SQLiteMemoryStore, personas: PersonaRegistry, settings: Settings
):
    writer = MemoryWriter(memory_store, personas, FakeEmbedder(), settings, clock=lambda: T0)
    fragment_id = await writer.ingest("queued before shutdown", "nicole")
    writer.embedder = None

    await writer.start()
    try:
        await writer.drain()
    finally:
        await writer.stop()

    assert (await memory_store.get(fragment_id)).degraded
