"""Tests for context window reconstruction."""

from datetime import timedelta

import pytest

from helpers import T0, make_fragment
from mnemo.core.config import Settings
from mnemo.core.errors import InvalidQuery
from mnemo.memory.context import ContextWindowReconstructor
from mnemo.memory.retriever import AccessRecorder
from mnemo.memory.store import SQLiteMemoryStore


@pytest.fixture
async def populated(memory_store: SQLiteMemoryStore):
    """Fragments at -40, -10, 0, +20 and +31 minutes, plus one for another persona."""
    await memory_store.ensure_persona("nicole")
    await memory_store.ensure_persona("marcus")
    offsets = {-40: "too early", -10: "before", 0: "center", 20: "after", 31: "too late"}
    ids = {}
    for minutes, content in offsets.items():
        fragment = make_fragment(content, timestamp=T0 + timedelta(minutes=minutes))
        await memory_store.upsert(fragment)
        ids[content] = fragment.id
    await memory_store.upsert(make_fragment("other persona", persona_id="marcus"))
    return ids


@pytest.fixture
def reconstructor(memory_store: SQLiteMemoryStore, settings: Settings):
    access = AccessRecorder(memory_store, clock=lambda: T0)
    return ContextWindowReconstructor(memory_store, access, settings)


@pytest.mark.asyncio
async def test_reconstruct_default_window(
    memory_store: SQLiteMemoryStore, populated, reconstructor: ContextWindowReconstructor
):
    center = await memory_store.get(populated["center"])

    window = await reconstructor.reconstruct(center)

    assert [f.content for f in window] == ["before", "center", "after"]


@pytest.mark.asyncio
async def test_reconstruct_custom_window(
    populated, reconstructor: ContextWindowReconstructor
):
    window = await reconstructor.reconstruct_by_id(populated["center"], window_minutes=45)
    assert [f.content for f in window] == [
        "too early",
        "before",
        "center",
        "after",
        "too late",
    ]

    only_center = await reconstructor.reconstruct_by_id(populated["center"], window_minutes=0)
    assert [f.content for f in only_center] == ["center"]


@pytest.mark.asyncio
async def test_reconstruct_records_access(
    memory_store: SQLiteMemoryStore, populated, reconstructor: ContextWindowReconstructor
):
    await reconstructor.reconstruct_by_id(populated["center"])
    await reconstructor.access.flush()

    assert (await memory_store.get(populated["before"])).access_count == 1
    assert (await memory_store.get(populated["too early"])).access_count == 0


@pytest.mark.asyncio
async def test_reconstruct_invalid(populated, reconstructor: ContextWindowReconstructor):
    with pytest.raises(InvalidQuery):
        await reconstructor.reconstruct_by_id(populated["center"], window_minutes=-1)
    with pytest.raises(InvalidQuery):
        await reconstructor.reconstruct_by_id("missing")
