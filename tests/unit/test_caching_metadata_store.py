"""
Unit tests for CachingMetadataStore

Tests the memory-first store: write-through to the secondary, read-through
with cache warming, and the tier-combined cleanup and count.
"""

import json
from unittest.mock import AsyncMock

import pytest

from mcp_session_host.caching_metadata_store import CachingMetadataStore
from mcp_session_host.errors import StoreUnavailableError
from mcp_session_host.file_metadata_store import FileMetadataStore
from mcp_session_host.memory_metadata_store import MemoryMetadataStore
from mcp_session_host.session_metadata import SessionMetadata, now_ms
from mcp_session_host.storage_types import StoreBackend


@pytest.fixture
def secondary(session_file):
    return FileMetadataStore(session_file, default_ttl_seconds=120)


@pytest.fixture
def store(secondary):
    return CachingMetadataStore(MemoryMetadataStore(default_ttl_seconds=60), secondary)


@pytest.mark.anyio
class TestCachingMetadataStore:
    """Test suite for CachingMetadataStore."""

    async def test_write_through(self, store, secondary):
        await store.store_session("s1", SessionMetadata(session_id="s1"))

        assert await store.primary.get_session("s1") is not None
        assert await secondary.get_session("s1") is not None
        assert store.backend is StoreBackend.CACHING

    async def test_default_ttl_follows_secondary(self, store):
        record = SessionMetadata(session_id="s1")
        await store.store_session("s1", record)

        loaded = await store.get_session("s1")

        assert loaded.expires_at == record.created_at + 120_000

    async def test_read_through_warms_primary(self, store, secondary):
        await secondary.store_session("s1", SessionMetadata(session_id="s1"))
        assert await store.primary.get_session("s1") is None

        loaded = await store.get_session("s1")

        assert loaded.session_id == "s1"
        assert await store.primary.get_session("s1") is not None

    async def test_restart_reads_from_secondary(self, session_file):
        first = CachingMetadataStore(secondary=FileMetadataStore(session_file))
        await first.store_session("s1", SessionMetadata(session_id="s1"))
        await first.close()

        second = CachingMetadataStore(secondary=FileMetadataStore(session_file))

        assert await second.get_session("s1") is not None

    async def test_delete_removes_from_both_tiers(self, store, secondary):
        await store.store_session("s1", SessionMetadata(session_id="s1"))

        await store.delete_session("s1")

        assert await store.primary.get_session("s1") is None
        assert await secondary.get_session("s1") is None
        assert await store.get_session("s1") is None

    async def test_missing_in_both_tiers(self, store):
        assert await store.get_session("missing") is None

    async def test_memory_only(self):
        store = CachingMetadataStore()
        await store.store_session("s1", SessionMetadata(session_id="s1"))

        assert store.secondary is None
        assert await store.get_session("s1") is not None
        assert await store.get_session_count() == 1

    async def test_count_comes_from_secondary(self, store, secondary):
        await store.store_session("a", SessionMetadata(session_id="a"))
        await secondary.store_session("b", SessionMetadata(session_id="b"))

        assert await store.get_session_count() == 2
        assert await store.primary.get_session_count() == 1

    async def test_cleanup_sweeps_both_tiers(self, store, secondary, session_file):
        now = now_ms()
        stale = SessionMetadata(session_id="old", created_at=now - 10_000, expires_at=now - 1)
        await store.store_session("old", stale)
        await store.store_session("live", SessionMetadata(session_id="live"))

        removed = await store.cleanup()

        assert removed == 1
        assert await store.primary.get_session_count() == 1
        document = json.loads(session_file.read_text())
        assert [r["sessionId"] for r in document["sessions"]] == ["live"]

    async def test_secondary_failure_propagates(self, store, secondary):
        secondary.store_session = AsyncMock(side_effect=StoreUnavailableError("disk full"))

        with pytest.raises(StoreUnavailableError):
            await store.store_session("s1", SessionMetadata(session_id="s1"))

        # Nothing was cached that the durable tier does not have
        assert await store.primary.get_session("s1") is None

    async def test_close_closes_both_tiers(self, store, secondary):
        secondary.close = AsyncMock()
        store.start_periodic_cleanup(60)

        await store.close()

        secondary.close.assert_awaited_once()
        assert store._cleanup_task is None
