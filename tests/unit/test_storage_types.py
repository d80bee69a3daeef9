"""
Unit tests for Storage Types

Tests the StoreBackend enum and InstanceStats dataclass.
"""

from mcp_session_host.storage_types import InstanceStats, StoreBackend


class TestStoreBackend:
    """Test suite for StoreBackend enum."""

    def test_store_backend_values(self):
        """Test StoreBackend enum values."""
        assert StoreBackend.MEMORY.value == "memory"
        assert StoreBackend.FILE.value == "file"
        assert StoreBackend.DISKCACHE.value == "diskcache"
        assert StoreBackend.REDIS.value == "redis"
        assert StoreBackend.CACHING.value == "caching"

    def test_store_backend_lookup_by_value(self):
        assert StoreBackend("redis") is StoreBackend.REDIS
        assert len(list(StoreBackend)) == 5


class TestInstanceStats:
    """Test suite for InstanceStats dataclass."""

    def test_instance_stats_defaults(self):
        stats = InstanceStats(cached_instances=2, oldest_instance_age_ms=1500)

        assert stats.cached_instances == 2
        assert stats.oldest_instance_age_ms == 1500
        assert stats.pending_reconstructions == 0
        assert stats.reconstructions == 0
        assert stats.evictions == 0

    def test_to_dict(self):
        """Test the camelCase monitoring view."""
        stats = InstanceStats(
            cached_instances=3,
            oldest_instance_age_ms=42,
            pending_reconstructions=1,
            reconstructions=7,
            evictions=4,
        )

        assert stats.to_dict() == {
            "cachedInstances": 3,
            "oldestInstanceAge": 42,
            "pendingReconstructions": 1,
            "reconstructions": 7,
            "evictions": 4,
        }
