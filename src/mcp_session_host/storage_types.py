"""
Storage Types and Data Classes

This module contains the enums and small data structures shared by the
metadata stores and the instance manager.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any


class StoreBackend(Enum):
    """Metadata store backend enumeration."""

    MEMORY = "memory"
    FILE = "file"
    DISKCACHE = "diskcache"
    REDIS = "redis"
    CACHING = "caching"


@dataclass
class InstanceStats:
    """Instance cache statistics for monitoring and capacity planning."""

    cached_instances: int
    oldest_instance_age_ms: int
    pending_reconstructions: int = 0
    reconstructions: int = 0
    evictions: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "cachedInstances": self.cached_instances,
            "oldestInstanceAge": self.oldest_instance_age_ms,
            "pendingReconstructions": self.pending_reconstructions,
            "reconstructions": self.reconstructions,
            "evictions": self.evictions,
        }
