"""
Caching Metadata Store Implementation

Combines a fast in-memory primary with an optional durable secondary
(file, diskcache or redis).

Key Features:
- Write-through: every store and delete goes to both tiers
- Reads hit memory first and fall back to the secondary, warming memory
- Cleanup sweeps both tiers, optionally on a periodic background task
- Composable architecture using existing MetadataStore implementations

Session records are replaced whole and never patched, so a warmed memory
copy can only be stale by being deleted elsewhere. Deployments where
another process may delete sessions should keep the primary TTL short.
"""

from __future__ import annotations

import logging

from .base_metadata_store import MetadataStore
from .memory_metadata_store import MemoryMetadataStore
from .session_metadata import SessionMetadata
from .storage_types import StoreBackend
from .utils.session_utils import short_id, validate_session_id

logger = logging.getLogger(__name__)


class CachingMetadataStore(MetadataStore):
    """
    Memory-first MetadataStore with an optional durable secondary.

    Secondary failures propagate: the durable tier is the source of truth
    and a write that only reached memory would silently vanish on restart.
    """

    backend = StoreBackend.CACHING

    def __init__(
        self,
        primary: MemoryMetadataStore | None = None,
        secondary: MetadataStore | None = None,
    ) -> None:
        """
        Initialize CachingMetadataStore.

        Args:
            primary: In-memory tier; a default MemoryMetadataStore when omitted
            secondary: Optional durable tier
        """
        self._primary = primary or MemoryMetadataStore()
        self._secondary = secondary
        default_ttl = (
            secondary.default_ttl_seconds
            if secondary is not None
            else self._primary.default_ttl_seconds
        )
        super().__init__(default_ttl)
        logger.info(
            "CachingMetadataStore initialized (secondary=%s)",
            secondary.__class__.__name__ if secondary is not None else None,
        )

    @property
    def primary(self) -> MemoryMetadataStore:
        return self._primary

    @property
    def secondary(self) -> MetadataStore | None:
        return self._secondary

    # MetadataStore interface implementation
    async def store_session(self, session_id: str, metadata: SessionMetadata) -> None:
        session_id = validate_session_id(session_id)
        record = self._prepare(session_id, metadata)
        if self._secondary is not None:
            await self._secondary.store_session(session_id, record)
        await self._primary.store_session(session_id, record)
        logger.debug(
            "Session stored in caching store: %s (persisted=%s)",
            short_id(session_id),
            self._secondary is not None,
        )

    async def get_session(self, session_id: str) -> SessionMetadata | None:
        session_id = validate_session_id(session_id)
        record = await self._primary.get_session(session_id)
        if record is not None:
            return record

        if self._secondary is None:
            return None

        record = await self._secondary.get_session(session_id)
        if record is None:
            logger.debug("Session not found in either tier: %s", short_id(session_id))
            return None

        await self._primary.store_session(session_id, record)
        logger.debug(
            "Session loaded from secondary and cached: %s", short_id(session_id)
        )
        return record

    async def delete_session(self, session_id: str) -> None:
        session_id = validate_session_id(session_id)
        await self._primary.delete_session(session_id)
        if self._secondary is not None:
            await self._secondary.delete_session(session_id)

    async def cleanup(self) -> int:
        primary_count = await self._primary.cleanup()
        secondary_count = 0
        if self._secondary is not None:
            secondary_count = await self._secondary.cleanup()
        logger.debug(
            "Caching store cleanup completed (primary=%s, secondary=%s)",
            primary_count,
            secondary_count,
        )
        return max(primary_count, secondary_count)

    async def get_session_count(self) -> int:
        if self._secondary is not None:
            return await self._secondary.get_session_count()
        return await self._primary.get_session_count()

    async def close(self) -> None:
        await self.stop_periodic_cleanup()
        await self._primary.close()
        if self._secondary is not None:
            await self._secondary.close()
        logger.info("CachingMetadataStore closed")
